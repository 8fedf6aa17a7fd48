"""
Schema module for the itemstore schema compiler.

This module provides the schema model and its evolution, including:
- Field, alias, key path and TTL definitions
- Item type definitions and the type registry
- Versioned migrations and compatibility diagnostics

Invariants:
    - Item type names are unique; field names are unique per type
    - field_ids are kept across renames and never reused
    - Every key path placeholder and TTL field resolves to a declared field
    - Migration versions are contiguous from 1; each version is a full snapshot

How to change safely:
    - Never edit base declarations in place once deployed; add a migration
    - Use check_compatibility against the deployed descriptor before release
"""

from .compat import (
    ChangeKind,
    CompatibilityError,
    SchemaChange,
    check_compatibility,
    validate_breaking_changes,
)
from .itemtype import ItemTypeDef, build_item_type, parse_item_type
from .keypath import KeyPathSegment, KeyPathTemplate, compile_key_paths
from .migration import (
    AddField,
    ChangeFieldType,
    ChangeType,
    MarkFieldAsNotRequired,
    MigrationEngine,
    MigrationStep,
    RenameField,
    SchemaVersion,
    migrate,
)
from .registry import CompiledSchema, TypeRegistry, compute_fingerprint
from .ttl import TTLPolicy, TTLSource, resolve_ttl
from .types import (
    FieldDef,
    FieldKind,
    InitialValue,
    MetadataSource,
    TypeAlias,
    field,
    type_alias,
    validate_field,
)

__all__ = [
    # Types
    "FieldDef",
    "FieldKind",
    "InitialValue",
    "MetadataSource",
    "TypeAlias",
    "field",
    "type_alias",
    "validate_field",
    "ItemTypeDef",
    "build_item_type",
    "parse_item_type",
    # Key paths and TTL
    "KeyPathSegment",
    "KeyPathTemplate",
    "compile_key_paths",
    "TTLPolicy",
    "TTLSource",
    "resolve_ttl",
    # Registry
    "TypeRegistry",
    "CompiledSchema",
    "compute_fingerprint",
    # Migrations
    "AddField",
    "RenameField",
    "MarkFieldAsNotRequired",
    "ChangeFieldType",
    "ChangeType",
    "MigrationStep",
    "MigrationEngine",
    "SchemaVersion",
    "migrate",
    # Compatibility
    "SchemaChange",
    "ChangeKind",
    "CompatibilityError",
    "check_compatibility",
    "validate_breaking_changes",
]
