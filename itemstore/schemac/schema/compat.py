"""
Schema compatibility checking for the itemstore schema compiler.

This module diffs two compiled schema versions and classifies each change:
- Fields are matched by field_id (stable across renames) or, for
  independently declared schemas, by name
- Removing types, fields or key paths is breaking
- Changing a field's primitive kind or tightening requiredness is breaking
- Changing the primary key path shape is breaking (record identity moves)
- Adding optional structure, renaming fields and relaxing requiredness is not

Invariants:
    - A rename is only reported as a rename when field ids match;
      matching by name never infers one
    - Key paths are compared by shape (prefixes and bound fields), so a
      rename of a placeholder field is not a key path change

Example:
    >>> changes = check_compatibility(previous.schema, current.schema)
    >>> breaking = [c for c in changes if c.is_breaking]
    >>> if breaking:
    ...     raise CompatibilityError(breaking)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Union

from ..errors import SchemaCompilerError
from .itemtype import ItemTypeDef
from .keypath import KeyPathTemplate
from .registry import CompiledSchema
from .types import FieldDef

logger = logging.getLogger(__name__)

FieldKey = Union[int, str]


class ChangeKind(Enum):
    """Types of schema changes."""
    # Non-breaking changes (allowed)
    ITEM_TYPE_ADDED = auto()
    ALIAS_ADDED = auto()
    FIELD_ADDED = auto()
    FIELD_RENAMED = auto()
    FIELD_ALIAS_CHANGED = auto()
    REQUIRED_RELAXED = auto()
    DEFAULT_CHANGED = auto()
    VALIDATION_CHANGED = auto()
    KEY_PATH_ADDED = auto()
    TTL_ADDED = auto()
    TTL_REMOVED = auto()
    TTL_CHANGED = auto()

    # Breaking changes (forbidden)
    ITEM_TYPE_REMOVED = auto()
    ALIAS_REMOVED = auto()
    ALIAS_KIND_CHANGED = auto()
    FIELD_REMOVED = auto()
    FIELD_KIND_CHANGED = auto()
    REQUIRED_ADDED = auto()  # Making optional field required
    INITIAL_VALUE_CHANGED = auto()
    METADATA_SOURCE_CHANGED = auto()
    KEY_PATH_REMOVED = auto()
    PRIMARY_KEY_PATH_CHANGED = auto()

    @property
    def is_breaking(self) -> bool:
        """Whether this change kind is a breaking change."""
        breaking_kinds = {
            ChangeKind.ITEM_TYPE_REMOVED,
            ChangeKind.ALIAS_REMOVED,
            ChangeKind.ALIAS_KIND_CHANGED,
            ChangeKind.FIELD_REMOVED,
            ChangeKind.FIELD_KIND_CHANGED,
            ChangeKind.REQUIRED_ADDED,
            ChangeKind.INITIAL_VALUE_CHANGED,
            ChangeKind.METADATA_SOURCE_CHANGED,
            ChangeKind.KEY_PATH_REMOVED,
            ChangeKind.PRIMARY_KEY_PATH_CHANGED,
        }
        return self in breaking_kinds


@dataclass(frozen=True)
class SchemaChange:
    """Represents a single schema change between versions.

    Attributes:
        kind: The type of change
        path: Path to the changed element (e.g., "ItemType:Lease.field:reason")
        old_value: Previous value (if applicable)
        new_value: New value (if applicable)
        message: Human-readable description of the change
    """
    kind: ChangeKind
    path: str
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    message: str = ""

    @property
    def is_breaking(self) -> bool:
        """Whether this is a breaking change."""
        return self.kind.is_breaking

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.name,
            "path": self.path,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "message": self.message,
            "is_breaking": self.is_breaking,
        }

    def __str__(self) -> str:
        status = "BREAKING" if self.is_breaking else "OK"
        return f"[{status}] {self.kind.name}: {self.path} - {self.message}"


class CompatibilityError(SchemaCompilerError):
    """Raised when breaking schema changes are detected.

    Attributes:
        changes: List of breaking changes detected
    """

    default_code = "COMPATIBILITY_ERROR"

    def __init__(self, changes: List[SchemaChange]):
        self.changes = changes
        messages = [str(c) for c in changes]
        super().__init__(
            f"Schema compatibility check failed with {len(changes)} breaking change(s):\n"
            + "\n".join(messages),
            details={"changes": [c.to_dict() for c in changes]},
        )


def check_compatibility(
    old_schema: CompiledSchema,
    new_schema: CompiledSchema,
    match_fields_by: str = "id",
) -> List[SchemaChange]:
    """Check compatibility between two schema versions.

    Args:
        old_schema: The baseline schema
        new_schema: The schema to compare against it
        match_fields_by: "id" to follow renames by field_id, "name" to
            compare independently declared schemas

    Returns:
        List of SchemaChange objects describing all differences
    """
    if match_fields_by not in ("id", "name"):
        raise ValueError(f"match_fields_by must be 'id' or 'name', got {match_fields_by!r}")

    changes: List[SchemaChange] = []
    changes.extend(_check_aliases(old_schema, new_schema))

    for name in old_schema.type_names():
        if name not in new_schema:
            changes.append(SchemaChange(
                kind=ChangeKind.ITEM_TYPE_REMOVED,
                path=f"ItemType:{name}",
                old_value=name,
                message=f"Item type '{name}' was removed"
            ))

    for name in new_schema.type_names():
        new_type = new_schema.item_types[name]
        old_type = old_schema.get_item_type(name)
        if old_type is None:
            changes.append(SchemaChange(
                kind=ChangeKind.ITEM_TYPE_ADDED,
                path=f"ItemType:{name}",
                new_value=name,
                message=f"Item type '{name}' added"
            ))
        else:
            changes.extend(_check_item_type_diff(old_type, new_type, match_fields_by))

    return changes


def _check_aliases(old_schema: CompiledSchema, new_schema: CompiledSchema) -> List[SchemaChange]:
    changes: List[SchemaChange] = []
    for name, old_alias in sorted(old_schema.aliases.items()):
        new_alias = new_schema.aliases.get(name)
        if new_alias is None:
            changes.append(SchemaChange(
                kind=ChangeKind.ALIAS_REMOVED,
                path=f"Alias:{name}",
                old_value=old_alias.kind.value,
                message=f"Type alias '{name}' was removed"
            ))
        elif new_alias.kind != old_alias.kind:
            changes.append(SchemaChange(
                kind=ChangeKind.ALIAS_KIND_CHANGED,
                path=f"Alias:{name}",
                old_value=old_alias.kind.value,
                new_value=new_alias.kind.value,
                message=f"Type alias '{name}' changed from '{old_alias.kind.value}' to '{new_alias.kind.value}'"
            ))
    for name, new_alias in sorted(new_schema.aliases.items()):
        if name not in old_schema.aliases:
            changes.append(SchemaChange(
                kind=ChangeKind.ALIAS_ADDED,
                path=f"Alias:{name}",
                new_value=new_alias.kind.value,
                message=f"Type alias '{name}' added"
            ))
    return changes


def _field_key(f: FieldDef, match_fields_by: str) -> FieldKey:
    return f.field_id if match_fields_by == "id" else f.name


def _check_item_type_diff(
    old_type: ItemTypeDef,
    new_type: ItemTypeDef,
    match_fields_by: str,
) -> List[SchemaChange]:
    """Check differences between two versions of an item type."""
    changes: List[SchemaChange] = []
    path_prefix = f"ItemType:{old_type.name}"

    old_fields = {_field_key(f, match_fields_by): f for f in old_type.fields}
    new_fields = {_field_key(f, match_fields_by): f for f in new_type.fields}

    for key, old_field in old_fields.items():
        if key not in new_fields:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_REMOVED,
                path=f"{path_prefix}.field:{old_field.name}",
                old_value=old_field.field_id,
                message=f"Field '{old_field.name}' (field_id={old_field.field_id}) was removed"
            ))

    for key, new_field in new_fields.items():
        if key not in old_fields:
            changes.append(SchemaChange(
                kind=ChangeKind.FIELD_ADDED,
                path=f"{path_prefix}.field:{new_field.name}",
                new_value=new_field.field_id,
                message=f"Field '{new_field.name}' (field_id={new_field.field_id}) added"
            ))
        else:
            changes.extend(_check_field_diff(old_fields[key], new_field, path_prefix))

    changes.extend(_check_key_paths(old_type, new_type, match_fields_by, path_prefix))
    changes.extend(_check_ttl(old_type, new_type, match_fields_by, path_prefix))
    return changes


def _check_field_diff(old_field: FieldDef, new_field: FieldDef, parent_path: str) -> List[SchemaChange]:
    """Check differences between two versions of a field."""
    changes: List[SchemaChange] = []
    path = f"{parent_path}.field:{old_field.name}"

    if old_field.name != new_field.name:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_RENAMED,
            path=path,
            old_value=old_field.name,
            new_value=new_field.name,
            message=f"Field renamed from '{old_field.name}' to '{new_field.name}'"
        ))

    if old_field.kind != new_field.kind:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_KIND_CHANGED,
            path=path,
            old_value=old_field.kind.value,
            new_value=new_field.kind.value,
            message=f"Field kind changed from '{old_field.kind.value}' to '{new_field.kind.value}'"
        ))
    elif old_field.alias != new_field.alias:
        changes.append(SchemaChange(
            kind=ChangeKind.FIELD_ALIAS_CHANGED,
            path=path,
            old_value=old_field.type_name,
            new_value=new_field.type_name,
            message=f"Field type changed from '{old_field.type_name}' to '{new_field.type_name}'"
        ))

    if not old_field.required and new_field.required:
        changes.append(SchemaChange(
            kind=ChangeKind.REQUIRED_ADDED,
            path=path,
            message=f"Field '{old_field.name}' changed from optional to required"
        ))
    elif old_field.required and not new_field.required:
        changes.append(SchemaChange(
            kind=ChangeKind.REQUIRED_RELAXED,
            path=path,
            message=f"Field '{old_field.name}' changed from required to optional"
        ))

    if old_field.default != new_field.default:
        changes.append(SchemaChange(
            kind=ChangeKind.DEFAULT_CHANGED,
            path=path,
            old_value=old_field.to_dict().get("default"),
            new_value=new_field.to_dict().get("default"),
            message=f"Backfill value of '{old_field.name}' changed"
        ))

    if old_field.valid != new_field.valid:
        changes.append(SchemaChange(
            kind=ChangeKind.VALIDATION_CHANGED,
            path=path,
            old_value=old_field.valid,
            new_value=new_field.valid,
            message=f"Validation of '{old_field.name}' changed"
        ))

    if old_field.initial_value != new_field.initial_value:
        changes.append(SchemaChange(
            kind=ChangeKind.INITIAL_VALUE_CHANGED,
            path=path,
            old_value=old_field.initial_value.value if old_field.initial_value else None,
            new_value=new_field.initial_value.value if new_field.initial_value else None,
            message=f"Initial value generator of '{old_field.name}' changed"
        ))

    if old_field.from_metadata != new_field.from_metadata:
        changes.append(SchemaChange(
            kind=ChangeKind.METADATA_SOURCE_CHANGED,
            path=path,
            old_value=old_field.from_metadata.value if old_field.from_metadata else None,
            new_value=new_field.from_metadata.value if new_field.from_metadata else None,
            message=f"Metadata source of '{old_field.name}' changed"
        ))

    return changes


def _key_path_shape(
    key_path: KeyPathTemplate,
    item_type: ItemTypeDef,
    match_fields_by: str,
) -> tuple:
    shape = []
    for segment in key_path.segments:
        ref: Optional[FieldKey] = None
        if segment.field_name is not None:
            bound = item_type.get_field(segment.field_name)
            ref = _field_key(bound, match_fields_by) if bound else segment.field_name
        shape.append((segment.prefix, ref))
    return tuple(shape)


def _check_key_paths(
    old_type: ItemTypeDef,
    new_type: ItemTypeDef,
    match_fields_by: str,
    parent_path: str,
) -> List[SchemaChange]:
    """Check key path changes by shape."""
    changes: List[SchemaChange] = []
    old_shapes: Dict[tuple, KeyPathTemplate] = {
        _key_path_shape(kp, old_type, match_fields_by): kp for kp in old_type.key_paths
    }
    new_shapes: Dict[tuple, KeyPathTemplate] = {
        _key_path_shape(kp, new_type, match_fields_by): kp for kp in new_type.key_paths
    }

    old_primary = _key_path_shape(old_type.primary_key_path, old_type, match_fields_by)
    new_primary = _key_path_shape(new_type.primary_key_path, new_type, match_fields_by)
    if old_primary != new_primary:
        changes.append(SchemaChange(
            kind=ChangeKind.PRIMARY_KEY_PATH_CHANGED,
            path=f"{parent_path}.key_path",
            old_value=old_type.primary_key_path.template,
            new_value=new_type.primary_key_path.template,
            message="Primary key path changed; record identity is not preserved"
        ))

    for shape, old_kp in old_shapes.items():
        if shape not in new_shapes and shape != old_primary:
            changes.append(SchemaChange(
                kind=ChangeKind.KEY_PATH_REMOVED,
                path=f"{parent_path}.key_path",
                old_value=old_kp.template,
                message=f"Key path '{old_kp.template}' was removed"
            ))
    for shape, new_kp in new_shapes.items():
        if shape not in old_shapes and shape != new_primary:
            changes.append(SchemaChange(
                kind=ChangeKind.KEY_PATH_ADDED,
                path=f"{parent_path}.key_path",
                new_value=new_kp.template,
                message=f"Key path '{new_kp.template}' added"
            ))
    return changes


def _check_ttl(
    old_type: ItemTypeDef,
    new_type: ItemTypeDef,
    match_fields_by: str,
    parent_path: str,
) -> List[SchemaChange]:
    old_ttl, new_ttl = old_type.ttl, new_type.ttl
    path = f"{parent_path}.ttl"
    if old_ttl is None and new_ttl is None:
        return []
    if old_ttl is None:
        return [SchemaChange(
            kind=ChangeKind.TTL_ADDED,
            path=path,
            new_value=new_ttl.to_declaration(),
            message="TTL policy added"
        )]
    if new_ttl is None:
        return [SchemaChange(
            kind=ChangeKind.TTL_REMOVED,
            path=path,
            old_value=old_ttl.to_declaration(),
            message="TTL policy removed"
        )]

    old_field = old_type.get_field(old_ttl.field_name)
    new_field = new_type.get_field(new_ttl.field_name)
    same_field = (
        old_field is not None
        and new_field is not None
        and _field_key(old_field, match_fields_by) == _field_key(new_field, match_fields_by)
    )
    if old_ttl.source != new_ttl.source or not same_field:
        return [SchemaChange(
            kind=ChangeKind.TTL_CHANGED,
            path=path,
            old_value=old_ttl.to_declaration(),
            new_value=new_ttl.to_declaration(),
            message="TTL policy changed"
        )]
    return []


def validate_breaking_changes(
    old_schema: CompiledSchema,
    new_schema: CompiledSchema,
    match_fields_by: str = "id",
) -> List[SchemaChange]:
    """Validate that there are no breaking changes.

    Returns:
        The (non-breaking) changes found

    Raises:
        CompatibilityError: If breaking changes are detected
    """
    changes = check_compatibility(old_schema, new_schema, match_fields_by)
    breaking = [c for c in changes if c.is_breaking]
    if breaking:
        raise CompatibilityError(breaking)
    logger.info(f"Schema compatibility check passed with {len(changes)} non-breaking changes")
    return changes
