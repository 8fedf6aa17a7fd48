"""
Item type definitions.

An item type is a named record schema: ordered fields, one or more key
path templates and an optional TTL policy.

Invariants:
    - Field names and field_ids are unique within the type
    - Every key path placeholder names a field of the type that every record
      has a value for (required, generated, derived or defaulted)
    - A TTL policy names a duration-typed field of the type
    - At most one TTL policy per type

Example:
    >>> Resource = parse_item_type({
    ...     "name": "Resource",
    ...     "keyPath": "/res-:id",
    ...     "fields": {
    ...         "id": {"type": "uuid", "initialValue": "uuid"},
    ...         "name": {"type": "string"},
    ...     },
    ... })
    >>> Resource.primary_key_path.template
    '/res-:id'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Mapping, Optional, Sequence, Union

from ..errors import (
    DeclarationFormatError,
    InvalidFieldDefinitionError,
    MalformedKeyPathError,
    UnknownKeyPathFieldError,
)
from .keypath import KeyPathTemplate, compile_key_paths
from .ttl import TTLPolicy, resolve_ttl
from .types import FieldDef, TypeAlias, validate_field

_TYPE_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")

_DECLARATION_KEYS = frozenset({"name", "keyPath", "fields", "ttl", "description"})


def _always_has_value(f: FieldDef) -> bool:
    return (
        f.required
        or f.initial_value is not None
        or f.from_metadata is not None
        or f.default is not None
    )


@dataclass(frozen=True)
class ItemTypeDef:
    """Definition of an item type.

    Attributes:
        name: Unique type name
        fields: Field definitions in declaration order
        key_paths: Compiled key paths; the first is the primary path
        ttl: Optional TTL policy
        description: Human-readable description
    """

    name: str
    fields: tuple[FieldDef, ...] = dataclass_field(default_factory=tuple)
    key_paths: tuple[KeyPathTemplate, ...] = dataclass_field(default_factory=tuple)
    ttl: Optional[TTLPolicy] = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate item type definition."""
        if not self.name or not _TYPE_NAME_RE.match(self.name):
            raise DeclarationFormatError(f"Invalid item type name '{self.name}'")

        names = [f.name for f in self.fields]
        if len(names) != len(set(names)):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise InvalidFieldDefinitionError(
                f"Duplicate field name(s) {dupes} in item type '{self.name}'",
                type_name=self.name,
                field_name=dupes[0],
            )
        field_ids = [f.field_id for f in self.fields]
        if len(field_ids) != len(set(field_ids)):
            raise InvalidFieldDefinitionError(
                f"Duplicate field_id in item type '{self.name}'", type_name=self.name
            )

        if not self.key_paths:
            raise MalformedKeyPathError(
                f"Item type '{self.name}' has no key path", type_name=self.name
            )
        by_name = self.field_map
        for key_path in self.key_paths:
            for segment in key_path.segments:
                if segment.field_name is None:
                    continue
                bound = by_name.get(segment.field_name)
                if bound is None or bound.kind != segment.kind:
                    raise UnknownKeyPathFieldError(
                        f"Key path '{key_path.template}' of '{self.name}' is not bound "
                        f"to a declared field '{segment.field_name}'",
                        template=key_path.template,
                        type_name=self.name,
                        field_name=segment.field_name,
                    )
                if not _always_has_value(bound):
                    raise MalformedKeyPathError(
                        f"Key path '{key_path.template}' of '{self.name}' uses optional "
                        f"field '{bound.name}', which has no initial value, metadata "
                        f"source or default",
                        template=key_path.template,
                        type_name=self.name,
                        field_name=bound.name,
                    )
        if self.ttl is not None:
            resolve_ttl(self.ttl, by_name, type_name=self.name)

    @property
    def field_map(self) -> dict[str, FieldDef]:
        return {f.name: f for f in self.fields}

    @property
    def primary_key_path(self) -> KeyPathTemplate:
        """The canonical key path, which defines record identity."""
        return self.key_paths[0]

    def get_field(self, name_or_id: Union[str, int]) -> Optional[FieldDef]:
        """Get a field by name or ID."""
        for f in self.fields:
            if isinstance(name_or_id, int):
                if f.field_id == name_or_id:
                    return f
            elif f.name == name_or_id:
                return f
        return None

    def get_field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def get_required_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if f.required]

    def next_field_id(self) -> int:
        """Identifier for a newly added field."""
        return max((f.field_id for f in self.fields), default=0) + 1

    def with_fields(
        self,
        fields: Sequence[FieldDef],
        renamed: Optional[tuple[str, str]] = None,
    ) -> ItemTypeDef:
        """Rebuild this type over a new field list.

        Key paths and the TTL policy are recompiled against the new fields.
        When ``renamed`` is given as (old, new), every reference to the old
        name is rewritten first.
        """
        templates = [kp.template for kp in self.key_paths]
        ttl = self.ttl
        if renamed is not None:
            old_name, new_name = renamed
            templates = [kp.rename_field(old_name, new_name) for kp in self.key_paths]
            if ttl is not None:
                ttl = ttl.rename_field(old_name, new_name)
        return build_item_type(
            self.name, fields, templates, ttl, description=self.description
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "key_paths": [kp.to_dict() for kp in self.key_paths],
        }
        if self.ttl is not None:
            result["ttl"] = self.ttl.to_dict()
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ItemTypeDef:
        """Create from dictionary representation."""
        fields = [FieldDef.from_dict(f) for f in data.get("fields", [])]
        templates = [kp["template"] for kp in data.get("key_paths", [])]
        return build_item_type(
            data["name"],
            fields,
            templates,
            data.get("ttl"),
            description=data.get("description", ""),
        )


def build_item_type(
    name: str,
    fields: Sequence[FieldDef],
    key_paths: Union[str, Sequence[str]],
    ttl: Union[Mapping[str, Any], TTLPolicy, None] = None,
    description: str = "",
) -> ItemTypeDef:
    """Compile key paths and TTL against ``fields`` and assemble an ItemTypeDef."""
    by_name = {f.name: f for f in fields}
    return ItemTypeDef(
        name=name,
        fields=tuple(fields),
        key_paths=compile_key_paths(key_paths, by_name, type_name=name),
        ttl=resolve_ttl(ttl, by_name, type_name=name),
        description=description,
    )


def parse_item_type(
    declaration: Mapping[str, Any],
    aliases: Optional[Mapping[str, TypeAlias]] = None,
) -> ItemTypeDef:
    """Build an ItemTypeDef from a raw declaration.

    Fields are numbered 1..n in declaration order.

    Args:
        declaration: Mapping with name, keyPath, fields and optional ttl
        aliases: Declared type aliases by name

    Returns:
        Validated ItemTypeDef

    Raises:
        DeclarationFormatError: If the declaration is not shaped correctly
        DefinitionError: If a field, key path or TTL is invalid
    """
    if not isinstance(declaration, Mapping):
        raise DeclarationFormatError("Item type declaration must be a mapping")
    name = declaration.get("name")
    if not isinstance(name, str):
        raise DeclarationFormatError("Item type declaration has no name")
    unknown = set(declaration) - _DECLARATION_KEYS
    if unknown:
        raise DeclarationFormatError(
            f"Item type '{name}' has unknown attribute(s) {sorted(unknown)}",
            type_name=name,
        )
    raw_fields = declaration.get("fields")
    if not isinstance(raw_fields, Mapping) or not raw_fields:
        raise DeclarationFormatError(
            f"Item type '{name}' must declare a non-empty field map", type_name=name
        )

    fields = [
        validate_field(field_name, spec, field_id, aliases, type_name=name)
        for field_id, (field_name, spec) in enumerate(raw_fields.items(), start=1)
    ]
    return build_item_type(
        name,
        fields,
        declaration.get("keyPath", []),
        declaration.get("ttl"),
        description=declaration.get("description", ""),
    )
