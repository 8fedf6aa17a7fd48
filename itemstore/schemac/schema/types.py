"""
Core field definitions for the itemstore schema compiler.

This module defines the foundational types of an item declaration:
- FieldKind: Primitive type tags
- TypeAlias: Named documentation alias over a primitive (e.g. UserID -> uuid)
- FieldDef: Individual field within an item type
- validate_field: Build a FieldDef from a raw declaration

Invariants:
    - field_id must be a positive integer (1-2^16) and is never reused
    - Fields are required unless declared with required=False
    - An alias carries a display name only; all checks use its primitive kind
    - fromMetadata fields are timestamp-kinded
    - A uuid initial value generator only fits uuid-kinded fields

How to change safely:
    - Add new kinds at the end of FieldKind
    - Add new validation symbols to expressions.KNOWN_SYMBOLS
    - Never change the string value of an existing kind (it is persisted)

Example:
    >>> from itemstore.schemac.schema.types import field, type_alias
    >>> UserID = type_alias("UserID", "uuid")
    >>> user_id = field(1, "id", UserID, initial_value="uuid")
    >>> email = field(2, "email", "string", valid='this.matches("[^@]+@[^@]+")')
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Optional, Union

from ..errors import InvalidFieldDefinitionError
from .expressions import ExpressionError, undefined_symbols

_FIELD_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


class FieldKind(Enum):
    """Primitive field types understood by the store.

    These map to storage representations and key encodings.
    """

    STRING = "string"
    UUID = "uuid"
    BYTES = "bytes"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    DOUBLE = "double"
    TIMESTAMP_SECONDS = "timestampSeconds"
    TIMESTAMP_MILLISECONDS = "timestampMilliseconds"
    TIMESTAMP_MICROSECONDS = "timestampMicroseconds"
    DURATION_SECONDS = "durationSeconds"
    DURATION_MILLISECONDS = "durationMilliseconds"

    @property
    def is_timestamp(self) -> bool:
        """Whether values of this kind are points in time."""
        return self in (
            FieldKind.TIMESTAMP_SECONDS,
            FieldKind.TIMESTAMP_MILLISECONDS,
            FieldKind.TIMESTAMP_MICROSECONDS,
        )

    @property
    def is_duration(self) -> bool:
        """Whether values of this kind are time spans."""
        return self in (FieldKind.DURATION_SECONDS, FieldKind.DURATION_MILLISECONDS)

    @classmethod
    def from_str(cls, value: str) -> FieldKind:
        """Convert string representation to FieldKind.

        Raises:
            ValueError: If value is not a valid field kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")


class InitialValue(Enum):
    """Generators that fill a field when a record is first created."""

    UUID = "uuid"

    @property
    def compatible_kinds(self) -> frozenset[FieldKind]:
        return frozenset({FieldKind.UUID})


class MetadataSource(Enum):
    """Record metadata a field can be derived from.

    Both sources are timestamps maintained by the store.
    """

    CREATED_AT_TIME = "createdAtTime"
    LAST_MODIFIED_AT_TIME = "lastModifiedAtTime"


@dataclass(frozen=True)
class TypeAlias:
    """A named alias over a primitive kind, used to document ID types.

    Attributes:
        name: Display name (e.g. "LeaseID")
        kind: The primitive kind every check delegates to
    """

    name: str
    kind: FieldKind

    def __post_init__(self) -> None:
        if not _FIELD_NAME_RE.match(self.name or ""):
            raise InvalidFieldDefinitionError(f"Invalid type alias name '{self.name}'")
        for kind in FieldKind:
            if kind.value == self.name:
                raise InvalidFieldDefinitionError(
                    f"Type alias '{self.name}' shadows a primitive type"
                )

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TypeAlias:
        return cls(name=data["name"], kind=FieldKind.from_str(data["kind"]))


def type_alias(name: str, kind: Union[str, FieldKind]) -> TypeAlias:
    """Declare a named alias, e.g. ``type_alias("UserID", "uuid")``."""
    if isinstance(kind, str):
        try:
            kind = FieldKind.from_str(kind)
        except ValueError as e:
            raise InvalidFieldDefinitionError(f"Type alias '{name}': {e}") from e
    return TypeAlias(name=name, kind=kind)


TypeTag = Union[str, FieldKind, TypeAlias]


def resolve_type(
    tag: TypeTag,
    aliases: Optional[Mapping[str, TypeAlias]] = None,
) -> tuple[FieldKind, Optional[str]]:
    """Resolve a declared type tag to (primitive kind, alias name).

    Raises:
        InvalidFieldDefinitionError: If the tag names no kind or alias
    """
    if isinstance(tag, TypeAlias):
        return tag.kind, tag.name
    if isinstance(tag, FieldKind):
        return tag, None
    if isinstance(tag, str):
        if aliases and tag in aliases:
            return aliases[tag].kind, tag
        try:
            return FieldKind.from_str(tag), None
        except ValueError:
            pass
    raise InvalidFieldDefinitionError(f"Unknown type '{tag}'")


def _is_uuid(value: Any) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    if isinstance(value, str):
        try:
            uuid.UUID(value)
        except ValueError:
            return False
        return True
    return isinstance(value, bytes) and len(value) == 16


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


_VALIDATORS = {
    FieldKind.STRING: lambda v: isinstance(v, str),
    FieldKind.UUID: _is_uuid,
    FieldKind.BYTES: lambda v: isinstance(v, (str, bytes)),
    FieldKind.BOOL: lambda v: isinstance(v, bool),
    FieldKind.INT: _is_int,
    FieldKind.UINT: lambda v: _is_int(v) and v >= 0,
    FieldKind.DOUBLE: lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    FieldKind.TIMESTAMP_SECONDS: lambda v: _is_int(v) and v >= 0,
    FieldKind.TIMESTAMP_MILLISECONDS: lambda v: _is_int(v) and v >= 0,
    FieldKind.TIMESTAMP_MICROSECONDS: lambda v: _is_int(v) and v >= 0,
    FieldKind.DURATION_SECONDS: _is_int,
    FieldKind.DURATION_MILLISECONDS: _is_int,
}


def _canonical_default(kind: FieldKind, value: Any) -> Any:
    """Single in-memory form of a default: uuid as str, bytes as bytes."""
    if kind == FieldKind.UUID:
        if isinstance(value, bytes):
            return str(uuid.UUID(bytes=value))
        return str(uuid.UUID(str(value)))
    if kind == FieldKind.BYTES and isinstance(value, str):
        return value.encode("utf-8")
    return value


@dataclass(frozen=True)
class FieldDef:
    """Definition of a single field within an item type.

    Attributes:
        field_id: Stable numeric identifier (kept across renames, never reused)
        name: Field name, usable as a key path placeholder
        kind: The primitive data type of the field
        alias: Display name of the declared alias type, if any
        required: Whether a record must carry a value
        initial_value: Generator that fills the field on creation
        from_metadata: Record metadata the value is derived from
        valid: Validation expression over ``this``
        default: Value read back for records that lack the field
        description: Human-readable description

    Invariants:
        - field_id must be unique within the containing type
        - initial_value, from_metadata and default must fit kind
        - valid may only reference known symbols

    Example:
        >>> reason = FieldDef(field_id=4, name="reason", kind=FieldKind.STRING)
    """

    field_id: int
    name: str
    kind: FieldKind
    alias: Optional[str] = None
    required: bool = True
    initial_value: Optional[InitialValue] = None
    from_metadata: Optional[MetadataSource] = None
    valid: Optional[str] = None
    default: Any = None
    description: str = ""

    def __post_init__(self) -> None:
        """Validate field definition."""
        if self.field_id <= 0 or self.field_id > 65535:
            raise InvalidFieldDefinitionError(
                f"field_id must be in 1..65535, got {self.field_id}",
                field_name=self.name,
            )
        if not self.name or not _FIELD_NAME_RE.match(self.name):
            raise InvalidFieldDefinitionError(
                f"Invalid field name '{self.name}'", field_name=self.name
            )
        if self.initial_value is not None and self.kind not in self.initial_value.compatible_kinds:
            raise InvalidFieldDefinitionError(
                f"Field '{self.name}': initial value '{self.initial_value.value}' "
                f"cannot fill a {self.type_name} field",
                field_name=self.name,
            )
        if self.from_metadata is not None and not self.kind.is_timestamp:
            raise InvalidFieldDefinitionError(
                f"Field '{self.name}': fromMetadata '{self.from_metadata.value}' "
                f"is a timestamp but the field is {self.type_name}",
                field_name=self.name,
            )
        if self.valid is not None:
            self._check_expression(self.valid)
        if self.default is not None:
            ok, error = self.validate_value(self.default)
            if not ok:
                raise InvalidFieldDefinitionError(
                    f"Field '{self.name}': default value does not fit: {error}",
                    field_name=self.name,
                )
            object.__setattr__(self, "default", _canonical_default(self.kind, self.default))

    def _check_expression(self, expression: str) -> None:
        if not isinstance(expression, str):
            raise InvalidFieldDefinitionError(
                f"Field '{self.name}': validation expression must be a string",
                field_name=self.name,
            )
        try:
            undefined = undefined_symbols(expression)
        except ExpressionError as e:
            raise InvalidFieldDefinitionError(
                f"Field '{self.name}': invalid validation expression: {e}",
                field_name=self.name,
            ) from e
        if undefined:
            raise InvalidFieldDefinitionError(
                f"Field '{self.name}': validation expression references "
                f"undefined symbol(s) {undefined}",
                field_name=self.name,
            )

    @property
    def type_name(self) -> str:
        """Declared type name: the alias if there is one, else the kind."""
        return self.alias or self.kind.value

    def validate_value(self, value: Any) -> tuple[bool, Optional[str]]:
        """Validate a value against this field's kind.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value is None:
            if self.required:
                return False, f"Field '{self.name}' is required"
            return True, None
        if not _VALIDATORS[self.kind](value):
            return False, f"Field '{self.name}' has invalid type for kind {self.kind.value}"
        return True, None

    def evolve(self, **changes: Any) -> FieldDef:
        """Return a copy with the given attributes replaced (re-validated)."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation for serialization."""
        result: dict[str, Any] = {
            "field_id": self.field_id,
            "name": self.name,
            "kind": self.kind.value,
            "required": self.required,
        }
        if self.alias:
            result["alias"] = self.alias
        if self.initial_value is not None:
            result["initial_value"] = self.initial_value.value
        if self.from_metadata is not None:
            result["from_metadata"] = self.from_metadata.value
        if self.valid is not None:
            result["valid"] = self.valid
        if self.default is not None:
            default = self.default
            if isinstance(default, bytes):
                default = default.hex()
            result["default"] = default
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FieldDef:
        """Create from dictionary representation."""
        initial_value = data.get("initial_value")
        from_metadata = data.get("from_metadata")
        kind = FieldKind.from_str(data["kind"])
        default = data.get("default")
        if kind == FieldKind.BYTES and isinstance(default, str):
            # to_dict() writes bytes as hex
            default = bytes.fromhex(default)
        return cls(
            field_id=data["field_id"],
            name=data["name"],
            kind=kind,
            alias=data.get("alias"),
            required=data.get("required", True),
            initial_value=InitialValue(initial_value) if initial_value else None,
            from_metadata=MetadataSource(from_metadata) if from_metadata else None,
            valid=data.get("valid"),
            default=default,
            description=data.get("description", ""),
        )


def field(
    field_id: int,
    name: str,
    kind: TypeTag,
    *,
    required: bool = True,
    initial_value: Optional[str] = None,
    from_metadata: Optional[str] = None,
    valid: Optional[str] = None,
    default: Any = None,
    description: str = "",
) -> FieldDef:
    """Convenience function to create a FieldDef.

    Example:
        >>> created = field(7, "createdAt", "timestampMilliseconds", from_metadata="createdAtTime")
    """
    declaration: dict[str, Any] = {"type": kind, "required": required}
    if initial_value is not None:
        declaration["initialValue"] = initial_value
    if from_metadata is not None:
        declaration["fromMetadata"] = from_metadata
    if valid is not None:
        declaration["valid"] = valid
    if default is not None:
        declaration["default"] = default
    if description:
        declaration["description"] = description
    return validate_field(name, declaration, field_id)


_DECLARATION_KEYS = frozenset({
    "type", "required", "initialValue", "fromMetadata", "valid", "default", "description",
})


def validate_field(
    name: str,
    declaration: Mapping[str, Any],
    field_id: int,
    aliases: Optional[Mapping[str, TypeAlias]] = None,
    type_name: Optional[str] = None,
) -> FieldDef:
    """Build a FieldDef from a raw field declaration.

    Args:
        name: Field name (the key in the item type's field map)
        declaration: Mapping with type, required, initialValue, fromMetadata, valid
        field_id: Identifier to assign
        aliases: Declared type aliases by name
        type_name: Item type owning the field, for error context

    Returns:
        Validated FieldDef

    Raises:
        InvalidFieldDefinitionError: If any part of the declaration is invalid
    """
    try:
        if not isinstance(declaration, Mapping):
            raise InvalidFieldDefinitionError(
                f"Field '{name}' declaration must be a mapping", field_name=name
            )
        unknown = set(declaration) - _DECLARATION_KEYS
        if unknown:
            raise InvalidFieldDefinitionError(
                f"Field '{name}' has unknown attribute(s) {sorted(unknown)}", field_name=name
            )
        if "type" not in declaration:
            raise InvalidFieldDefinitionError(f"Field '{name}' has no type", field_name=name)
        try:
            kind, alias = resolve_type(declaration["type"], aliases)
        except InvalidFieldDefinitionError as e:
            raise InvalidFieldDefinitionError(
                f"Field '{name}': {e.message}", field_name=name
            ) from e

        initial_value = declaration.get("initialValue")
        if initial_value is not None:
            try:
                initial_value = InitialValue(initial_value)
            except ValueError:
                raise InvalidFieldDefinitionError(
                    f"Field '{name}': unknown initial value generator '{initial_value}'",
                    field_name=name,
                ) from None

        from_metadata = declaration.get("fromMetadata")
        if from_metadata is not None:
            try:
                from_metadata = MetadataSource(from_metadata)
            except ValueError:
                raise InvalidFieldDefinitionError(
                    f"Field '{name}': unknown metadata source '{from_metadata}'",
                    field_name=name,
                ) from None

        required = declaration.get("required", True)
        if not isinstance(required, bool):
            raise InvalidFieldDefinitionError(
                f"Field '{name}': required must be a boolean", field_name=name
            )

        return FieldDef(
            field_id=field_id,
            name=name,
            kind=kind,
            alias=alias,
            required=required,
            initial_value=initial_value,
            from_metadata=from_metadata,
            valid=declaration.get("valid"),
            default=declaration.get("default"),
            description=declaration.get("description", ""),
        )
    except InvalidFieldDefinitionError as e:
        if type_name is None:
            raise
        raise InvalidFieldDefinitionError(
            f"Item type '{type_name}': {e.message}",
            type_name=type_name,
            field_name=name,
        ) from e
