"""
Key path template compilation.

A key path template addresses a record, e.g. ``/user-:user_id/res-:res_id/lease-:id``.
Each ``/``-separated segment is a literal prefix optionally followed by one
``:placeholder`` naming a field of the same item type. The placeholder
inherits the field's kind.

Invariants:
    - Every template starts with '/' and has no empty segment
    - At most one placeholder per segment, and it ends the segment
    - Placeholders name declared fields, each at most once per template
    - The first template of a type is canonical (primary identity);
      the rest keep declaration order as lookup priority
    - Overlapping prefixes across templates are not deduplicated

Example:
    >>> paths = compile_key_paths(["/res-:id"], fields)
    >>> paths[0].arity
    1
    >>> paths[0].render({"id": "r1"})
    '/res-r1'
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Sequence, Union

from ..errors import (
    DuplicateKeyPathFieldError,
    MalformedKeyPathError,
    UnknownKeyPathFieldError,
)

if TYPE_CHECKING:
    from .types import FieldDef, FieldKind

_PLACEHOLDER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


@dataclass(frozen=True)
class KeyPathSegment:
    """One ``/``-separated component of a key path.

    Attributes:
        prefix: Literal text before the placeholder (may be empty)
        field_name: Bound field, or None for a literal-only segment
        kind: Kind inherited from the bound field
    """

    prefix: str
    field_name: Optional[str] = None
    kind: Optional[FieldKind] = None

    @property
    def source(self) -> str:
        """Segment text as written in a template."""
        if self.field_name is None:
            return self.prefix
        return f"{self.prefix}:{self.field_name}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"prefix": self.prefix}
        if self.field_name is not None:
            result["field"] = self.field_name
            result["kind"] = self.kind.value if self.kind else None
        return result


def _format_key_id(value: Any) -> str:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


@dataclass(frozen=True)
class KeyPathTemplate:
    """A compiled key path template.

    Attributes:
        template: Source template string
        segments: Parsed segments in path order
        index: Position among the type's templates (0 is the primary path)
    """

    template: str
    segments: tuple[KeyPathSegment, ...]
    index: int = 0

    @property
    def is_primary(self) -> bool:
        return self.index == 0

    @property
    def arity(self) -> int:
        """Number of segments in the path."""
        return len(self.segments)

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(s.field_name for s in self.segments if s.field_name is not None)

    @property
    def placeholder_kinds(self) -> tuple[FieldKind, ...]:
        """Kinds of the placeholders in path order, used for routing."""
        return tuple(s.kind for s in self.segments if s.kind is not None)

    def references(self, field_name: str) -> bool:
        return field_name in self.field_names

    def rename_field(self, old_name: str, new_name: str) -> str:
        """Return the template source with a placeholder renamed."""
        parts = []
        for segment in self.segments:
            if segment.field_name == old_name:
                parts.append(f"{segment.prefix}:{new_name}")
            else:
                parts.append(segment.source)
        return "/" + "/".join(parts)

    def render(self, values: Mapping[str, Any]) -> str:
        """Build the concrete key for a record.

        Args:
            values: Field values by name

        Returns:
            Key string, e.g. '/user-42/res-7/lease-9'

        Raises:
            ValueError: If a placeholder field has no value
        """
        parts = []
        for segment in self.segments:
            if segment.field_name is None:
                parts.append(segment.prefix)
                continue
            value = values.get(segment.field_name)
            if value is None:
                raise ValueError(
                    f"Key path '{self.template}' needs a value for '{segment.field_name}'"
                )
            parts.append(segment.prefix + _format_key_id(value))
        return "/" + "/".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template,
            "primary": self.is_primary,
            "arity": self.arity,
            "segments": [s.to_dict() for s in self.segments],
        }


def parse_template(template: str, type_name: Optional[str] = None) -> list[tuple[str, Optional[str]]]:
    """Split a template into (prefix, placeholder) pairs without binding fields.

    Raises:
        MalformedKeyPathError: On bad template or placeholder syntax
    """
    if not isinstance(template, str) or not template.startswith("/"):
        raise MalformedKeyPathError(
            f"Key path {template!r} must be a string starting with '/'",
            template=str(template),
            type_name=type_name,
        )
    parsed: list[tuple[str, Optional[str]]] = []
    for part in template[1:].split("/"):
        if not part:
            raise MalformedKeyPathError(
                f"Key path '{template}' has an empty segment",
                template=template,
                type_name=type_name,
            )
        prefix, sep, name = part.partition(":")
        if not sep:
            parsed.append((part, None))
            continue
        if not _PLACEHOLDER_RE.match(name):
            raise MalformedKeyPathError(
                f"Key path '{template}' has an invalid placeholder ':{name}' in segment '{part}'",
                template=template,
                type_name=type_name,
            )
        parsed.append((prefix, name))
    return parsed


def compile_key_path(
    template: str,
    fields: Mapping[str, FieldDef],
    index: int = 0,
    type_name: Optional[str] = None,
) -> KeyPathTemplate:
    """Compile one template against the fields of its item type.

    Raises:
        MalformedKeyPathError: On bad syntax
        UnknownKeyPathFieldError: If a placeholder names no field
        DuplicateKeyPathFieldError: If a field is used twice
    """
    segments = []
    seen: set[str] = set()
    for prefix, name in parse_template(template, type_name):
        if name is None:
            segments.append(KeyPathSegment(prefix=prefix))
            continue
        if name in seen:
            raise DuplicateKeyPathFieldError(
                f"Key path '{template}' uses field '{name}' more than once",
                template=template,
                type_name=type_name,
                field_name=name,
            )
        seen.add(name)
        bound = fields.get(name)
        if bound is None:
            raise UnknownKeyPathFieldError(
                f"Key path '{template}' references unknown field '{name}'",
                template=template,
                type_name=type_name,
                field_name=name,
            )
        segments.append(KeyPathSegment(prefix=prefix, field_name=name, kind=bound.kind))
    return KeyPathTemplate(template=template, segments=tuple(segments), index=index)


def compile_key_paths(
    templates: Union[str, Sequence[str]],
    fields: Union[Mapping[str, FieldDef], Iterable[FieldDef]],
    type_name: Optional[str] = None,
) -> tuple[KeyPathTemplate, ...]:
    """Compile the ordered key path templates of one item type.

    Args:
        templates: A single template or an ordered list (first is primary)
        fields: Available fields, as a name mapping or an iterable of FieldDef
        type_name: Owning item type, for error context

    Returns:
        Compiled templates in declaration order

    Raises:
        MalformedKeyPathError: If no template is given, a template is
            repeated, or a template has bad syntax
        UnknownKeyPathFieldError: If a placeholder names no field
        DuplicateKeyPathFieldError: If a field is used twice in one template
    """
    if isinstance(templates, str):
        templates = [templates]
    if not isinstance(fields, Mapping):
        fields = {f.name: f for f in fields}
    if not templates:
        raise MalformedKeyPathError(
            "At least one key path is required", type_name=type_name
        )

    compiled = []
    declared: set[str] = set()
    for index, template in enumerate(templates):
        key_path = compile_key_path(template, fields, index=index, type_name=type_name)
        if key_path.template in declared:
            raise MalformedKeyPathError(
                f"Key path '{template}' is declared more than once",
                template=template,
                type_name=type_name,
            )
        declared.add(key_path.template)
        compiled.append(key_path)
    return tuple(compiled)
