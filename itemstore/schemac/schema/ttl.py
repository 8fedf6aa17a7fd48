"""
TTL policy resolution.

A TTL policy expires a record a fixed duration after one of its metadata
timestamps. The duration is read per record from a duration-typed field:

    expiration = <source event timestamp> + <value of the duration field>

The compiler does not compute expirations. It resolves the declaration and
records, for the storage layer, which event drives the expiry and whether
every update refreshes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional, Union

from ..errors import InvalidTTLFieldTypeError, InvalidTTLSourceError, UnknownTTLFieldError
from .types import MetadataSource

if TYPE_CHECKING:
    from .types import FieldDef, FieldKind


class TTLSource(Enum):
    """Record events a TTL can be measured from."""

    FROM_LAST_MODIFIED = "fromLastModified"
    FROM_CREATION = "fromCreation"

    @property
    def event(self) -> MetadataSource:
        if self is TTLSource.FROM_CREATION:
            return MetadataSource.CREATED_AT_TIME
        return MetadataSource.LAST_MODIFIED_AT_TIME

    @property
    def refreshes_on_update(self) -> bool:
        """Whether every update to a record pushes its expiry out."""
        return self is TTLSource.FROM_LAST_MODIFIED


@dataclass(frozen=True)
class TTLPolicy:
    """Resolved TTL policy of an item type.

    Attributes:
        source: Event the expiry is measured from
        field_name: Duration-typed field holding the TTL
        duration_kind: Kind of that field (fixes the unit)
    """

    source: TTLSource
    field_name: str
    duration_kind: FieldKind

    @property
    def unit(self) -> str:
        return self.duration_kind.value[len("duration"):].lower()

    def rename_field(self, old_name: str, new_name: str) -> TTLPolicy:
        if self.field_name != old_name:
            return self
        return TTLPolicy(self.source, new_name, self.duration_kind)

    def to_declaration(self) -> dict[str, str]:
        """The ``{source, field}`` block this policy was resolved from."""
        return {"source": self.source.value, "field": self.field_name}

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "field": self.field_name,
            "event": self.source.event.value,
            "unit": self.unit,
            "refresh_on_update": self.source.refreshes_on_update,
        }


def resolve_ttl(
    policy: Union[Mapping[str, Any], TTLPolicy, None],
    fields: Union[Mapping[str, FieldDef], Iterable[FieldDef]],
    type_name: Optional[str] = None,
) -> Optional[TTLPolicy]:
    """Resolve a ``{source, field}`` TTL declaration against an item type's fields.

    Args:
        policy: The ttl block, an already resolved policy, or None
        fields: Available fields, as a name mapping or an iterable of FieldDef
        type_name: Owning item type, for error context

    Returns:
        TTLPolicy, or None when no policy is declared

    Raises:
        InvalidTTLSourceError: If source is not a recognized event
        UnknownTTLFieldError: If the field does not exist
        InvalidTTLFieldTypeError: If the field is not duration-typed
    """
    if policy is None:
        return None
    if isinstance(policy, TTLPolicy):
        policy = policy.to_declaration()
    if not isinstance(policy, Mapping):
        raise InvalidTTLSourceError(
            "TTL must be a {source, field} mapping", type_name=type_name
        )
    if not isinstance(fields, Mapping):
        fields = {f.name: f for f in fields}

    raw_source = policy.get("source")
    try:
        source = TTLSource(raw_source)
    except ValueError:
        valid = [s.value for s in TTLSource]
        raise InvalidTTLSourceError(
            f"TTL source '{raw_source}' is not one of {valid}", type_name=type_name
        ) from None

    field_name = policy.get("field")
    bound = fields.get(field_name) if isinstance(field_name, str) else None
    if bound is None:
        raise UnknownTTLFieldError(
            f"TTL references unknown field '{field_name}'",
            type_name=type_name,
            field_name=field_name,
        )
    if not bound.kind.is_duration:
        raise InvalidTTLFieldTypeError(
            f"TTL field '{field_name}' must be duration-typed, got {bound.type_name}",
            type_name=type_name,
            field_name=field_name,
        )
    return TTLPolicy(source=source, field_name=field_name, duration_kind=bound.kind)
