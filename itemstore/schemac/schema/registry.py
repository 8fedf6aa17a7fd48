"""
Type Registry for the itemstore schema compiler.

The TypeRegistry collects the item types of one schema version.
It provides:
- Registration of item types and type aliases
- Lookup by name
- Freeze into an immutable CompiledSchema with a fingerprint

Invariants:
    - Registry is mutable while a schema version is assembled, then frozen
    - Once frozen, no new types or aliases can be registered
    - Item type names are unique
    - Every aliased field refers to a registered alias of the same kind
    - The frozen descriptor shares no mutable state with the registry

How to change safely:
    - Build a fresh registry for every compilation run
    - Never keep registering into a registry whose schema was handed out

Example:
    >>> registry = TypeRegistry()
    >>> registry.register_alias(type_alias("ResourceID", "uuid"))
    >>> registry.register(Resource)
    >>> schema = registry.freeze()
    >>> schema.get_item_type("Resource")
    ItemTypeDef(name='Resource', ...)
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from ..errors import DuplicateTypeNameError, InvalidFieldDefinitionError, RegistryFrozenError
from .itemtype import ItemTypeDef
from .types import TypeAlias

logger = logging.getLogger(__name__)


def compute_fingerprint(schema_dict: Mapping[str, Any]) -> str:
    """SHA-256 fingerprint of a canonical JSON rendering.

    Returns:
        Fingerprint string in format 'sha256:<hash>'
    """
    canonical = json.dumps(schema_dict, sort_keys=True, separators=(",", ":"))
    hash_bytes = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"sha256:{hash_bytes}"


def _structure(
    item_types: Mapping[str, ItemTypeDef],
    aliases: Mapping[str, TypeAlias],
) -> dict[str, Any]:
    return {
        "aliases": [aliases[n].to_dict() for n in sorted(aliases)],
        "item_types": [item_types[n].to_dict() for n in sorted(item_types)],
    }


@dataclass(frozen=True)
class CompiledSchema:
    """Frozen, consumable schema descriptor of one version.

    Attributes:
        version: Schema version number (0 for the base declarations)
        item_types: Read-only mapping of type name to definition
        aliases: Read-only mapping of alias name to alias
        fingerprint: Hash of the structure (independent of version number)
    """

    version: int
    item_types: Mapping[str, ItemTypeDef]
    aliases: Mapping[str, TypeAlias]
    fingerprint: str

    def get_item_type(self, name: str) -> Optional[ItemTypeDef]:
        return self.item_types.get(name)

    def type_names(self) -> list[str]:
        return sorted(self.item_types)

    def __contains__(self, name: object) -> bool:
        return name in self.item_types

    def structure_dict(self) -> dict[str, Any]:
        """Descriptor without the version number, sorted by name."""
        return _structure(self.item_types, self.aliases)

    def to_dict(self) -> dict[str, Any]:
        result = self.structure_dict()
        result["version"] = self.version
        result["fingerprint"] = self.fingerprint
        return result

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CompiledSchema:
        """Rebuild a descriptor from its dictionary form.

        The fingerprint is recomputed, so a tampered descriptor does not
        keep its recorded fingerprint.
        """
        return TypeRegistry.from_dict(data).freeze()


class TypeRegistry:
    """Registry for the item types of one schema version.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Freeze is atomic and irreversible

    Attributes:
        version: Schema version number being assembled
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the schema (computed on freeze)
    """

    def __init__(
        self,
        version: int = 0,
        aliases: Optional[Iterable[TypeAlias]] = None,
    ) -> None:
        """Initialize an empty, mutable registry."""
        self.version = version
        self._item_types: Dict[str, ItemTypeDef] = {}
        self._aliases: Dict[str, TypeAlias] = {}
        self._frozen = False
        self._fingerprint: Optional[str] = None
        self._lock = threading.Lock()
        for alias in aliases or ():
            self.register_alias(alias)

    @property
    def frozen(self) -> bool:
        """Whether the registry is frozen."""
        return self._frozen

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after freeze)."""
        return self._fingerprint

    @property
    def aliases(self) -> Mapping[str, TypeAlias]:
        return MappingProxyType(self._aliases)

    def __len__(self) -> int:
        return len(self._item_types)

    def register_alias(self, alias: TypeAlias) -> None:
        """Register a type alias.

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateTypeNameError: If an alias with this name exists
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register alias '{alias.name}': registry is frozen",
                    type_name=alias.name,
                )
            if alias.name in self._aliases:
                raise DuplicateTypeNameError(
                    f"Type alias '{alias.name}' already registered", type_name=alias.name
                )
            self._aliases[alias.name] = alias

    def register(self, item_type: ItemTypeDef) -> None:
        """Register an item type definition.

        Args:
            item_type: The item type to register

        Raises:
            RegistryFrozenError: If registry is frozen
            DuplicateTypeNameError: If the name is already registered
            InvalidFieldDefinitionError: If a field uses an unregistered alias
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register item type '{item_type.name}': registry is frozen",
                    type_name=item_type.name,
                )
            if item_type.name in self._item_types:
                raise DuplicateTypeNameError(
                    f"Item type name '{item_type.name}' already registered",
                    type_name=item_type.name,
                )
            for f in item_type.fields:
                if f.alias is None:
                    continue
                alias = self._aliases.get(f.alias)
                if alias is None or alias.kind != f.kind:
                    raise InvalidFieldDefinitionError(
                        f"Field '{f.name}' of '{item_type.name}' uses undeclared "
                        f"type alias '{f.alias}'",
                        type_name=item_type.name,
                        field_name=f.name,
                    )

            self._item_types[item_type.name] = item_type
            logger.debug(
                f"Registered item type: {item_type.name} "
                f"({len(item_type.fields)} fields, {len(item_type.key_paths)} key paths)"
            )

    def get(self, name: str) -> Optional[ItemTypeDef]:
        """Get an item type by name."""
        return self._item_types.get(name)

    def item_types(self) -> Iterator[ItemTypeDef]:
        """Iterate over registered item types in registration order."""
        yield from self._item_types.values()

    def freeze(self) -> CompiledSchema:
        """Freeze the registry and produce the compiled descriptor.

        Returns:
            Immutable CompiledSchema

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")

            item_types = MappingProxyType(dict(self._item_types))
            aliases = MappingProxyType(dict(self._aliases))
            self._fingerprint = compute_fingerprint(_structure(item_types, aliases))
            schema = CompiledSchema(
                version=self.version,
                item_types=item_types,
                aliases=aliases,
                fingerprint=self._fingerprint,
            )
            self._frozen = True
            logger.info(
                f"Schema version {self.version} frozen with {len(item_types)} item types, "
                f"fingerprint={self._fingerprint}"
            )
            return schema

    def to_dict(self) -> dict[str, Any]:
        """Convert registry contents to dictionary representation, sorted by name."""
        result = _structure(self._item_types, self._aliases)
        result["version"] = self.version
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TypeRegistry:
        """Create registry from dictionary representation.

        Returns:
            New TypeRegistry with types registered (not frozen)
        """
        registry = cls(
            version=data.get("version", 0),
            aliases=[TypeAlias.from_dict(a) for a in data.get("aliases", [])],
        )
        for item_data in data.get("item_types", []):
            registry.register(ItemTypeDef.from_dict(item_data))
        return registry

    @classmethod
    def from_json(cls, json_str: str) -> TypeRegistry:
        return cls.from_dict(json.loads(json_str))
