"""
Versioned schema migrations.

A migration step moves the schema from version N-1 to version N through an
explicit, ordered list of field operations. Operations are plain records,
not callbacks, so a persisted migration history can be inspected and
replayed:

    MigrationStep(1, "Add approver", (
        ChangeType("Lease", (
            AddField("approver", {"type": "UserID", "required": False}),
            RenameField("res_id", "resource_id"),
        )),
    ))

Invariants:
    - Version 0 is the base declarations; steps start at 1 and are contiguous
    - A step is atomic: if any operation fails, no operation is applied
    - Every version is a full snapshot, re-validated from scratch
    - A rename keeps the field_id and every other attribute, and rewrites
      all key path and TTL references
    - Snapshots are never mutated; a new version supersedes the old one

How to change safely:
    - Add new operations as new record types with an ``op`` tag
    - Keep operation tags stable (they are persisted)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from ..errors import (
    AlreadyOptionalError,
    DeclarationFormatError,
    FieldAlreadyExistsError,
    IncompatibleTypeChangeError,
    MigrationStepFailedError,
    OutOfOrderMigrationError,
    SchemaCompilerError,
    UnknownFieldError,
    UnknownItemTypeError,
    UnsafeRequiredAddError,
)
from .compat import SchemaChange, check_compatibility
from .itemtype import ItemTypeDef
from .registry import CompiledSchema, TypeRegistry
from .types import FieldDef, TypeAlias, resolve_type, validate_field

logger = logging.getLogger(__name__)


def _require_field(item_type: ItemTypeDef, name: str, version: int) -> FieldDef:
    existing = item_type.get_field(name)
    if existing is None:
        raise UnknownFieldError(
            f"Item type '{item_type.name}' has no field '{name}'",
            version=version,
            type_name=item_type.name,
            field_name=name,
        )
    return existing


def _replace_field(item_type: ItemTypeDef, updated: FieldDef) -> list[FieldDef]:
    return [updated if f.field_id == updated.field_id else f for f in item_type.fields]


@dataclass(frozen=True)
class AddField:
    """Add a new field.

    Old records lack the field, so it must be optional or carry a value
    usable retroactively (an initial value generator or a default).
    """

    name: str
    definition: Mapping[str, Any] = dataclass_field(default_factory=dict)

    op = "addField"

    def apply(self, item_type: ItemTypeDef, aliases: Mapping[str, TypeAlias], version: int) -> ItemTypeDef:
        if item_type.get_field(self.name) is not None:
            raise FieldAlreadyExistsError(
                f"Item type '{item_type.name}' already has a field '{self.name}'",
                version=version,
                type_name=item_type.name,
                field_name=self.name,
            )
        new_field = validate_field(
            self.name,
            self.definition,
            item_type.next_field_id(),
            aliases,
            type_name=item_type.name,
        )
        if new_field.required and new_field.initial_value is None and new_field.default is None:
            raise UnsafeRequiredAddError(
                f"Cannot add required field '{self.name}' to '{item_type.name}' "
                f"without an initial value or default for existing records",
                version=version,
                type_name=item_type.name,
                field_name=self.name,
            )
        return item_type.with_fields([*item_type.fields, new_field])

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "name": self.name, "field": dict(self.definition)}


@dataclass(frozen=True)
class RenameField:
    """Rename a field, keeping every other attribute."""

    old_name: str
    new_name: str

    op = "renameField"

    def apply(self, item_type: ItemTypeDef, aliases: Mapping[str, TypeAlias], version: int) -> ItemTypeDef:
        existing = _require_field(item_type, self.old_name, version)
        if item_type.get_field(self.new_name) is not None:
            raise FieldAlreadyExistsError(
                f"Cannot rename '{self.old_name}': '{item_type.name}' already has "
                f"a field '{self.new_name}'",
                version=version,
                type_name=item_type.name,
                field_name=self.new_name,
            )
        renamed = existing.evolve(name=self.new_name)
        return item_type.with_fields(
            _replace_field(item_type, renamed),
            renamed=(self.old_name, self.new_name),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "from": self.old_name, "to": self.new_name}


@dataclass(frozen=True)
class MarkFieldAsNotRequired:
    """Relax a required field.

    The backfill value is what readers see for records lacking the field;
    it is descriptor metadata, no stored record is rewritten. Without a
    backfill the field keeps its current default.
    """

    name: str
    backfill_value: Any = None

    op = "markFieldAsNotRequired"

    def apply(self, item_type: ItemTypeDef, aliases: Mapping[str, TypeAlias], version: int) -> ItemTypeDef:
        existing = _require_field(item_type, self.name, version)
        if not existing.required:
            raise AlreadyOptionalError(
                f"Field '{self.name}' of '{item_type.name}' is already not required",
                version=version,
                type_name=item_type.name,
                field_name=self.name,
            )
        backfill = self.backfill_value if self.backfill_value is not None else existing.default
        relaxed = existing.evolve(required=False, default=backfill)
        return item_type.with_fields(_replace_field(item_type, relaxed))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"op": self.op, "name": self.name}
        if self.backfill_value is not None:
            result["backfill"] = self.backfill_value
        return result


@dataclass(frozen=True)
class ChangeFieldType:
    """Change the declared type of a field to another alias of the same kind.

    Only the documentation name may change (e.g. ``uuid`` to ``UserID``);
    the stored representation must stay the same.
    """

    name: str
    type: str

    op = "changeFieldType"

    def apply(self, item_type: ItemTypeDef, aliases: Mapping[str, TypeAlias], version: int) -> ItemTypeDef:
        existing = _require_field(item_type, self.name, version)
        kind, alias = resolve_type(self.type, aliases)
        if kind != existing.kind:
            raise IncompatibleTypeChangeError(
                f"Cannot change '{self.name}' of '{item_type.name}' from "
                f"{existing.type_name} ({existing.kind.value}) to {self.type} ({kind.value})",
                version=version,
                type_name=item_type.name,
                field_name=self.name,
            )
        return item_type.with_fields(_replace_field(item_type, existing.evolve(alias=alias)))

    def to_dict(self) -> dict[str, Any]:
        return {"op": self.op, "name": self.name, "type": self.type}


FieldOperation = Union[AddField, RenameField, MarkFieldAsNotRequired, ChangeFieldType]


@dataclass(frozen=True)
class ChangeType:
    """Ordered batch of field operations against one item type."""

    type_name: str
    operations: tuple[FieldOperation, ...] = ()

    def apply(self, item_type: ItemTypeDef, aliases: Mapping[str, TypeAlias], version: int) -> ItemTypeDef:
        for operation in self.operations:
            item_type = operation.apply(item_type, aliases, version)
        return item_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type_name,
            "operations": [op.to_dict() for op in self.operations],
        }


def parse_operation(data: Mapping[str, Any]) -> FieldOperation:
    """Parse a field operation from dict.

    Raises:
        DeclarationFormatError: On an unknown tag or missing attribute
    """
    op = data.get("op") if isinstance(data, Mapping) else None
    try:
        if op == AddField.op:
            return AddField(name=data["name"], definition=data.get("field", {}))
        elif op == RenameField.op:
            return RenameField(old_name=data["from"], new_name=data["to"])
        elif op == MarkFieldAsNotRequired.op:
            return MarkFieldAsNotRequired(name=data["name"], backfill_value=data.get("backfill"))
        elif op == ChangeFieldType.op:
            return ChangeFieldType(name=data["name"], type=data["type"])
    except KeyError as e:
        raise DeclarationFormatError(f"Operation '{op}' is missing attribute {e}") from e
    raise DeclarationFormatError(f"Unknown migration operation {op!r}")


@dataclass(frozen=True)
class MigrationStep:
    """One versioned migration.

    Attributes:
        version: Target version number (previous version + 1)
        description: Human-readable summary
        changes: Ordered per-type batches of field operations
    """

    version: int
    description: str
    changes: tuple[ChangeType, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "changes": [c.to_dict() for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MigrationStep:
        """Create from a migration declaration."""
        if not isinstance(data, Mapping):
            raise DeclarationFormatError("Migration declaration must be a mapping")
        version = data.get("version")
        if not isinstance(version, int) or isinstance(version, bool):
            raise DeclarationFormatError(f"Migration version must be an integer, got {version!r}")
        changes = []
        for change in data.get("changes", []):
            if not isinstance(change, Mapping) or "type" not in change:
                raise DeclarationFormatError(
                    f"Migration {version}: each change needs a target 'type'"
                )
            changes.append(ChangeType(
                type_name=change["type"],
                operations=tuple(parse_operation(op) for op in change.get("operations", [])),
            ))
        return cls(
            version=version,
            description=data.get("description", ""),
            changes=tuple(changes),
        )


@dataclass(frozen=True)
class SchemaVersion:
    """Immutable snapshot of the schema at one version.

    Attributes:
        version: Version number
        description: Description of the step that produced it
        schema: Complete compiled schema (not a diff)
        changes: Diagnostics relative to the previous version
    """

    version: int
    description: str
    schema: CompiledSchema
    changes: tuple[SchemaChange, ...] = ()

    @property
    def fingerprint(self) -> str:
        return self.schema.fingerprint

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "description": self.description,
            "fingerprint": self.fingerprint,
            "schema": self.schema.structure_dict(),
            "changes": [c.to_dict() for c in self.changes],
        }


class MigrationEngine:
    """Applies migration steps in order on top of a base schema.

    Example:
        >>> engine = MigrationEngine(base_schema)
        >>> engine.apply(MigrationStep.from_dict(declaration))
        >>> engine.current.version
        1
    """

    def __init__(self, base: CompiledSchema) -> None:
        if base.version != 0:
            raise OutOfOrderMigrationError(
                f"Base schema must be version 0, got {base.version}", version=base.version
            )
        self._versions: list[SchemaVersion] = [
            SchemaVersion(version=0, description="Base declarations", schema=base)
        ]

    @property
    def current(self) -> SchemaVersion:
        return self._versions[-1]

    @property
    def versions(self) -> tuple[SchemaVersion, ...]:
        return tuple(self._versions)

    def apply(self, step: Union[MigrationStep, Mapping[str, Any]]) -> SchemaVersion:
        """Apply one step and record the resulting version.

        Args:
            step: MigrationStep or its declaration

        Returns:
            The new SchemaVersion

        Raises:
            OutOfOrderMigrationError: If step.version is not current + 1
            MigrationStepFailedError: If any operation of the step fails;
                the current version is left unchanged
        """
        if not isinstance(step, MigrationStep):
            step = MigrationStep.from_dict(step)

        previous = self.current
        expected = previous.version + 1
        if step.version != expected:
            raise OutOfOrderMigrationError(
                f"Migration {step.version} cannot be applied at version "
                f"{previous.version}; expected migration {expected}",
                version=step.version,
            )

        aliases = previous.schema.aliases
        working = dict(previous.schema.item_types)
        type_name: Optional[str] = None
        try:
            for change in step.changes:
                type_name = change.type_name
                item_type = working.get(type_name)
                if item_type is None:
                    raise UnknownItemTypeError(
                        f"Migration targets unknown item type '{type_name}'",
                        version=step.version,
                        type_name=type_name,
                    )
                working[type_name] = change.apply(item_type, aliases, step.version)
            schema = _snapshot(step.version, working.values(), aliases.values())
        except SchemaCompilerError as e:
            logger.warning(f"Migration {step.version} rejected: {e.message}")
            raise MigrationStepFailedError(step.version, e, type_name=type_name) from e

        changes = tuple(check_compatibility(previous.schema, schema))
        version = SchemaVersion(
            version=step.version,
            description=step.description,
            schema=schema,
            changes=changes,
        )
        self._versions.append(version)
        logger.info(
            f"Applied migration {step.version} ({step.description!r}): "
            f"{len(changes)} change(s), fingerprint={schema.fingerprint}"
        )
        return version

    def apply_all(self, steps: Iterable[Union[MigrationStep, Mapping[str, Any]]]) -> SchemaVersion:
        """Apply steps in the given order; returns the final version."""
        for step in steps:
            self.apply(step)
        return self.current


def _snapshot(
    version: int,
    item_types: Iterable[ItemTypeDef],
    aliases: Iterable[TypeAlias],
) -> CompiledSchema:
    registry = TypeRegistry(version=version, aliases=aliases)
    for item_type in item_types:
        registry.register(ItemTypeDef.from_dict(item_type.to_dict()))
    return registry.freeze()


def migrate(
    version: int,
    description: str,
    changes: Sequence[ChangeType],
) -> MigrationStep:
    """Declare a migration step, e.g. ``migrate(2, "...", [ChangeType(...)])``."""
    return MigrationStep(version=version, description=description, changes=tuple(changes))
