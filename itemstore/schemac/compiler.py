"""
Schema compiler: declarations in, compiled descriptor out.

The compiler is the single entry point consumed by tooling:
1. Resolve type aliases
2. Validate every item type (fields, key paths, TTL) and register it
3. Freeze the base registry as version 0
4. Apply the migration history in order, producing one snapshot per version

Compilation is pure and deterministic: the same declarations always yield
the same descriptor and fingerprints. Each run builds a fresh registry.

Example:
    >>> compiler = SchemaCompiler()
    >>> artifact = compiler.compile_file("schema.yaml")
    >>> artifact.current.version
    2
    >>> print(compiler.emit(artifact))
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from .config import CompilerConfig
from .errors import MigrationError, SchemaCompilerError
from .loader import check_document, load_file
from .schema.compat import CompatibilityError, SchemaChange, check_compatibility
from .schema.itemtype import parse_item_type
from .schema.migration import MigrationEngine, MigrationStep, SchemaVersion
from .schema.registry import CompiledSchema, TypeRegistry
from .schema.types import FieldKind, TypeAlias, type_alias

logger = logging.getLogger(__name__)

AliasDeclarations = Union[Mapping[str, Union[str, FieldKind]], Iterable[TypeAlias], None]


@dataclass(frozen=True)
class CompiledArtifact:
    """Output of one compilation run.

    Attributes:
        versions: Every schema version from the base (0) to the current one
    """

    versions: tuple[SchemaVersion, ...]

    @property
    def base(self) -> SchemaVersion:
        return self.versions[0]

    @property
    def current(self) -> SchemaVersion:
        return self.versions[-1]

    @property
    def schema(self) -> CompiledSchema:
        """Descriptor of the current version."""
        return self.current.schema

    @property
    def fingerprint(self) -> str:
        return self.current.fingerprint

    def get_version(self, version: int) -> Optional[SchemaVersion]:
        if 0 <= version < len(self.versions):
            return self.versions[version]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_version": self.current.version,
            "fingerprint": self.fingerprint,
            "schema": self.schema.structure_dict(),
            "versions": [v.to_dict() for v in self.versions],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


def _resolve_aliases(aliases: AliasDeclarations) -> List[TypeAlias]:
    if aliases is None:
        return []
    if isinstance(aliases, Mapping):
        return [type_alias(name, kind) for name, kind in aliases.items()]
    return list(aliases)


class SchemaCompiler:
    """Compiles item type declarations and their migration history.

    Attributes:
        config: Compiler configuration
    """

    def __init__(self, config: Optional[CompilerConfig] = None) -> None:
        self.config = config or CompilerConfig()

    def compile(
        self,
        item_types: Sequence[Mapping[str, Any]],
        aliases: AliasDeclarations = None,
        migrations: Optional[Sequence[Union[MigrationStep, Mapping[str, Any]]]] = None,
    ) -> CompiledArtifact:
        """Compile base declarations and apply migrations.

        Args:
            item_types: Raw item type declarations (version 0)
            aliases: Alias name to primitive type, or TypeAlias objects
            migrations: Migration steps or their declarations, in order

        Returns:
            CompiledArtifact with the full version chain

        Raises:
            DefinitionError: If a base declaration is invalid
            RegistryError: If two item types share a name
            MigrationError: If a migration step is out of order or illegal
        """
        try:
            registry = TypeRegistry(version=0, aliases=_resolve_aliases(aliases))
            for declaration in item_types:
                registry.register(parse_item_type(declaration, registry.aliases))
            engine = MigrationEngine(registry.freeze())
            engine.apply_all(migrations or [])
        except SchemaCompilerError as e:
            logger.warning(f"Schema compilation failed: [{e.code}] {e.message}")
            raise

        artifact = CompiledArtifact(versions=engine.versions)
        logger.info(
            f"Compiled {len(artifact.schema.item_types)} item types at version "
            f"{artifact.current.version}, fingerprint={artifact.fingerprint}"
        )
        return artifact

    def compile_document(self, document: Mapping[str, Any]) -> CompiledArtifact:
        """Compile a declaration document ``{aliases, item_types, migrations}``."""
        document = check_document(dict(document))
        return self.compile(
            document["item_types"],
            aliases=document["aliases"],
            migrations=document["migrations"],
        )

    def compile_file(self, path: Union[str, Path]) -> CompiledArtifact:
        """Compile a YAML or JSON declaration file."""
        return self.compile_document(load_file(path))

    def emit(self, artifact: CompiledArtifact) -> str:
        """Render the artifact as deterministic JSON."""
        return artifact.to_json(indent=self.config.descriptor_indent)

    def verify_against_baseline(
        self,
        artifact: CompiledArtifact,
        baseline: Mapping[str, Any],
    ) -> List[SchemaChange]:
        """Check that a new compilation reproduces a deployed descriptor.

        The baseline's version is looked up in the new chain and compared
        field by field using names, so an edit to already deployed
        declarations (such as a rename without a migration) shows up as a
        removed and an added field instead of being inferred as a rename.

        Args:
            artifact: Freshly compiled artifact
            baseline: A previously emitted artifact or schema descriptor

        Returns:
            Differences between the baseline and its counterpart version

        Raises:
            MigrationError: If the new chain does not reach the baseline version
            CompatibilityError: If differences are breaking and
                config.allow_breaking_changes is False
        """
        baseline_schema = _baseline_schema(baseline)
        counterpart = artifact.get_version(baseline_schema.version)
        if counterpart is None:
            raise MigrationError(
                f"Baseline is at version {baseline_schema.version} but the declarations "
                f"only reach version {artifact.current.version}",
                version=baseline_schema.version,
            )

        changes = check_compatibility(baseline_schema, counterpart.schema, match_fields_by="name")
        breaking = [c for c in changes if c.is_breaking]
        if breaking and not self.config.allow_breaking_changes:
            logger.warning(
                f"Version {baseline_schema.version} differs from the deployed baseline "
                f"with {len(breaking)} breaking change(s)"
            )
            raise CompatibilityError(breaking)
        if changes:
            logger.warning(
                f"Version {baseline_schema.version} differs from the deployed baseline "
                f"with {len(changes)} change(s)"
            )
        return changes


def _baseline_schema(baseline: Mapping[str, Any]) -> CompiledSchema:
    if "versions" in baseline:
        latest = baseline["versions"][-1]
        data = dict(latest["schema"])
        data["version"] = latest["version"]
        return TypeRegistry.from_dict(data).freeze()
    return CompiledSchema.from_dict(baseline)
