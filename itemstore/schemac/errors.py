"""
Error types for the itemstore schema compiler.

This module defines every exception raised while compiling declarations
or applying migrations:
- SchemaCompilerError: Base exception
- DefinitionError: Malformed field, key path or TTL declarations
- MigrationError: Illegal or out-of-order migration steps
- RegistryError: Duplicate names and post-freeze mutation

Invariants:
    - All errors inherit from SchemaCompilerError
    - Errors carry the item type, field and version they concern (when known)
    - Errors are never retried or auto-corrected by the compiler
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SchemaCompilerError(Exception):
    """Base exception for all schema compiler errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    default_code = "SCHEMA_COMPILER_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}


# ---------------------------------------------------------------------------
# Definition errors
# ---------------------------------------------------------------------------


class DefinitionError(SchemaCompilerError):
    """An item type declaration is invalid.

    Fatal to the compilation of the schema version that contains it.

    Attributes:
        type_name: The item type being declared (if known)
        field_name: The offending field (if any)
    """

    default_code = "DEFINITION_ERROR"

    def __init__(
        self,
        message: str,
        type_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"type_name": type_name, "field_name": field_name},
        )
        self.type_name = type_name
        self.field_name = field_name


class InvalidFieldDefinitionError(DefinitionError):
    """Field declaration is invalid.

    Raised when:
    - Type tag is unknown
    - Initial value generator does not fit the field type
    - fromMetadata is bound to a non-timestamp field
    - Validation expression references an undefined symbol
    """

    default_code = "INVALID_FIELD_DEFINITION"


class MalformedKeyPathError(DefinitionError):
    """Key path template has bad syntax."""

    default_code = "MALFORMED_KEY_PATH"

    def __init__(
        self,
        message: str,
        template: Optional[str] = None,
        type_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(message, type_name=type_name, field_name=field_name)
        self.template = template
        self.details["template"] = template


class UnknownKeyPathFieldError(MalformedKeyPathError):
    """Key path placeholder does not name a declared field."""

    default_code = "UNKNOWN_KEY_PATH_FIELD"


class DuplicateKeyPathFieldError(MalformedKeyPathError):
    """The same field appears twice in one key path template."""

    default_code = "DUPLICATE_KEY_PATH_FIELD"


class UnknownTTLFieldError(DefinitionError):
    """TTL policy references a field that does not exist."""

    default_code = "UNKNOWN_TTL_FIELD"


class InvalidTTLFieldTypeError(DefinitionError):
    """TTL policy references a field that is not duration-typed."""

    default_code = "INVALID_TTL_FIELD_TYPE"


class InvalidTTLSourceError(DefinitionError):
    """TTL policy source is not a recognized event."""

    default_code = "INVALID_TTL_SOURCE"


class DeclarationFormatError(DefinitionError):
    """A declaration document does not have the expected shape."""

    default_code = "DECLARATION_FORMAT"


# ---------------------------------------------------------------------------
# Migration errors
# ---------------------------------------------------------------------------


class MigrationError(SchemaCompilerError):
    """A migration step is illegal.

    Fatal to that step only; the prior schema version stays intact.

    Attributes:
        version: Version number of the step being applied (if known)
        type_name: Item type targeted by the operation (if known)
        field_name: Field targeted by the operation (if any)
    """

    default_code = "MIGRATION_ERROR"

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        type_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "version": version,
                "type_name": type_name,
                "field_name": field_name,
            },
        )
        self.version = version
        self.type_name = type_name
        self.field_name = field_name


class OutOfOrderMigrationError(MigrationError):
    """Step version is not exactly one past the current version."""

    default_code = "OUT_OF_ORDER_MIGRATION"


class UnknownItemTypeError(MigrationError):
    """Migration targets an item type that does not exist."""

    default_code = "UNKNOWN_ITEM_TYPE"


class FieldAlreadyExistsError(MigrationError):
    """Added or renamed-to field name is already taken."""

    default_code = "FIELD_ALREADY_EXISTS"


class UnsafeRequiredAddError(MigrationError):
    """Required field added without a retroactive value for old records."""

    default_code = "UNSAFE_REQUIRED_ADD"


class UnknownFieldError(MigrationError):
    """Migration operation references a field that does not exist."""

    default_code = "UNKNOWN_FIELD"


class AlreadyOptionalError(MigrationError):
    """Field is already not required."""

    default_code = "ALREADY_OPTIONAL"


class IncompatibleTypeChangeError(MigrationError):
    """Field type change alters the underlying primitive kind."""

    default_code = "INCOMPATIBLE_TYPE_CHANGE"


class MigrationStepFailedError(MigrationError):
    """A migration step was rejected as a whole.

    No operation of the step is applied when this is raised.

    Attributes:
        cause: The first operation failure inside the step
    """

    default_code = "MIGRATION_STEP_FAILED"

    def __init__(
        self,
        version: int,
        cause: SchemaCompilerError,
        type_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            f"Migration step {version} failed: {cause.message}",
            version=version,
            type_name=type_name,
            field_name=getattr(cause, "field_name", None),
        )
        self.cause = cause
        self.details["cause"] = cause.code


# ---------------------------------------------------------------------------
# Registry errors
# ---------------------------------------------------------------------------


class RegistryError(SchemaCompilerError):
    """Programming error in how the registry is used."""

    default_code = "REGISTRY_ERROR"

    def __init__(self, message: str, type_name: Optional[str] = None) -> None:
        super().__init__(message, details={"type_name": type_name})
        self.type_name = type_name


class DuplicateTypeNameError(RegistryError):
    """An item type with the same name is already registered."""

    default_code = "DUPLICATE_TYPE_NAME"


class RegistryFrozenError(RegistryError):
    """Raised when attempting to modify a frozen registry."""

    default_code = "REGISTRY_FROZEN"
