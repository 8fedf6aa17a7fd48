"""
Unit tests for field definitions.

Tests cover:
- FieldDef creation through field() and validate_field()
- Type aliases
- Initial value and metadata derivation rules
- Validation expression symbol checking
- Serialization
"""

import uuid

import pytest

from itemstore.schemac.errors import InvalidFieldDefinitionError
from itemstore.schemac.schema.expressions import ExpressionError, undefined_symbols
from itemstore.schemac.schema.types import (
    FieldDef,
    FieldKind,
    InitialValue,
    MetadataSource,
    field,
    type_alias,
    validate_field,
)

USER_ID = type_alias("UserID", "uuid")


class TestFieldDef:
    """Tests for FieldDef."""

    def test_create_string_field(self):
        """Fields are required unless declared otherwise."""
        f = field(1, "displayName", "string")
        assert f.field_id == 1
        assert f.name == "displayName"
        assert f.kind == FieldKind.STRING
        assert f.required is True

    def test_alias_delegates_to_primitive(self):
        """An alias keeps its display name but uses the primitive kind."""
        f = field(1, "id", USER_ID, initial_value="uuid")
        assert f.kind == FieldKind.UUID
        assert f.alias == "UserID"
        assert f.type_name == "UserID"
        assert f.initial_value == InitialValue.UUID

    def test_field_id_bounds(self):
        with pytest.raises(InvalidFieldDefinitionError, match="field_id"):
            field(0, "name", "string")
        with pytest.raises(InvalidFieldDefinitionError, match="field_id"):
            field(70000, "name", "string")

    def test_invalid_field_name(self):
        with pytest.raises(InvalidFieldDefinitionError, match="Invalid field name"):
            field(1, "user-id", "string")

    def test_validate_required_value(self):
        f = field(1, "reason", "string")
        is_valid, error = f.validate_value(None)
        assert not is_valid
        assert "required" in error

    def test_validate_value_kind(self):
        f = field(1, "count", "uint", required=False)
        assert f.validate_value(3) == (True, None)
        is_valid, _ = f.validate_value(-1)
        assert not is_valid
        is_valid, _ = f.validate_value(True)
        assert not is_valid

    def test_default_must_fit_kind(self):
        with pytest.raises(InvalidFieldDefinitionError, match="default value"):
            field(1, "reason", "string", required=False, default=5)

    def test_to_dict(self):
        f = field(1, "id", USER_ID, initial_value="uuid", description="Lease owner")
        d = f.to_dict()

        assert d == {
            "field_id": 1,
            "name": "id",
            "kind": "uuid",
            "required": True,
            "alias": "UserID",
            "initial_value": "uuid",
            "description": "Lease owner",
        }

    def test_from_dict(self):
        d = {
            "field_id": 7,
            "name": "createdAt",
            "kind": "timestampMilliseconds",
            "from_metadata": "createdAtTime",
        }
        f = FieldDef.from_dict(d)

        assert f.field_id == 7
        assert f.kind == FieldKind.TIMESTAMP_MILLISECONDS
        assert f.from_metadata == MetadataSource.CREATED_AT_TIME
        assert f.required is True

    def test_uuid_default_is_canonical(self):
        f = field(1, "owner", "uuid", required=False, default=uuid.UUID(int=1))

        assert f.default == "00000000-0000-0000-0000-000000000001"
        assert FieldDef.from_dict(f.to_dict()) == f

    def test_bytes_default_round_trip(self):
        f = field(1, "token", "bytes", required=False, default=b"\x00\xff")

        assert f.to_dict()["default"] == "00ff"
        assert FieldDef.from_dict(f.to_dict()).default == b"\x00\xff"

    def test_bytes_default_from_text(self):
        f = field(1, "token", "bytes", required=False, default="abc")
        assert f.default == b"abc"

    def test_evolve_revalidates(self):
        f = field(1, "reason", "string")
        relaxed = f.evolve(required=False, default="No reason given")
        assert relaxed.required is False
        assert relaxed.default == "No reason given"
        assert f.required is True

        with pytest.raises(InvalidFieldDefinitionError):
            f.evolve(default=12)


class TestValidateField:
    """Tests for building fields from raw declarations."""

    def test_unknown_type_tag(self):
        with pytest.raises(InvalidFieldDefinitionError, match="Unknown type 'strng'"):
            validate_field("name", {"type": "strng"}, 1)

    def test_alias_resolved_from_declarations(self):
        f = validate_field("user_id", {"type": "UserID"}, 2, {"UserID": USER_ID})
        assert f.kind == FieldKind.UUID
        assert f.alias == "UserID"

    def test_missing_type(self):
        with pytest.raises(InvalidFieldDefinitionError, match="has no type"):
            validate_field("name", {"required": False}, 1)

    def test_uuid_generator_on_string_field(self):
        """A generated UUID cannot fill a string field."""
        with pytest.raises(InvalidFieldDefinitionError, match="initial value 'uuid'"):
            validate_field("id", {"type": "string", "initialValue": "uuid"}, 1)

    def test_uuid_generator_on_uuid_alias(self):
        f = validate_field("id", {"type": "UserID", "initialValue": "uuid"}, 1, {"UserID": USER_ID})
        assert f.initial_value == InitialValue.UUID

    def test_unknown_generator(self):
        with pytest.raises(InvalidFieldDefinitionError, match="unknown initial value generator"):
            validate_field("id", {"type": "uuid", "initialValue": "ulid"}, 1)

    def test_metadata_on_timestamp(self):
        f = validate_field(
            "lastTouched",
            {"type": "timestampMilliseconds", "fromMetadata": "lastModifiedAtTime"},
            6,
        )
        assert f.from_metadata == MetadataSource.LAST_MODIFIED_AT_TIME

    def test_metadata_on_non_timestamp(self):
        with pytest.raises(InvalidFieldDefinitionError, match="fromMetadata"):
            validate_field("createdAt", {"type": "string", "fromMetadata": "createdAtTime"}, 1)

    def test_unknown_metadata_source(self):
        with pytest.raises(InvalidFieldDefinitionError, match="unknown metadata source"):
            validate_field(
                "createdAt",
                {"type": "timestampMilliseconds", "fromMetadata": "deletedAtTime"},
                1,
            )

    def test_valid_expression_accepted(self):
        f = validate_field("email", {"type": "string", "valid": 'this.matches("[^@]+@[^@]+")'}, 3)
        assert f.valid == 'this.matches("[^@]+@[^@]+")'

    def test_valid_expression_undefined_symbol(self):
        with pytest.raises(InvalidFieldDefinitionError, match="undefined symbol"):
            validate_field("email", {"type": "string", "valid": 'that.matches("@")'}, 3)

    def test_valid_expression_unknown_method(self):
        with pytest.raises(InvalidFieldDefinitionError, match="matchez"):
            validate_field("email", {"type": "string", "valid": 'this.matchez("@")'}, 3)

    def test_required_must_be_bool(self):
        with pytest.raises(InvalidFieldDefinitionError, match="required must be a boolean"):
            validate_field("reason", {"type": "string", "required": "no"}, 1)

    def test_unknown_attribute(self):
        with pytest.raises(InvalidFieldDefinitionError, match="unknown attribute"):
            validate_field("reason", {"type": "string", "indexed": True}, 1)

    def test_error_carries_type_context(self):
        with pytest.raises(InvalidFieldDefinitionError) as exc_info:
            validate_field("email", {"type": "bogus"}, 3, type_name="User")

        assert exc_info.value.type_name == "User"
        assert exc_info.value.field_name == "email"
        assert "User" in exc_info.value.message


class TestTypeAlias:
    """Tests for type aliases."""

    def test_alias_of_unknown_kind(self):
        with pytest.raises(InvalidFieldDefinitionError, match="Invalid field kind"):
            type_alias("UserID", "guid")

    def test_alias_cannot_shadow_primitive(self):
        with pytest.raises(InvalidFieldDefinitionError, match="shadows"):
            type_alias("uuid", "string")

    def test_kind_flags(self):
        assert FieldKind.TIMESTAMP_SECONDS.is_timestamp
        assert FieldKind.DURATION_MILLISECONDS.is_duration
        assert not FieldKind.UUID.is_timestamp
        assert not FieldKind.INT.is_duration


class TestExpressions:
    """Tests for validation expression symbol checking."""

    def test_known_symbols(self):
        assert undefined_symbols("size(this) > 0 && size(this) <= 280") == []

    def test_membership_operator(self):
        assert undefined_symbols('this in ["a", "b"]') == []

    def test_reports_each_symbol_once(self):
        assert undefined_symbols("value > limit && value < 10") == ["value", "limit"]

    def test_unterminated_string(self):
        with pytest.raises(ExpressionError, match="unterminated string"):
            undefined_symbols('this.matches("abc')

    def test_unbalanced_parentheses(self):
        with pytest.raises(ExpressionError, match="unbalanced"):
            undefined_symbols("size(this > 0")

    def test_empty_expression(self):
        with pytest.raises(ExpressionError, match="empty"):
            undefined_symbols("   ")
