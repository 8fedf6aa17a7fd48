"""
Unit tests for the type registry and item type definitions.

Tests cover:
- Type registration
- Registry freezing
- Fingerprint generation
- Duplicate detection
- Item type invariants
"""

import pytest

from itemstore.schemac.errors import (
    DeclarationFormatError,
    DuplicateTypeNameError,
    InvalidFieldDefinitionError,
    MalformedKeyPathError,
    RegistryFrozenError,
    UnknownKeyPathFieldError,
)
from itemstore.schemac.schema.itemtype import ItemTypeDef, build_item_type, parse_item_type
from itemstore.schemac.schema.keypath import compile_key_paths
from itemstore.schemac.schema.registry import CompiledSchema, TypeRegistry
from itemstore.schemac.schema.types import field, type_alias

RESOURCE_ID = type_alias("ResourceID", "uuid")


def make_resource(name="Resource"):
    fields = [
        field(1, "id", RESOURCE_ID, initial_value="uuid"),
        field(2, "name", "string"),
    ]
    return build_item_type(name, fields, "/res-:id")


def make_registry():
    registry = TypeRegistry(aliases=[RESOURCE_ID])
    registry.register(make_resource())
    return registry


class TestTypeRegistry:
    """Tests for TypeRegistry."""

    def test_register_item_type(self):
        """Can register an item type."""
        registry = TypeRegistry(aliases=[RESOURCE_ID])
        Resource = make_resource()

        registry.register(Resource)

        assert registry.get("Resource") == Resource
        assert len(registry) == 1
        assert list(registry.item_types()) == [Resource]

    def test_duplicate_name_raises(self):
        """Registering a duplicate name raises error."""
        registry = make_registry()

        with pytest.raises(DuplicateTypeNameError, match="'Resource' already registered"):
            registry.register(make_resource())

    def test_duplicate_alias_raises(self):
        registry = TypeRegistry(aliases=[RESOURCE_ID])

        with pytest.raises(DuplicateTypeNameError):
            registry.register_alias(type_alias("ResourceID", "string"))

    def test_undeclared_alias_raises(self):
        """Fields may only use aliases registered with the schema."""
        registry = TypeRegistry()

        with pytest.raises(InvalidFieldDefinitionError, match="undeclared type alias 'ResourceID'"):
            registry.register(make_resource())

    def test_alias_kind_mismatch_raises(self):
        registry = TypeRegistry(aliases=[type_alias("ResourceID", "string")])

        with pytest.raises(InvalidFieldDefinitionError):
            registry.register(make_resource())

    def test_freeze_registry(self):
        """Can freeze registry."""
        registry = make_registry()

        schema = registry.freeze()

        assert registry.frozen is True
        assert isinstance(schema, CompiledSchema)
        assert schema.version == 0
        assert schema.fingerprint.startswith("sha256:")
        assert registry.fingerprint == schema.fingerprint
        assert "Resource" in schema
        assert schema.type_names() == ["Resource"]

    def test_frozen_registry_rejects_registration(self):
        """Cannot register after freeze."""
        registry = make_registry()
        registry.freeze()

        with pytest.raises(RegistryFrozenError, match="frozen"):
            registry.register(make_resource("Other"))
        with pytest.raises(RegistryFrozenError):
            registry.register_alias(type_alias("UserID", "uuid"))

    def test_freeze_twice_raises(self):
        registry = make_registry()
        registry.freeze()

        with pytest.raises(RegistryFrozenError, match="already frozen"):
            registry.freeze()

    def test_compiled_schema_is_read_only(self):
        schema = make_registry().freeze()

        with pytest.raises(TypeError):
            schema.item_types["Other"] = make_resource("Other")

    def test_fingerprint_deterministic(self):
        """Same schema produces same fingerprint regardless of registration order."""
        first = TypeRegistry(aliases=[RESOURCE_ID])
        first.register(make_resource("A"))
        first.register(make_resource("B"))

        second = TypeRegistry(aliases=[RESOURCE_ID])
        second.register(make_resource("B"))
        second.register(make_resource("A"))

        assert first.freeze().fingerprint == second.freeze().fingerprint

    def test_fingerprint_changes_with_schema(self):
        """Different schema produces different fingerprint."""
        fp1 = make_registry().freeze().fingerprint

        registry = TypeRegistry(aliases=[RESOURCE_ID])
        fields = [
            field(1, "id", RESOURCE_ID, initial_value="uuid"),
            field(2, "name", "string", required=False),
        ]
        registry.register(build_item_type("Resource", fields, "/res-:id"))
        fp2 = registry.freeze().fingerprint

        assert fp1 != fp2

    def test_to_dict_from_dict(self):
        """Registry can be serialized and deserialized."""
        registry = make_registry()
        data = registry.to_dict()

        restored = TypeRegistry.from_dict(data)

        assert restored.get("Resource") == registry.get("Resource")
        assert restored.freeze().fingerprint == registry.freeze().fingerprint

    def test_compiled_schema_from_dict(self, base_schema):
        restored = CompiledSchema.from_dict(base_schema.to_dict())

        assert restored.fingerprint == base_schema.fingerprint
        assert restored.get_item_type("Lease") == base_schema.get_item_type("Lease")

    def test_from_json(self):
        schema = make_registry().freeze()

        restored = TypeRegistry.from_json(schema.to_json())

        assert restored.freeze().fingerprint == schema.fingerprint


class TestItemTypeDef:
    """Tests for ItemTypeDef invariants."""

    def test_parse_item_type(self, base_schema):
        Lease = base_schema.get_item_type("Lease")

        assert Lease.get_field_names() == ["id", "user_id", "res_id", "reason", "duration"]
        assert [f.field_id for f in Lease.fields] == [1, 2, 3, 4, 5]
        assert Lease.primary_key_path.template == "/user-:user_id/res-:res_id/lease-:id"
        assert Lease.ttl.field_name == "duration"
        assert Lease.next_field_id() == 6

    def test_get_field(self, base_schema):
        Lease = base_schema.get_item_type("Lease")

        assert Lease.get_field("reason").field_id == 4
        assert Lease.get_field(4).name == "reason"
        assert Lease.get_field("missing") is None

    def test_required_fields(self, base_schema):
        Lease = base_schema.get_item_type("Lease")

        assert [f.name for f in Lease.get_required_fields()] == ["id", "user_id", "res_id", "reason"]

    def test_duplicate_field_names(self):
        fields = [field(1, "id", "uuid"), field(2, "id", "string")]

        with pytest.raises(InvalidFieldDefinitionError, match="Duplicate field name"):
            ItemTypeDef(name="Thing", fields=tuple(fields))

    def test_duplicate_field_ids(self):
        fields = [field(1, "id", "uuid"), field(1, "name", "string")]

        with pytest.raises(InvalidFieldDefinitionError, match="Duplicate field_id"):
            build_item_type("Thing", fields, "/thing-:id")

    def test_requires_key_path(self):
        with pytest.raises(MalformedKeyPathError, match="no key path"):
            ItemTypeDef(name="Thing", fields=(field(1, "id", "uuid"),))

    def test_key_path_bound_to_other_fields(self):
        """Key paths compiled for another field set are rejected."""
        key_paths = compile_key_paths("/thing-:thing_id", [field(1, "thing_id", "uuid")])

        with pytest.raises(UnknownKeyPathFieldError):
            ItemTypeDef(name="Thing", fields=(field(1, "id", "uuid"),), key_paths=key_paths)

    def test_optional_key_path_field(self):
        """Records lacking the field could not be addressed."""
        fields = [field(1, "id", "uuid"), field(2, "slug", "string", required=False)]

        with pytest.raises(MalformedKeyPathError, match="optional field 'slug'") as exc_info:
            build_item_type("Thing", fields, ["/thing-:id", "/thing_slug-:slug"])

        assert exc_info.value.field_name == "slug"

    def test_optional_key_path_field_with_value(self):
        fields = [
            field(1, "id", "uuid", required=False, initial_value="uuid"),
            field(2, "slug", "string", required=False, default="untitled"),
        ]

        Thing = build_item_type("Thing", fields, ["/thing-:id", "/thing_slug-:slug"])

        assert len(Thing.key_paths) == 2

    def test_invalid_type_name(self):
        with pytest.raises(DeclarationFormatError, match="Invalid item type name"):
            build_item_type("Bad Name", [field(1, "id", "uuid")], "/x-:id")

    def test_parse_unknown_attribute(self):
        declaration = {
            "name": "Thing",
            "keyPath": "/thing-:id",
            "fields": {"id": {"type": "uuid"}},
            "indexes": [],
        }

        with pytest.raises(DeclarationFormatError, match="unknown attribute"):
            parse_item_type(declaration)

    def test_parse_empty_fields(self):
        with pytest.raises(DeclarationFormatError, match="non-empty field map"):
            parse_item_type({"name": "Thing", "keyPath": "/thing-:id", "fields": {}})

    def test_with_fields_rename(self, base_schema):
        Lease = base_schema.get_item_type("Lease")
        fields = [
            f.evolve(name="resource_id") if f.name == "res_id" else f for f in Lease.fields
        ]

        renamed = Lease.with_fields(fields, renamed=("res_id", "resource_id"))

        assert [kp.template for kp in renamed.key_paths] == [
            "/user-:user_id/res-:resource_id/lease-:id",
            "/res-:resource_id/lease-:id",
            "/lease-:id",
        ]
        assert renamed.get_field("resource_id").field_id == 3
