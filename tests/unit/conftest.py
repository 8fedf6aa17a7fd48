"""
Shared declarations for schema compiler unit tests.

The Lease/User/Resource declarations model a small resource-leasing
service: users take time-limited leases on resources.
"""

import copy

import pytest

from itemstore.schemac.schema.itemtype import parse_item_type
from itemstore.schemac.schema.registry import TypeRegistry
from itemstore.schemac.schema.types import type_alias

ALIASES = {"UserID": "uuid", "ResourceID": "uuid", "LeaseID": "uuid"}

USER = {
    "name": "User",
    "keyPath": ["/user-:id", "/user_email-:email"],
    "fields": {
        "id": {"type": "UserID", "initialValue": "uuid"},
        "displayName": {"type": "string"},
        "email": {"type": "string", "valid": 'this.matches("[^@]+@[^@]+")'},
        "createdAt": {"type": "timestampMilliseconds", "fromMetadata": "createdAtTime"},
    },
}

RESOURCE = {
    "name": "Resource",
    "keyPath": "/res-:id",
    "fields": {
        "id": {"type": "ResourceID", "initialValue": "uuid"},
        "name": {"type": "string"},
        "createdAt": {"type": "timestampMilliseconds", "fromMetadata": "createdAtTime"},
    },
}

LEASE = {
    "name": "Lease",
    "keyPath": [
        "/user-:user_id/res-:res_id/lease-:id",
        "/res-:res_id/lease-:id",
        "/lease-:id",
    ],
    "ttl": {"source": "fromLastModified", "field": "duration"},
    "fields": {
        "id": {"type": "LeaseID", "initialValue": "uuid"},
        "user_id": {"type": "UserID"},
        "res_id": {"type": "ResourceID"},
        "reason": {"type": "string"},
        "duration": {"type": "durationSeconds", "required": False},
    },
}

ADD_APPROVER = {
    "version": 1,
    "description": "Add approver and make reason optional",
    "changes": [
        {
            "type": "Lease",
            "operations": [
                {"op": "addField", "name": "approver", "field": {"type": "UserID", "required": False}},
                {"op": "renameField", "from": "res_id", "to": "resource_id"},
                {"op": "renameField", "from": "duration", "to": "duration_seconds"},
            ],
        }
    ],
}

REASON_NOT_REQUIRED = {
    "version": 2,
    "description": "Make reason not required",
    "changes": [
        {
            "type": "Lease",
            "operations": [
                {"op": "markFieldAsNotRequired", "name": "reason", "backfill": "No reason given"},
            ],
        }
    ],
}


def alias_objects():
    return [type_alias(name, kind) for name, kind in ALIASES.items()]


@pytest.fixture
def declarations():
    """Fresh copies of the base item type declarations."""
    return copy.deepcopy([USER, RESOURCE, LEASE])


@pytest.fixture
def migrations():
    return copy.deepcopy([ADD_APPROVER, REASON_NOT_REQUIRED])


@pytest.fixture
def base_schema(declarations):
    """Frozen version 0 schema of the declarations."""
    registry = TypeRegistry(version=0, aliases=alias_objects())
    for declaration in declarations:
        registry.register(parse_item_type(declaration, registry.aliases))
    return registry.freeze()
