"""
Unit tests for TTL policy resolution.
"""

import pytest

from itemstore.schemac.errors import (
    InvalidTTLFieldTypeError,
    InvalidTTLSourceError,
    UnknownTTLFieldError,
)
from itemstore.schemac.schema.ttl import TTLSource, resolve_ttl
from itemstore.schemac.schema.types import FieldKind, MetadataSource, field


@pytest.fixture
def fields():
    return [
        field(1, "id", "uuid"),
        field(2, "reason", "string"),
        field(3, "duration", "durationSeconds", required=False),
        field(4, "grace", "durationMilliseconds", required=False),
    ]


class TestResolveTTL:
    """Tests for resolve_ttl()."""

    def test_from_last_modified(self, fields):
        policy = resolve_ttl({"source": "fromLastModified", "field": "duration"}, fields)

        assert policy.source == TTLSource.FROM_LAST_MODIFIED
        assert policy.field_name == "duration"
        assert policy.duration_kind == FieldKind.DURATION_SECONDS
        assert policy.to_dict() == {
            "source": "fromLastModified",
            "field": "duration",
            "event": "lastModifiedAtTime",
            "unit": "seconds",
            "refresh_on_update": True,
        }

    def test_from_creation(self, fields):
        policy = resolve_ttl({"source": "fromCreation", "field": "grace"}, fields)

        assert policy.source.event == MetadataSource.CREATED_AT_TIME
        assert not policy.source.refreshes_on_update
        assert policy.unit == "milliseconds"

    def test_no_policy(self, fields):
        assert resolve_ttl(None, fields) is None

    def test_unknown_field(self, fields):
        with pytest.raises(UnknownTTLFieldError) as exc_info:
            resolve_ttl({"source": "fromLastModified", "field": "ttl"}, fields, type_name="Lease")

        assert exc_info.value.field_name == "ttl"
        assert exc_info.value.type_name == "Lease"

    def test_non_duration_field(self, fields):
        with pytest.raises(InvalidTTLFieldTypeError, match="duration-typed"):
            resolve_ttl({"source": "fromLastModified", "field": "reason"}, fields)

    def test_unknown_source(self, fields):
        with pytest.raises(InvalidTTLSourceError, match="fromNowhere"):
            resolve_ttl({"source": "fromNowhere", "field": "duration"}, fields)

    def test_not_a_mapping(self, fields):
        with pytest.raises(InvalidTTLSourceError):
            resolve_ttl("fromLastModified", fields)

    def test_resolved_policy_is_rechecked(self, fields):
        policy = resolve_ttl({"source": "fromLastModified", "field": "duration"}, fields)
        remaining = [f for f in fields if f.name != "duration"]

        with pytest.raises(UnknownTTLFieldError):
            resolve_ttl(policy, remaining)

    def test_rename_field(self, fields):
        policy = resolve_ttl({"source": "fromLastModified", "field": "duration"}, fields)

        renamed = policy.rename_field("duration", "duration_seconds")
        assert renamed.field_name == "duration_seconds"
        assert policy.rename_field("reason", "why") is policy
