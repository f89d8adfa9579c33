"""Tests for domain models."""

import pytest
from pydantic import ValidationError

from etcd_registry.domain.enums import WatchEventType
from etcd_registry.domain.models import (
    LeaseHandle,
    MembershipSnapshot,
    ServiceInstanceRecord,
    WatchBatch,
    WatchEvent,
)


class TestServiceInstanceRecord:
    """Test cases for ServiceInstanceRecord."""

    def test_defaults(self):
        record = ServiceInstanceRecord(name="auth", address="10.0.0.1:9000")
        assert record.version == ""

    def test_is_hashable_and_frozen(self):
        record = ServiceInstanceRecord(name="auth", address="10.0.0.1:9000", version="v1")
        assert {record, record} == {record}
        with pytest.raises(ValidationError):
            record.version = "v2"

    @pytest.mark.parametrize(
        "name,address",
        [("", "10.0.0.1:9000"), ("auth", ""), ("a/b", "10.0.0.1:9000"), ("auth", "x/y:1")],
    )
    def test_rejects_invalid_segments(self, name, address):
        with pytest.raises(ValidationError):
            ServiceInstanceRecord(name=name, address=address)

    def test_ignores_unknown_fields(self):
        record = ServiceInstanceRecord.model_validate(
            {"name": "auth", "address": "10.0.0.1:9000", "zone": "eu-1"}
        )
        assert record == ServiceInstanceRecord(name="auth", address="10.0.0.1:9000")


class TestMembershipSnapshot:
    """Test cases for MembershipSnapshot."""

    def test_dedupes_and_sorts_by_address(self):
        records = [
            ServiceInstanceRecord(name="auth", address="10.0.0.2:9000"),
            ServiceInstanceRecord(name="auth", address="10.0.0.1:9000", version="v1"),
            ServiceInstanceRecord(name="auth", address="10.0.0.1:9000", version="v2"),
        ]

        snapshot = MembershipSnapshot.of("auth", records)

        assert snapshot.addresses() == ["10.0.0.1:9000", "10.0.0.2:9000"]
        assert len(snapshot) == 2
        # last write for an address wins
        assert snapshot.instances[0].version == "v2"

    def test_equal_regardless_of_order(self):
        a = ServiceInstanceRecord(name="auth", address="10.0.0.1:9000")
        b = ServiceInstanceRecord(name="auth", address="10.0.0.2:9000")
        assert MembershipSnapshot.of("auth", [a, b]) == MembershipSnapshot.of("auth", [b, a])

    def test_membership_by_address_or_record(self):
        record = ServiceInstanceRecord(name="auth", address="10.0.0.1:9000")
        snapshot = MembershipSnapshot.of("auth", [record])

        assert "10.0.0.1:9000" in snapshot
        assert record in snapshot
        assert "10.0.0.9:9000" not in snapshot
        assert list(snapshot) == [record]

    def test_empty(self):
        snapshot = MembershipSnapshot(service_name="auth")
        assert len(snapshot) == 0
        assert snapshot.addresses() == []


class TestStoreModels:
    """Test cases for store-facing models."""

    def test_lease_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            LeaseHandle(lease_id=1, ttl_seconds=0)

    def test_watch_batch_len(self):
        batch = WatchBatch(
            events=(
                WatchEvent(type=WatchEventType.PUT, key="/services/a/x:1", value=b"{}"),
                WatchEvent(type=WatchEventType.DELETE, key="/services/a/y:1"),
            ),
            revision=7,
        )
        assert len(batch) == 2
        assert batch.events[1].value == b""
