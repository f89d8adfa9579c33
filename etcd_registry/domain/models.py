"""Domain models using Pydantic for validation."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import WatchEventType


class ServiceInstanceRecord(BaseModel):
    """One running instance of a service.

    Records are immutable and hashable. A re-registration replaces the stored
    record as a whole, it never patches one in place.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",  # forward compatible with richer payloads
        strict=True,
        json_schema_extra={
            "example": {"name": "auth", "address": "10.0.0.1:9000", "version": "v1"}
        },
    )

    name: str = Field(..., min_length=1, description="Logical service name")
    address: str = Field(..., min_length=1, description="host:port endpoint")
    version: str = Field(default="", description="Opaque instance metadata")

    @field_validator("name", "address")
    @classmethod
    def validate_key_segment(cls, v: str) -> str:
        """Name and address become key segments and cannot contain '/'."""
        if "/" in v:
            raise ValueError(f"'{v}' must not contain '/'")
        return v


class StoreEntry(BaseModel):
    """Raw key/value pair returned by a prefix read."""

    model_config = ConfigDict(frozen=True, strict=True)

    key: str = Field(..., min_length=1)
    value: bytes
    revision: int = Field(default=0, ge=0, description="Store revision of the last write")
    lease_id: int | None = Field(default=None, description="Lease attached to the key")


class WatchEvent(BaseModel):
    """Single change observed under a watched prefix."""

    model_config = ConfigDict(frozen=True, strict=True)

    type: WatchEventType
    key: str = Field(..., min_length=1)
    value: bytes = b""


class WatchBatch(BaseModel):
    """Events delivered together by one watch response."""

    model_config = ConfigDict(frozen=True, strict=True)

    events: tuple[WatchEvent, ...] = ()
    revision: int = Field(default=0, ge=0)

    def __len__(self) -> int:
        return len(self.events)


class LeaseHandle(BaseModel):
    """Store lease granted for one registration."""

    model_config = ConfigDict(frozen=True, strict=True)

    lease_id: int
    ttl_seconds: int = Field(..., ge=1)


class KeepAliveAck(BaseModel):
    """One renewal acknowledgement from the store."""

    model_config = ConfigDict(frozen=True, strict=True)

    lease_id: int
    ttl_seconds: int


class MembershipSnapshot(BaseModel):
    """Full set of live instances of one service at one point in time.

    Instances are deduplicated by address and kept ordered by address so two
    snapshots of the same membership compare equal.
    """

    model_config = ConfigDict(frozen=True)

    service_name: str = Field(..., min_length=1)
    instances: tuple[ServiceInstanceRecord, ...] = ()

    @field_validator("instances", mode="before")
    @classmethod
    def normalize_instances(cls, v: Any) -> Any:
        """Drop duplicate addresses and sort."""
        if v is None:
            return ()
        by_address: dict[str, Any] = {}
        for record in v:
            if isinstance(record, ServiceInstanceRecord):
                address = record.address
            else:
                address = record["address"]
            by_address[address] = record
        return tuple(by_address[address] for address in sorted(by_address))

    @classmethod
    def of(cls, service_name: str, records: Iterable[ServiceInstanceRecord]) -> MembershipSnapshot:
        """Build a snapshot from any iterable of records."""
        return cls(service_name=service_name, instances=tuple(records))

    def addresses(self) -> list[str]:
        """Bare addresses, in snapshot order."""
        return [record.address for record in self.instances]

    def __len__(self) -> int:
        return len(self.instances)

    def __iter__(self) -> Iterator[ServiceInstanceRecord]:  # type: ignore[override]
        return iter(self.instances)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, str):
            return any(record.address == item for record in self.instances)
        return item in self.instances
