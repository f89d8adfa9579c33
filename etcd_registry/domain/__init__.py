"""Domain layer - records, snapshots, key layout and errors."""

from .enums import ExpiryPolicy, KeepAliveOutcome, PayloadFormat, WatchEventType
from .exceptions import (
    DecodeError,
    InvalidTargetError,
    LeaseNotFoundError,
    RegistryClosedError,
    RegistryError,
    StoreError,
    StoreNotConnectedError,
)
from .models import (
    KeepAliveAck,
    LeaseHandle,
    MembershipSnapshot,
    ServiceInstanceRecord,
    StoreEntry,
    WatchBatch,
    WatchEvent,
)
from .patterns import ServiceKeys
from .types import SnapshotCallback

__all__ = [
    "DecodeError",
    "ExpiryPolicy",
    "InvalidTargetError",
    "KeepAliveAck",
    "KeepAliveOutcome",
    "LeaseHandle",
    "LeaseNotFoundError",
    "MembershipSnapshot",
    "PayloadFormat",
    "RegistryClosedError",
    "RegistryError",
    "ServiceInstanceRecord",
    "ServiceKeys",
    "SnapshotCallback",
    "StoreEntry",
    "StoreError",
    "StoreNotConnectedError",
    "WatchBatch",
    "WatchEvent",
    "WatchEventType",
]
