"""In-process implementation of the KV store port.

Behaves like a single-node etcd for the subset the registry uses: global
revisions, leases that expire on a monotonic clock and take their keys with
them, and prefix watches that receive one batch per mutation. Used by the
tests, by local development and by the CLI's ``--memory`` mode.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field

from ..domain.enums import WatchEventType
from ..domain.exceptions import LeaseNotFoundError, StoreError, StoreNotConnectedError
from ..domain.models import LeaseHandle, StoreEntry, WatchBatch, WatchEvent
from ..ports.kv_store import KeepAliveStream, KVStorePort, WatchStream
from ..ports.logger import LoggerPort
from .simple_logger import SimpleLogger
from .streams import PeriodicKeepAliveStream, QueueWatchStream


@dataclass
class _StoredValue:
    value: bytes
    revision: int
    lease_id: int | None = None


@dataclass
class _Lease:
    ttl: int
    deadline: float
    keys: set[str] = field(default_factory=set)


class InMemoryKVStore(KVStorePort):
    """Single-process store with etcd semantics."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        keepalive_interval_ratio: float = 1 / 3,
        sweep_interval: float = 0.05,
        logger: LoggerPort | None = None,
    ):
        """Initialize the store.

        Args:
            clock: Monotonic clock used for lease deadlines
            keepalive_interval_ratio: Renewal period as a fraction of the lease TTL
            sweep_interval: How often the reaper looks for expired leases
            logger: Optional logger
        """
        self._clock = clock
        self._keepalive_ratio = keepalive_interval_ratio
        self._sweep_interval = sweep_interval
        self._logger = logger or SimpleLogger("etcd_registry.in_memory_store")

        self._data: dict[str, _StoredValue] = {}
        self._leases: dict[int, _Lease] = {}
        self._lease_ids = itertools.count(0x1000)
        self._revision = 0
        self._watchers: list[QueueWatchStream] = []
        self._faults: dict[str, deque[Exception]] = defaultdict(deque)
        self._connected = False
        self._reaper: asyncio.Task | None = None

    # Lifecycle
    async def connect(self) -> None:
        self._connected = True
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_loop())

    async def close(self) -> None:
        self._connected = False
        if self._reaper is not None:
            self._reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper
            self._reaper = None
        for watcher in list(self._watchers):
            await watcher.cancel()
        self._watchers.clear()

    async def is_connected(self) -> bool:
        return self._connected

    # Fault injection
    def fail_next(self, operation: str, error: Exception | None = None) -> None:
        """Make the next call of ``operation`` raise ``error`` (a StoreError by default).

        Operations: put, get_prefix, delete, grant_lease, revoke_lease,
        open_keepalive, refresh, watch_prefix.
        """
        self._faults[operation].append(
            error or StoreError(f"Injected failure in {operation}", operation=operation)
        )

    def break_watches(self, error: Exception | None = None) -> None:
        """Fail every open watch stream, as a dropped connection would."""
        for watcher in list(self._watchers):
            watcher.fail(error or StoreError("Watch stream broken", operation="watch"))
        self._watchers.clear()

    def expire_lease(self, lease_id: int) -> None:
        """Expire a lease now, regardless of its deadline."""
        if lease_id in self._leases:
            self._drop_lease(lease_id)

    # Introspection helpers for tests
    @property
    def revision(self) -> int:
        return self._revision

    def lease_ids(self) -> list[int]:
        self._sweep()
        return sorted(self._leases)

    def lease_of(self, key: str) -> int | None:
        stored = self._data.get(key)
        return stored.lease_id if stored else None

    def watcher_count(self) -> int:
        return len(self._watchers)

    # KVStorePort
    async def put(self, key: str, value: bytes, lease: LeaseHandle | None = None) -> int:
        self._check("put")
        self._sweep()

        lease_id = lease.lease_id if lease is not None else None
        if lease_id is not None and lease_id not in self._leases:
            raise LeaseNotFoundError(lease_id, operation="put")

        previous = self._data.get(key)
        if previous is not None and previous.lease_id is not None:
            old = self._leases.get(previous.lease_id)
            if old is not None:
                old.keys.discard(key)

        self._revision += 1
        self._data[key] = _StoredValue(value=value, revision=self._revision, lease_id=lease_id)
        if lease_id is not None:
            self._leases[lease_id].keys.add(key)

        self._emit([WatchEvent(type=WatchEventType.PUT, key=key, value=value)])
        return self._revision

    async def get_prefix(self, prefix: str) -> list[StoreEntry]:
        self._check("get_prefix")
        self._sweep()
        return [
            StoreEntry(key=key, value=stored.value, revision=stored.revision, lease_id=stored.lease_id)
            for key, stored in sorted(self._data.items())
            if key.startswith(prefix)
        ]

    async def delete(self, key: str) -> bool:
        self._check("delete")
        self._sweep()
        if key not in self._data:
            return False
        self._delete_keys([key])
        return True

    async def grant_lease(self, ttl_seconds: int) -> LeaseHandle:
        self._check("grant_lease")
        if ttl_seconds < 1:
            raise StoreError(f"TTL must be positive, got {ttl_seconds}", operation="grant_lease")
        lease_id = next(self._lease_ids)
        self._leases[lease_id] = _Lease(ttl=ttl_seconds, deadline=self._clock() + ttl_seconds)
        return LeaseHandle(lease_id=lease_id, ttl_seconds=ttl_seconds)

    async def revoke_lease(self, lease_id: int) -> None:
        self._check("revoke_lease")
        self._sweep()
        if lease_id not in self._leases:
            raise LeaseNotFoundError(lease_id, operation="revoke_lease")
        self._drop_lease(lease_id)

    async def open_keepalive(self, lease: LeaseHandle) -> KeepAliveStream:
        self._check("open_keepalive")
        ttl = await self._refresh(lease.lease_id)
        if ttl <= 0:
            raise LeaseNotFoundError(lease.lease_id, operation="open_keepalive")
        return PeriodicKeepAliveStream(
            lease,
            refresh=self._refresh,
            interval=max(lease.ttl_seconds * self._keepalive_ratio, 0.01),
            first_ttl=ttl,
            clock=self._clock,
            logger=self._logger,
        )

    async def watch_prefix(self, prefix: str) -> WatchStream:
        self._check("watch_prefix")
        stream: QueueWatchStream

        async def detach() -> None:
            with contextlib.suppress(ValueError):
                self._watchers.remove(stream)

        stream = QueueWatchStream(prefix, on_cancel=detach)
        self._watchers.append(stream)
        return stream

    # Internals
    async def _refresh(self, lease_id: int) -> int:
        self._check("refresh")
        self._sweep()
        lease = self._leases.get(lease_id)
        if lease is None:
            return 0
        lease.deadline = self._clock() + lease.ttl
        return lease.ttl

    def _check(self, operation: str) -> None:
        if not self._connected:
            raise StoreNotConnectedError(operation)
        faults = self._faults.get(operation)
        if faults:
            raise faults.popleft()

    def _sweep(self) -> None:
        now = self._clock()
        for lease_id in [lid for lid, lease in self._leases.items() if lease.deadline <= now]:
            self._logger.debug("Lease expired", lease_id=lease_id)
            self._drop_lease(lease_id)

    def _drop_lease(self, lease_id: int) -> None:
        lease = self._leases.pop(lease_id)
        self._delete_keys(sorted(key for key in lease.keys if key in self._data))

    def _delete_keys(self, keys: list[str]) -> None:
        if not keys:
            return
        self._revision += 1
        for key in keys:
            stored = self._data.pop(key)
            if stored.lease_id is not None and stored.lease_id in self._leases:
                self._leases[stored.lease_id].keys.discard(key)
        self._emit([WatchEvent(type=WatchEventType.DELETE, key=key) for key in keys])

    def _emit(self, events: list[WatchEvent]) -> None:
        for watcher in list(self._watchers):
            matching = tuple(event for event in events if event.key.startswith(watcher.prefix))
            if matching:
                watcher.publish(WatchBatch(events=matching, revision=self._revision))

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self._sweep()
