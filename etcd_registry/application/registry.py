"""Service registry facade - registration, discovery and watches over one store."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from ..domain.enums import ExpiryPolicy, KeepAliveOutcome
from ..domain.exceptions import RegistryClosedError, StoreError
from ..domain.models import LeaseHandle, ServiceInstanceRecord
from ..domain.types import SnapshotCallback
from ..infrastructure.codec import RecordCodec
from ..infrastructure.config import EtcdConnectionConfig, LogContext, RegistryConfig
from ..infrastructure.etcd_store import EtcdKVStore
from ..infrastructure.in_memory_metrics import InMemoryMetrics
from ..infrastructure.lease_keeper import KeepAliveResult, LeaseKeeper
from ..infrastructure.simple_logger import SimpleLogger
from ..ports.kv_store import KVStorePort
from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort
from .discovery import DiscoveryEngine
from .supervisor import TaskSupervisor
from .watch import WatchPropagator, WatchSubscription


@dataclass
class _Registration:
    record: ServiceInstanceRecord
    key: str
    lease: LeaseHandle
    keeper: LeaseKeeper
    task_name: str


class ServiceRegistry:
    """Registers service instances under leases and watches service membership.

    Each registration is kept alive by its own LeaseKeeper task and each watch
    by its own propagation task. All of them are recorded in a TaskSupervisor
    and observe one cancellation event, so ``close()`` stops everything this
    registry started before it returns.
    """

    def __init__(
        self,
        store: KVStorePort,
        config: RegistryConfig | None = None,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
    ):
        """Initialize the registry.

        Args:
            store: Store adapter; must be connected before the first call
            config: Registry settings. Defaults to RegistryConfig().
            logger: Optional logger port. If not provided, uses simple logger.
            metrics: Optional metrics port. If not provided, uses in-memory metrics.
        """
        self._store = store
        self._config = config or RegistryConfig()
        self._logger = logger or SimpleLogger("etcd_registry.registry")
        self._metrics = metrics or InMemoryMetrics()
        self._keys = self._config.keys()
        self._codec = RecordCodec(self._config.payload_format)

        self._cancel_event = asyncio.Event()
        self._supervisor = TaskSupervisor(logger=self._logger)
        self._registrations: dict[str, _Registration] = {}
        self._watches: dict[str, WatchSubscription] = {}
        self._closed = False

        self._discovery = DiscoveryEngine(
            store, keys=self._keys, codec=self._codec, logger=self._logger, metrics=self._metrics
        )
        self._propagator = WatchPropagator(
            store,
            self._discovery,
            logger=self._logger,
            metrics=self._metrics,
            spawn=self._supervisor.spawn,
        )

    @classmethod
    async def connect(
        cls,
        connection: EtcdConnectionConfig | None = None,
        config: RegistryConfig | None = None,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
    ) -> ServiceRegistry:
        """Connect to etcd and return a registry over it.

        Raises:
            StoreError: If the cluster cannot be reached
        """
        config = config or RegistryConfig()
        metrics = metrics or InMemoryMetrics()
        store = EtcdKVStore(
            connection or EtcdConnectionConfig.from_env(),
            keepalive_interval_ratio=config.keepalive_interval_ratio,
            logger=logger,
            metrics=metrics,
        )
        await store.connect()
        return cls(store, config=config, logger=logger, metrics=metrics)

    @property
    def config(self) -> RegistryConfig:
        return self._config

    @property
    def store(self) -> KVStorePort:
        return self._store

    @property
    def metrics(self) -> MetricsPort:
        return self._metrics

    @property
    def discovery(self) -> DiscoveryEngine:
        return self._discovery

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise RegistryClosedError(operation)

    async def __aenter__(self) -> ServiceRegistry:
        if not await self._store.is_connected():
            await self._store.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Registration
    async def register(self, name: str, address: str, version: str = "") -> ServiceInstanceRecord:
        """Write the instance record under a fresh lease and keep it alive.

        Returns once the write succeeded; the keepalive loop starts in the
        background. A failed call leaves no key, lease or task behind.

        Raises:
            ValueError: If name or address is not a valid key segment
            RegistryClosedError: If the registry is closed
            StoreError: If the lease grant or the write fails
        """
        self._ensure_open("register")
        record = ServiceInstanceRecord(name=name, address=address, version=version)
        try:
            registration = await self._register_record(record)
        except StoreError:
            self._metrics.increment("registry.register.error")
            raise
        self._metrics.increment("registry.register.success")
        self._logger.info(
            "Registered instance",
            service=name,
            address=address,
            lease_id=registration.lease.lease_id,
        )
        return record

    async def _register_record(self, record: ServiceInstanceRecord) -> _Registration:
        key = self._keys.instance(record.name, record.address)
        payload = self._codec.encode(record)

        lease = await self._store.grant_lease(self._config.ttl_seconds)
        try:
            await self._store.put(key, payload, lease=lease)
        except Exception:
            await self._revoke_quietly(lease.lease_id, key)
            raise

        previous = self._registrations.get(key)
        keeper = LeaseKeeper(
            self._store,
            lease,
            key,
            on_expiry=self._on_lease_expired,
            logger=self._logger,
            metrics=self._metrics,
        )
        registration = _Registration(
            record=record,
            key=key,
            lease=lease,
            keeper=keeper,
            task_name=f"keepalive:{key}#{lease.lease_id}",
        )
        try:
            self._supervisor.spawn(registration.task_name, self._keep_alive(registration))
        except RuntimeError:
            await self._revoke_quietly(lease.lease_id, key)
            raise
        self._registrations[key] = registration
        self._metrics.gauge("registry.leases.active", len(self._registrations))

        if previous is not None:
            await self._release(previous)
        return registration

    async def _keep_alive(self, registration: _Registration) -> KeepAliveResult:
        result = await registration.keeper.run(self._cancel_event)
        if (
            result.outcome is not KeepAliveOutcome.CANCELLED
            and self._registrations.get(registration.key) is registration
        ):
            del self._registrations[registration.key]
            self._metrics.gauge("registry.leases.active", len(self._registrations))
        return result

    async def _on_lease_expired(self, result: KeepAliveResult) -> None:
        registration = self._registrations.get(result.key)
        if registration is None or registration.lease.lease_id != result.lease_id:
            return

        if self._config.on_lease_expiry is not ExpiryPolicy.REREGISTER:
            self._logger.warning(
                "Registration lost to lease expiry, not re-registering",
                service=registration.record.name,
                address=registration.record.address,
                policy=self._config.on_lease_expiry.value,
            )
            return

        await self._reregister(registration.record)

    async def _reregister(self, record: ServiceInstanceRecord) -> None:
        attempts = self._config.max_reregister_attempts
        for attempt in range(1, attempts + 1):
            if self._cancel_event.is_set():
                return
            try:
                await self._register_record(record)
            except StoreError as e:
                self._metrics.increment("registry.reregister.error")
                context = LogContext(operation="reregister", component="registry").with_error(e)
                self._logger.warning(
                    "Re-registration failed",
                    service=record.name,
                    address=record.address,
                    attempt=attempt,
                    max_attempts=attempts,
                    **context.to_dict(),
                )
            except RuntimeError:
                # registry closed mid-attempt
                return
            else:
                self._metrics.increment("registry.reregister.success")
                self._logger.info(
                    "Re-registered after lease expiry",
                    service=record.name,
                    address=record.address,
                    attempt=attempt,
                )
                return

            delay = self._config.reregister_backoff_seconds * attempt
            try:
                await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
                return
            except TimeoutError:
                pass

        self._logger.error(
            "Giving up re-registration", service=record.name, address=record.address
        )

    async def unregister(self, name: str, address: str) -> None:
        """Delete the instance key and stop keeping it alive. Idempotent.

        Raises:
            ValueError: If name or address is not a valid key segment
            RegistryClosedError: If the registry is closed
            StoreError: If the delete fails
        """
        self._ensure_open("unregister")
        key = self._keys.instance(name, address)
        try:
            deleted = await self._store.delete(key)
        except StoreError:
            self._metrics.increment("registry.unregister.error")
            raise

        registration = self._registrations.pop(key, None)
        if registration is not None:
            self._metrics.gauge("registry.leases.active", len(self._registrations))
            await self._release(registration)

        self._metrics.increment("registry.unregister.success")
        self._logger.info("Unregistered instance", service=name, address=address, deleted=deleted)

    async def _release(self, registration: _Registration) -> None:
        await self._supervisor.cancel(
            registration.task_name, timeout=self._config.close_timeout_seconds
        )
        await self._revoke_quietly(registration.lease.lease_id, registration.key)

    async def _revoke_quietly(self, lease_id: int, key: str) -> None:
        try:
            await self._store.revoke_lease(lease_id)
        except StoreError as e:
            self._logger.debug("Lease revoke failed", key=key, lease_id=lease_id, error=e.message)

    def registrations(self) -> list[ServiceInstanceRecord]:
        """Records this registry currently keeps alive, ordered by key."""
        return [self._registrations[key].record for key in sorted(self._registrations)]

    # Discovery
    async def discover(self, name: str) -> list[ServiceInstanceRecord]:
        """Point-in-time list of the live instances of name.

        Raises:
            RegistryClosedError: If the registry is closed
            StoreError: If the range read fails
        """
        self._ensure_open("discover")
        return await self._discovery.discover(name)

    async def watch(self, name: str, on_change: SnapshotCallback) -> WatchSubscription:
        """Call on_change with the current membership now and after every change.

        Raises:
            RegistryClosedError: If the registry is closed
            StoreError: If the watch cannot be opened or the initial read fails
        """
        self._ensure_open("watch")
        subscription = await self._propagator.watch(name, on_change)
        self._watches = {sid: sub for sid, sub in self._watches.items() if not sub.done()}
        self._watches[subscription.id] = subscription
        self._metrics.gauge("registry.watches.active", len(self._watches))
        return subscription

    def watches(self) -> list[WatchSubscription]:
        return [sub for sub in self._watches.values() if not sub.done()]

    # Lifecycle
    async def close(self) -> None:
        """Stop every keeper and watch, revoke owned leases, close the store. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel_event.set()

        registrations = list(self._registrations.values())
        for subscription in list(self._watches.values()):
            await subscription.cancel()
        self._watches.clear()

        await self._supervisor.shutdown(timeout=self._config.close_timeout_seconds)
        self._registrations.clear()
        for registration in registrations:
            await self._revoke_quietly(registration.lease.lease_id, registration.key)

        self._metrics.gauge("registry.leases.active", 0)
        self._metrics.gauge("registry.watches.active", 0)
        await self._store.close()
        self._logger.info("Registry closed", released=len(registrations))
