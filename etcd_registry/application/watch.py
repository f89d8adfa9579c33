"""Watch propagator - turns store change streams into full membership snapshots."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
from collections.abc import Awaitable, Callable

from ..domain.exceptions import StoreError
from ..domain.models import MembershipSnapshot
from ..domain.types import SnapshotCallback
from ..infrastructure.in_memory_metrics import InMemoryMetrics
from ..infrastructure.simple_logger import SimpleLogger
from ..ports.kv_store import KVStorePort, WatchStream
from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort
from .discovery import DiscoveryEngine

_subscription_ids = itertools.count(1)

TaskSpawner = Callable[[str, Awaitable[None]], asyncio.Task]


class WatchSubscription:
    """Handle for one running watch.

    ``last_snapshot`` is the most recent snapshot delivered to the callback.
    After the stream breaks it stays the truth until the subscription is
    cancelled.
    """

    def __init__(self, service_name: str, stream: WatchStream):
        self.id = f"watch-{next(_subscription_ids)}"
        self.service_name = service_name
        self._stream = stream
        self._task: asyncio.Task | None = None
        self._last_snapshot: MembershipSnapshot | None = None
        self._cancelled = False

    @property
    def last_snapshot(self) -> MembershipSnapshot | None:
        return self._last_snapshot

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def done(self) -> bool:
        """True once the background task has ended, for whatever reason."""
        return self._cancelled or (self._task is not None and self._task.done())

    async def cancel(self) -> None:
        """Stop watching. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        await self._stream.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task


class WatchPropagator:
    """Re-runs discovery on every change batch and hands the snapshot to a callback.

    Event payloads are never applied incrementally; each batch triggers a
    fresh range read so the callback only ever sees consistent membership.
    """

    def __init__(
        self,
        store: KVStorePort,
        discovery: DiscoveryEngine,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
        spawn: TaskSpawner | None = None,
    ):
        """Initialize the propagator.

        Args:
            store: Store to open watch streams on
            discovery: Engine used for every snapshot
            logger: Optional logger port
            metrics: Optional metrics port
            spawn: Starts the background task for a subscription; defaults to
                ``asyncio.create_task``. The registry passes its supervisor here.
        """
        self._store = store
        self._discovery = discovery
        self._logger = logger or SimpleLogger("etcd_registry.watch")
        self._metrics = metrics or InMemoryMetrics()
        self._spawn = spawn or (lambda _name, coro: asyncio.create_task(coro))

    async def watch(self, name: str, on_change: SnapshotCallback) -> WatchSubscription:
        """Deliver the initial snapshot, then keep delivering one per change batch.

        The initial snapshot has been passed to ``on_change`` by the time this
        returns.

        Raises:
            StoreError: If the stream cannot be opened or the initial read fails
        """
        prefix = self._discovery.keys.service_prefix(name)
        stream = await self._store.watch_prefix(prefix)
        subscription = WatchSubscription(name, stream)

        try:
            snapshot = await self._discovery.snapshot(name)
            await self._deliver(on_change, snapshot)
        except BaseException:
            await stream.cancel()
            raise
        subscription._last_snapshot = snapshot
        self._metrics.increment("registry.watch.snapshots")

        subscription._task = self._spawn(
            subscription.id, self._propagate(subscription, stream, on_change)
        )
        self._logger.info("Watching service", service=name, subscription=subscription.id)
        return subscription

    async def _propagate(
        self, subscription: WatchSubscription, stream: WatchStream, on_change: SnapshotCallback
    ) -> None:
        name = subscription.service_name
        try:
            async for batch in stream:
                if not batch.events:
                    continue
                try:
                    snapshot = await self._discovery.snapshot(name)
                except StoreError as e:
                    self._metrics.increment("registry.watch.discover_errors")
                    self._logger.warning(
                        "Discovery after change failed, skipping", service=name, error=e.message
                    )
                    continue

                try:
                    await self._deliver(on_change, snapshot)
                except Exception as e:
                    self._metrics.increment("registry.watch.callback_errors")
                    self._logger.exception("Watch callback raised", service=name, error=str(e))
                else:
                    self._metrics.increment("registry.watch.snapshots")
                subscription._last_snapshot = snapshot
        except Exception as e:
            self._metrics.increment("registry.watch.stream_failed")
            self._logger.error(
                "Watch stream broken, keeping last snapshot",
                service=name,
                subscription=subscription.id,
                error=str(e),
            )
        finally:
            self._logger.debug("Watch ended", service=name, subscription=subscription.id)

    @staticmethod
    async def _deliver(on_change: SnapshotCallback, snapshot: MembershipSnapshot) -> None:
        result = on_change(snapshot)
        if inspect.isawaitable(result):
            await result
