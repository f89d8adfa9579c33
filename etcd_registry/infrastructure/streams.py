"""Stream building blocks shared by the store adapters."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import NoReturn

from ..domain.exceptions import LeaseNotFoundError
from ..domain.models import KeepAliveAck, LeaseHandle, WatchBatch
from ..ports.kv_store import KeepAliveStream, WatchStream
from ..ports.logger import LoggerPort
from .simple_logger import SimpleLogger

_CLOSED = object()


class PeriodicKeepAliveStream(KeepAliveStream):
    """Renews a lease every ``interval`` seconds.

    ``refresh(lease_id)`` performs one renewal round trip and returns the TTL
    the store granted; a TTL of zero or less means the lease is gone and ends
    iteration. A failed round trip is retried until the TTL granted by the
    last acknowledgement has run out, after which the lease is treated as
    expired and iteration ends.
    """

    def __init__(
        self,
        lease: LeaseHandle,
        refresh: Callable[[int], Awaitable[int]],
        interval: float,
        first_ttl: int,
        clock: Callable[[], float] = time.monotonic,
        logger: LoggerPort | None = None,
    ):
        self._lease = lease
        self._refresh = refresh
        self._interval = interval
        self._clock = clock
        self._logger = logger or SimpleLogger("etcd_registry.keepalive")
        self._pending: KeepAliveAck | None = KeepAliveAck(
            lease_id=lease.lease_id, ttl_seconds=first_ttl
        )
        self._deadline = clock() + first_ttl
        self._failures = 0
        self._closed = asyncio.Event()

    @property
    def lease(self) -> LeaseHandle:
        return self._lease

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def failures(self) -> int:
        """Renewal round trips that failed and were retried."""
        return self._failures

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except TimeoutError:
            return
        raise StopAsyncIteration

    def _expire(self) -> NoReturn:
        self._closed.set()
        raise StopAsyncIteration

    async def __anext__(self) -> KeepAliveAck:
        if self._closed.is_set():
            raise StopAsyncIteration

        if self._pending is not None:
            ack, self._pending = self._pending, None
            return ack

        delay = self._interval
        while True:
            await self._sleep(delay)
            try:
                ttl = await self._refresh(self._lease.lease_id)
            except LeaseNotFoundError:
                self._expire()
            except Exception as e:
                remaining = self._deadline - self._clock()
                if remaining <= 0:
                    self._logger.warning(
                        "Lease refresh failed past its TTL, giving up",
                        lease_id=self._lease.lease_id,
                        error=str(e),
                    )
                    self._expire()
                self._failures += 1
                self._logger.warning(
                    "Lease refresh failed, retrying",
                    lease_id=self._lease.lease_id,
                    error=str(e),
                    remaining=round(remaining, 3),
                )
                delay = min(self._interval, remaining)
                continue

            if ttl <= 0:
                self._expire()
            self._deadline = self._clock() + ttl
            return KeepAliveAck(lease_id=self._lease.lease_id, ttl_seconds=ttl)

    async def close(self) -> None:
        self._closed.set()


class QueueWatchStream(WatchStream):
    """WatchStream fed by a producer through ``publish`` and ``fail``.

    Both feeding methods must be called from the event loop thread; producers
    running on other threads go through ``loop.call_soon_threadsafe``.
    """

    def __init__(
        self,
        prefix: str,
        on_cancel: Callable[[], Awaitable[None]] | None = None,
    ):
        self.prefix = prefix
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._on_cancel = on_cancel
        self._finished = False
        self._cancelled = False

    @property
    def finished(self) -> bool:
        return self._finished

    def publish(self, batch: WatchBatch) -> None:
        if not self._finished:
            self._queue.put_nowait(batch)

    def fail(self, error: Exception) -> None:
        if not self._finished:
            self._queue.put_nowait(error)

    async def __anext__(self) -> WatchBatch:
        if self._finished:
            raise StopAsyncIteration

        item = await self._queue.get()
        if item is _CLOSED or self._finished:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self._finished = True
            raise item
        assert isinstance(item, WatchBatch)
        return item

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(_CLOSED)
        if self._on_cancel is not None:
            await self._on_cancel()
