"""Background renewal loop for one registration's lease."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..domain.enums import KeepAliveOutcome
from ..domain.exceptions import LeaseNotFoundError
from ..domain.models import KeepAliveAck, LeaseHandle
from ..ports.kv_store import KeepAliveStream, KVStorePort
from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort
from .in_memory_metrics import InMemoryMetrics
from .simple_logger import SimpleLogger


@dataclass(frozen=True)
class KeepAliveResult:
    """How a keepalive loop ended."""

    outcome: KeepAliveOutcome
    lease_id: int
    key: str
    renewals: int = 0
    error: Exception | None = None


ExpiryHandler = Callable[[KeepAliveResult], Awaitable[None]]


class LeaseKeeper:
    """Keeps one lease alive until it expires or the owner cancels.

    The keeper never raises to its owner. Every way the loop can end is
    returned as a KeepAliveResult and reported to the logger and metrics.
    """

    def __init__(
        self,
        store: KVStorePort,
        lease: LeaseHandle,
        key: str,
        on_expiry: ExpiryHandler | None = None,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
    ):
        self.lease = lease
        self.key = key
        self._store = store
        self._on_expiry = on_expiry
        self._logger = logger or SimpleLogger("etcd_registry.lease_keeper")
        self._metrics = metrics or InMemoryMetrics()
        self._renewals = 0

    @property
    def renewals(self) -> int:
        return self._renewals

    async def run(self, cancel_event: asyncio.Event) -> KeepAliveResult:
        """Consume renewal acknowledgements until a terminal outcome.

        A lease that is already gone when the stream opens is reported as EXPIRED.
        """
        if cancel_event.is_set():
            return self._finish(KeepAliveOutcome.CANCELLED)

        try:
            stream = await self._store.open_keepalive(self.lease)
        except LeaseNotFoundError as e:
            result = self._finish(KeepAliveOutcome.EXPIRED, e)
        except Exception as e:
            return self._finish(KeepAliveOutcome.OPEN_FAILED, e)
        else:
            try:
                result = await self._consume(stream, cancel_event)
            finally:
                await stream.close()

        if result.outcome is KeepAliveOutcome.EXPIRED and self._on_expiry is not None:
            try:
                await self._on_expiry(result)
            except Exception as e:
                self._logger.exception("Lease expiry handler failed", key=self.key, error=str(e))
        return result

    async def _consume(self, stream: KeepAliveStream, cancel_event: asyncio.Event) -> KeepAliveResult:
        cancelled = asyncio.create_task(cancel_event.wait())
        try:
            while True:
                read = asyncio.ensure_future(stream.__anext__())
                try:
                    done, _ = await asyncio.wait(
                        {read, cancelled}, return_when=asyncio.FIRST_COMPLETED
                    )
                finally:
                    if not read.done():
                        read.cancel()
                        with contextlib.suppress(asyncio.CancelledError, Exception):
                            await read
                if read not in done:
                    return self._finish(KeepAliveOutcome.CANCELLED)

                try:
                    ack: KeepAliveAck = read.result()
                except StopAsyncIteration:
                    return self._finish(KeepAliveOutcome.EXPIRED)
                except Exception as e:
                    return self._finish(KeepAliveOutcome.STREAM_FAILED, e)

                if ack.ttl_seconds <= 0:
                    return self._finish(KeepAliveOutcome.EXPIRED)

                self._renewals += 1
                self._metrics.increment("registry.keepalive.renewals")
                self._logger.debug(
                    "Lease renewed", key=self.key, lease_id=ack.lease_id, ttl=ack.ttl_seconds
                )
        finally:
            cancelled.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cancelled

    def _finish(self, outcome: KeepAliveOutcome, error: Exception | None = None) -> KeepAliveResult:
        result = KeepAliveResult(
            outcome=outcome,
            lease_id=self.lease.lease_id,
            key=self.key,
            renewals=self._renewals,
            error=error,
        )
        self._metrics.increment(f"registry.keepalive.{outcome.value}")

        context = {"key": self.key, "lease_id": self.lease.lease_id, "renewals": self._renewals}
        if outcome is KeepAliveOutcome.CANCELLED:
            self._logger.debug("Keepalive stopped", **context)
        elif outcome is KeepAliveOutcome.EXPIRED:
            self._logger.warning("Lease expired, registration is gone", **context)
        else:
            self._logger.error(
                "Keepalive failed",
                outcome=outcome.value,
                error=str(error) if error else None,
                **context,
            )
        return result
