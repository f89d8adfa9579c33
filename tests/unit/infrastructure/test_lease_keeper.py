"""Tests for the lease keepalive loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from etcd_registry.domain.enums import KeepAliveOutcome
from etcd_registry.domain.exceptions import LeaseNotFoundError, StoreError
from etcd_registry.domain.models import KeepAliveAck, LeaseHandle
from etcd_registry.infrastructure.lease_keeper import LeaseKeeper
from etcd_registry.ports.kv_store import KeepAliveStream

KEY = "/services/auth/10.0.0.1:9000"


class ScriptedStream(KeepAliveStream):
    """Yields scripted items, then blocks until closed."""

    def __init__(self, items):
        self._items = list(items)
        self._closed = asyncio.Event()
        self.closed = False

    async def __anext__(self):
        if self._items:
            item = self._items.pop(0)
            if isinstance(item, Exception):
                raise item
            if item is StopAsyncIteration:
                raise StopAsyncIteration
            return item
        await self._closed.wait()
        raise StopAsyncIteration

    async def close(self):
        self.closed = True
        self._closed.set()


def ack(ttl=3):
    return KeepAliveAck(lease_id=1, ttl_seconds=ttl)


@pytest.fixture
def lease():
    return LeaseHandle(lease_id=1, ttl_seconds=3)


class TestLeaseKeeper:
    """Test cases for LeaseKeeper."""

    @pytest.mark.asyncio
    async def test_open_failure(self, mock_store, lease, mock_logger, metrics):
        mock_store.open_keepalive.side_effect = StoreError("refused", operation="open_keepalive")
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.OPEN_FAILED
        assert isinstance(result.error, StoreError)
        assert metrics.counter("registry.keepalive.open_failed") == 1
        mock_logger.error.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_lease_at_open_is_expiry(self, mock_store, lease, mock_logger, metrics):
        on_expiry = AsyncMock()
        mock_store.open_keepalive.side_effect = LeaseNotFoundError(1, operation="open_keepalive")
        keeper = LeaseKeeper(
            mock_store, lease, KEY, on_expiry=on_expiry, logger=mock_logger, metrics=metrics
        )

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.EXPIRED
        assert isinstance(result.error, LeaseNotFoundError)
        assert metrics.counter("registry.keepalive.expired") == 1
        assert metrics.counter("registry.keepalive.open_failed") == 0
        on_expiry.assert_awaited_once_with(result)

    @pytest.mark.asyncio
    async def test_expiry_after_renewals(self, mock_store, lease, mock_logger, metrics):
        stream = ScriptedStream([ack(), ack(), StopAsyncIteration])
        mock_store.open_keepalive.return_value = stream
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.EXPIRED
        assert result.renewals == 2
        assert result.key == KEY
        assert metrics.counter("registry.keepalive.renewals") == 2
        assert metrics.counter("registry.keepalive.expired") == 1
        assert stream.closed
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_zero_ttl_ack_means_expired(self, mock_store, lease, mock_logger, metrics):
        mock_store.open_keepalive.return_value = ScriptedStream([ack(), ack(ttl=0)])
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.EXPIRED
        assert result.renewals == 1

    @pytest.mark.asyncio
    async def test_stream_failure(self, mock_store, lease, mock_logger, metrics):
        mock_store.open_keepalive.return_value = ScriptedStream(
            [ack(), StoreError("reset", operation="refresh")]
        )
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.STREAM_FAILED
        assert metrics.counter("registry.keepalive.stream_failed") == 1

    @pytest.mark.asyncio
    async def test_cancellation_at_blocking_read(self, mock_store, lease, mock_logger, metrics):
        stream = ScriptedStream([ack()])
        mock_store.open_keepalive.return_value = stream
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)
        cancel = asyncio.Event()

        task = asyncio.create_task(keeper.run(cancel))
        await asyncio.sleep(0.01)
        cancel.set()
        result = await asyncio.wait_for(task, timeout=1.0)

        assert result.outcome is KeepAliveOutcome.CANCELLED
        assert result.renewals == 1
        assert stream.closed

    @pytest.mark.asyncio
    async def test_already_cancelled(self, mock_store, lease, mock_logger, metrics):
        cancel = asyncio.Event()
        cancel.set()
        keeper = LeaseKeeper(mock_store, lease, KEY, logger=mock_logger, metrics=metrics)

        result = await keeper.run(cancel)

        assert result.outcome is KeepAliveOutcome.CANCELLED
        mock_store.open_keepalive.assert_not_called()

    @pytest.mark.asyncio
    async def test_expiry_handler_called_only_on_expiry(self, mock_store, lease, mock_logger, metrics):
        on_expiry = AsyncMock()
        mock_store.open_keepalive.return_value = ScriptedStream([StopAsyncIteration])
        keeper = LeaseKeeper(
            mock_store, lease, KEY, on_expiry=on_expiry, logger=mock_logger, metrics=metrics
        )

        result = await keeper.run(asyncio.Event())

        on_expiry.assert_awaited_once_with(result)

    @pytest.mark.asyncio
    async def test_expiry_handler_errors_are_contained(self, mock_store, lease, mock_logger, metrics):
        on_expiry = AsyncMock(side_effect=RuntimeError("handler bug"))
        mock_store.open_keepalive.return_value = ScriptedStream([StopAsyncIteration])
        keeper = LeaseKeeper(
            mock_store, lease, KEY, on_expiry=on_expiry, logger=mock_logger, metrics=metrics
        )

        result = await keeper.run(asyncio.Event())

        assert result.outcome is KeepAliveOutcome.EXPIRED
        mock_logger.exception.assert_called_once()

    @pytest.mark.asyncio
    async def test_against_in_memory_store(self, memory_store, mock_logger, metrics):
        lease = await memory_store.grant_lease(1)
        keeper = LeaseKeeper(memory_store, lease, KEY, logger=mock_logger, metrics=metrics)
        task = asyncio.create_task(keeper.run(asyncio.Event()))
        await asyncio.sleep(0.05)

        memory_store.expire_lease(lease.lease_id)
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.outcome is KeepAliveOutcome.EXPIRED
        assert result.renewals >= 1
