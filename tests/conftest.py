"""Pytest configuration and shared fixtures."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from etcd_registry.application.registry import ServiceRegistry
from etcd_registry.domain.models import MembershipSnapshot
from etcd_registry.infrastructure.config import RegistryConfig
from etcd_registry.infrastructure.in_memory_metrics import InMemoryMetrics
from etcd_registry.infrastructure.in_memory_store import InMemoryKVStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SnapshotRecorder:
    """Watch callback that remembers every snapshot it receives."""

    def __init__(self):
        self.snapshots: list[MembershipSnapshot] = []
        self._changed = asyncio.Event()

    def __call__(self, snapshot: MembershipSnapshot) -> None:
        self.snapshots.append(snapshot)
        self._changed.set()

    @property
    def last(self) -> MembershipSnapshot:
        return self.snapshots[-1]

    async def wait_for(self, predicate, timeout: float = 2.0) -> MembershipSnapshot:
        """Wait until a received snapshot satisfies predicate."""

        async def _wait():
            while True:
                for snapshot in self.snapshots:
                    if predicate(snapshot):
                        return snapshot
                self._changed.clear()
                await self._changed.wait()

        return await asyncio.wait_for(_wait(), timeout=timeout)


@pytest.fixture
def mock_logger():
    """Create a mock logger."""
    mock = MagicMock()
    mock.debug = MagicMock()
    mock.info = MagicMock()
    mock.warning = MagicMock()
    mock.error = MagicMock()
    mock.exception = MagicMock()
    return mock


@pytest.fixture
def mock_store():
    """Create a mock KV store."""
    mock = AsyncMock()
    mock.is_connected = AsyncMock(return_value=True)
    mock.get_prefix = AsyncMock(return_value=[])
    mock.delete = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def metrics():
    return InMemoryMetrics()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def recorder():
    return SnapshotRecorder()


@pytest_asyncio.fixture
async def memory_store(mock_logger):
    """Connected in-memory store."""
    store = InMemoryKVStore(keepalive_interval_ratio=0.05, sweep_interval=0.01, logger=mock_logger)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def registry_config():
    return RegistryConfig(ttl_seconds=5, close_timeout_seconds=1.0)


@pytest_asyncio.fixture
async def registry(memory_store, registry_config, mock_logger, metrics):
    """Registry over the in-memory store."""
    registry = ServiceRegistry(
        memory_store, config=registry_config, logger=mock_logger, metrics=metrics
    )
    yield registry
    await registry.close()
