"""Discovery engine - point-in-time membership reads."""

from __future__ import annotations

from ..domain.exceptions import DecodeError
from ..domain.models import MembershipSnapshot, ServiceInstanceRecord, StoreEntry
from ..domain.patterns import ServiceKeys
from ..infrastructure.codec import RecordCodec
from ..infrastructure.in_memory_metrics import InMemoryMetrics
from ..infrastructure.simple_logger import SimpleLogger
from ..ports.kv_store import KVStorePort
from ..ports.logger import LoggerPort
from ..ports.metrics import MetricsPort


class DiscoveryEngine:
    """Reads every live instance of a service with one prefix range read.

    Malformed entries never fail a read. They are dropped, counted under
    ``registry.discover.decode_failures`` and logged at debug level.
    """

    def __init__(
        self,
        store: KVStorePort,
        keys: ServiceKeys | None = None,
        codec: RecordCodec | None = None,
        logger: LoggerPort | None = None,
        metrics: MetricsPort | None = None,
    ):
        self._store = store
        self._keys = keys or ServiceKeys()
        self._codec = codec or RecordCodec()
        self._logger = logger or SimpleLogger("etcd_registry.discovery")
        self._metrics = metrics or InMemoryMetrics()

    @property
    def keys(self) -> ServiceKeys:
        return self._keys

    async def discover(self, name: str) -> list[ServiceInstanceRecord]:
        """Return the instances of ``name``, deduplicated and sorted by address.

        Raises:
            ValueError: If name is not a valid key segment
            StoreError: If the range read fails
        """
        prefix = self._keys.service_prefix(name)
        with self._metrics.timer("registry.discover"):
            entries = await self._store.get_prefix(prefix)

        by_address: dict[str, ServiceInstanceRecord] = {}
        for entry in entries:
            record = self._decode_entry(name, prefix, entry)
            if record is not None:
                by_address[record.address] = record
        return [by_address[address] for address in sorted(by_address)]

    async def snapshot(self, name: str) -> MembershipSnapshot:
        """Same read as discover(), wrapped in a MembershipSnapshot."""
        return MembershipSnapshot.of(name, await self.discover(name))

    def _decode_entry(self, name: str, prefix: str, entry: StoreEntry) -> ServiceInstanceRecord | None:
        try:
            if not entry.key.startswith(prefix):
                raise DecodeError(f"Key outside prefix {prefix}", key=entry.key)
            record = self._codec.decode(entry.value, key=entry.key)
            if self._keys.parse(entry.key) != (record.name, record.address):
                raise DecodeError(
                    f"Record {record.name}/{record.address} does not match its key",
                    key=entry.key,
                )
        except DecodeError as e:
            self._metrics.increment("registry.discover.decode_failures")
            self._logger.debug("Skipping malformed entry", service=name, key=entry.key, error=e.message)
            return None
        return record
