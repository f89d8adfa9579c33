"""Infrastructure layer - Concrete adapters for the ports."""

from .codec import RecordCodec, is_msgpack
from .config import EtcdConnectionConfig, LogContext, RegistryConfig
from .etcd_store import EtcdKVStore
from .in_memory_metrics import InMemoryMetrics, MetricsSummary
from .in_memory_store import InMemoryKVStore
from .lease_keeper import KeepAliveResult, LeaseKeeper
from .simple_logger import SimpleLogger
from .streams import PeriodicKeepAliveStream, QueueWatchStream

__all__ = [
    "EtcdConnectionConfig",
    "EtcdKVStore",
    "InMemoryKVStore",
    "InMemoryMetrics",
    "KeepAliveResult",
    "LeaseKeeper",
    "LogContext",
    "MetricsSummary",
    "PeriodicKeepAliveStream",
    "QueueWatchStream",
    "RecordCodec",
    "RegistryConfig",
    "SimpleLogger",
    "is_msgpack",
]
