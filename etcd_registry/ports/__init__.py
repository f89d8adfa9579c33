"""Ports layer - Interfaces for external collaborators."""

from .kv_store import KeepAliveStream, KVStorePort, WatchStream
from .logger import LoggerPort
from .metrics import MetricsPort
from .resolver import (
    ClientConnectionPort,
    ResolvedAddress,
    ResolverBuilderPort,
    ResolverPort,
    ResolverState,
    ResolverTarget,
)

__all__ = [
    "ClientConnectionPort",
    "KVStorePort",
    "KeepAliveStream",
    "LoggerPort",
    "MetricsPort",
    "ResolvedAddress",
    "ResolverBuilderPort",
    "ResolverPort",
    "ResolverState",
    "ResolverTarget",
    "WatchStream",
]
