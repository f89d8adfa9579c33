"""Metrics port - where background failures become observable.

Keepalive expiry, dropped records and failed watch refreshes never reach a
caller; they are counted here instead.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any


class MetricsPort(ABC):
    """Abstract interface for metrics collection."""

    @abstractmethod
    def increment(self, name: str, value: int = 1) -> None:
        """Increment a counter, e.g. ``registry.keepalive.expired``."""
        ...

    @abstractmethod
    def gauge(self, name: str, value: float) -> None:
        """Set a gauge, e.g. ``registry.leases.active``."""
        ...

    @abstractmethod
    def record(self, name: str, value: float) -> None:
        """Add an observation to a summary."""
        ...

    @abstractmethod
    def timer(self, name: str) -> AbstractContextManager[Any]:
        """Context manager recording the duration of its block in milliseconds."""
        ...

    @abstractmethod
    def get_all(self) -> dict[str, Any]:
        """Snapshot of every collected metric."""
        ...

    @abstractmethod
    def reset(self) -> None:
        """Forget every collected metric."""
        ...
