"""In-memory metrics collector."""

import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Any

from ..ports.metrics import MetricsPort


class MetricsSummary:
    """Running statistics for one recorded metric."""

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.min = float("inf")
        self.max = float("-inf")
        self.values: list[float] = []

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        self.values.append(value)

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0

    def percentile(self, p: float) -> float:
        """Nearest-rank percentile, p in 0-100."""
        if not self.values:
            return 0.0
        ordered = sorted(self.values)
        index = int((p / 100) * len(ordered))
        return ordered[min(index, len(ordered) - 1)]

    def to_dict(self) -> dict[str, float]:
        return {
            "count": self.count,
            "average": round(self.average, 2),
            "min": round(self.min, 2) if self.count else 0,
            "max": round(self.max, 2) if self.count else 0,
            "p50": round(self.percentile(50), 2),
            "p99": round(self.percentile(99), 2),
        }


class InMemoryMetrics(MetricsPort):
    """MetricsPort that keeps counters, gauges and summaries in dicts.

    Good enough for tests and for exposing through a health endpoint; swap in
    a Prometheus or StatsD adapter for production dashboards.
    """

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._gauges: dict[str, float] = {}
        self._summaries: dict[str, MetricsSummary] = defaultdict(MetricsSummary)
        self._start_time = time.monotonic()

    def increment(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def record(self, name: str, value: float) -> None:
        self._summaries[name].add(value)

    @contextmanager
    def timer(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(name, (time.perf_counter() - start) * 1000)

    def counter(self, name: str) -> int:
        """Current value of one counter (0 if never incremented)."""
        return self._counters.get(name, 0)

    def get_all(self) -> dict[str, Any]:
        return {
            "uptime_seconds": round(time.monotonic() - self._start_time, 2),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "summaries": {name: summary.to_dict() for name, summary in self._summaries.items()},
        }

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._summaries.clear()
