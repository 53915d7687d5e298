"""
Metrics collection for the identity-level extension.

Thread-safe counters, gauges and latency histograms, exportable in Prometheus
text format. The extension records:

- identity_cache_hits_total / identity_cache_misses_total
- registry_lookups_total{result=...}
- registry_lookup_duration_ms
- identity_level_changes_total
- refresh_sweeps_total
- identity_cache_size
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

METRIC_PREFIX = "txpool_identity_"

# Registry round trips are bounded at 500ms, so buckets stop a little past it
DEFAULT_LATENCY_BUCKETS_MS = (1, 5, 10, 25, 50, 100, 250, 500, 1000)


@dataclass
class Histogram:
    """Cumulative histogram of observed values."""

    bounds: tuple[float, ...] = DEFAULT_LATENCY_BUCKETS_MS
    bucket_counts: list[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self):
        if not self.bucket_counts:
            # Trailing slot is the +Inf bucket
            self.bucket_counts = [0] * (len(self.bounds) + 1)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for i, bound in enumerate(self.bounds):
            if value <= bound:
                self.bucket_counts[i] += 1
        self.bucket_counts[-1] += 1


class MetricsCollector:
    """Thread-safe metrics collector with optional labels."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._gauges: dict[str, dict[str, float]] = defaultdict(dict)
        self._histograms: dict[str, dict[str, Histogram]] = defaultdict(dict)
        self._start_time = time.time()

    def _labels_key(self, labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))

    def increment(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        with self._lock:
            self._counters[name][self._labels_key(labels)] += value

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> int:
        with self._lock:
            return self._counters[name].get(self._labels_key(labels), 0)

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """Set a gauge value."""
        with self._lock:
            self._gauges[name][self._labels_key(labels)] = value

    def get_gauge(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._gauges[name].get(self._labels_key(labels), 0.0)

    def timing(self, name: str, value_ms: float, labels: dict[str, str] | None = None) -> None:
        """Record a timing observation in milliseconds."""
        with self._lock:
            key = self._labels_key(labels)
            histogram = self._histograms[name].get(key)
            if histogram is None:
                histogram = self._histograms[name][key] = Histogram()
            histogram.observe(value_ms)

    def get_histogram(self, name: str, labels: dict[str, str] | None = None) -> Histogram | None:
        with self._lock:
            return self._histograms[name].get(self._labels_key(labels))

    @contextmanager
    def timer(self, name: str, labels: dict[str, str] | None = None):
        """Context manager timing a block in milliseconds."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.timing(name, (time.perf_counter() - start) * 1000, labels)

    def to_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        lines = []

        def sample(metric: str, key: str, value: Any, extra: str = "") -> str:
            labels = ",".join(part for part in (key, extra) if part)
            return f"{metric}{{{labels}}} {value}" if labels else f"{metric} {value}"

        with self._lock:
            lines.append(f"# TYPE {METRIC_PREFIX}uptime_seconds gauge")
            lines.append(f"{METRIC_PREFIX}uptime_seconds {time.time() - self._start_time:.2f}")

            for name, values in self._counters.items():
                metric = METRIC_PREFIX + name
                lines.append(f"# TYPE {metric} counter")
                lines.extend(sample(metric, key, value) for key, value in values.items())

            for name, values in self._gauges.items():
                metric = METRIC_PREFIX + name
                lines.append(f"# TYPE {metric} gauge")
                lines.extend(sample(metric, key, value) for key, value in values.items())

            for name, histograms in self._histograms.items():
                metric = METRIC_PREFIX + name
                lines.append(f"# TYPE {metric} histogram")
                for key, h in histograms.items():
                    for bound, count in zip((*h.bounds, "+Inf"), h.bucket_counts):
                        lines.append(sample(f"{metric}_bucket", key, count, f'le="{bound}"'))
                    lines.append(sample(f"{metric}_sum", key, f"{h.sum:.2f}"))
                    lines.append(sample(f"{metric}_count", key, h.count))

        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = MetricsCollector()
