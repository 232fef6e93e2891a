"""Simple in-process metrics collection for the sync engine.

Lightweight counters and histograms that track sync runs, proxy traffic and
API requests. Metrics live in memory and are exported in Prometheus text
format through the ``/metrics`` endpoint.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping

LabelKey = tuple[tuple[str, str | None], ...]


def _labels_to_key(labels: Mapping[str, str | None] | None) -> LabelKey:
    if labels is None:
        return ()
    return tuple(sorted(labels.items()))


# ---------------------------------------------------------------------------
# Metric storage
# ---------------------------------------------------------------------------


@dataclass
class Counter:
    """A monotonically increasing counter."""

    name: str
    help_text: str = ""
    _values: dict[LabelKey, float] = field(default_factory=lambda: defaultdict(float))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(
        self, value: float = 1.0, labels: Mapping[str, str | None] | None = None
    ) -> None:
        key = _labels_to_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, labels: Mapping[str, str | None] | None = None) -> float:
        key = _labels_to_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def items(self) -> list[tuple[LabelKey, float]]:
        with self._lock:
            return list(self._values.items())


@dataclass
class Histogram:
    """Keeps the count and sum of observed values per label set."""

    name: str
    help_text: str = ""
    _count: dict[LabelKey, int] = field(default_factory=lambda: defaultdict(int))
    _sum: dict[LabelKey, float] = field(default_factory=lambda: defaultdict(float))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def observe(
        self, value: float, labels: Mapping[str, str | None] | None = None
    ) -> None:
        key = _labels_to_key(labels)
        with self._lock:
            self._count[key] += 1
            self._sum[key] += value

    def get_stats(
        self, labels: Mapping[str, str | None] | None = None
    ) -> dict[str, float]:
        """Get summary statistics for the histogram."""
        key = _labels_to_key(labels)
        with self._lock:
            count = self._count.get(key, 0)
            total = self._sum.get(key, 0.0)
        return {
            "count": count,
            "sum": total,
            "avg": total / count if count else 0.0,
        }

    def keys(self) -> list[LabelKey]:
        with self._lock:
            return list(self._count)


# ---------------------------------------------------------------------------
# Global metric registry
# ---------------------------------------------------------------------------


class MetricRegistry:
    """Global registry for all metrics."""

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, help_text: str = "") -> Counter:
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name=name, help_text=help_text)
            return self._counters[name]

    def histogram(self, name: str, help_text: str = "") -> Histogram:
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name=name, help_text=help_text)
            return self._histograms[name]

    def all_counters(self) -> dict[str, Counter]:
        with self._lock:
            return dict(self._counters)

    def all_histograms(self) -> dict[str, Histogram]:
        with self._lock:
            return dict(self._histograms)

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


_registry = MetricRegistry()


def get_registry() -> MetricRegistry:
    return _registry


# ---------------------------------------------------------------------------
# Convenience functions
# ---------------------------------------------------------------------------


def increment_counter(
    name: str,
    value: float = 1.0,
    labels: Mapping[str, str | None] | None = None,
    help_text: str = "",
) -> None:
    """Increment a counter by name, creating it if needed."""
    _registry.counter(name, help_text).inc(value, labels)


def observe_histogram(
    name: str,
    value: float,
    labels: Mapping[str, str | None] | None = None,
    help_text: str = "",
) -> None:
    """Record an observation in a histogram, creating it if needed."""
    _registry.histogram(name, help_text).observe(value, labels)


class Timer:
    """Context manager for timing operations and recording to a histogram."""

    def __init__(
        self,
        histogram_name: str,
        labels: Mapping[str, str | None] | None = None,
        help_text: str = "",
    ) -> None:
        self.histogram_name = histogram_name
        self.labels = labels
        self.help_text = help_text
        self._start: float = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        duration = time.perf_counter() - self._start
        observe_histogram(self.histogram_name, duration, self.labels, self.help_text)


# ---------------------------------------------------------------------------
# Predefined metrics
# ---------------------------------------------------------------------------

API_REQUESTS = "api_requests_total"
API_REQUEST_DURATION = "api_request_duration_seconds"

SYNC_RUNS = "sync_runs_total"
SYNC_RUN_DURATION = "sync_run_duration_seconds"
SYNC_PRODUCTS_WRITTEN = "sync_products_written_total"

PROXY_REQUESTS = "proxy_requests_total"
PROXY_COOLDOWNS = "proxy_cooldowns_total"


def record_api_request(
    endpoint: str, method: str, status_code: int, duration: float
) -> None:
    """Record an API request with its outcome and duration."""
    labels = {"endpoint": endpoint, "method": method, "status": str(status_code)}
    increment_counter(API_REQUESTS, labels=labels, help_text="Total API requests")
    observe_histogram(
        API_REQUEST_DURATION,
        duration,
        labels={"endpoint": endpoint, "method": method},
        help_text="API request duration in seconds",
    )


def record_sync_run(
    sync_type: str,
    status: str,
    duration: float,
    imported: int,
    updated: int,
) -> None:
    """Record a completed sync run."""
    increment_counter(
        SYNC_RUNS,
        labels={"sync_type": sync_type, "status": status},
        help_text="Total sync runs",
    )
    observe_histogram(
        SYNC_RUN_DURATION,
        duration,
        labels={"sync_type": sync_type},
        help_text="Sync run duration in seconds",
    )
    increment_counter(
        SYNC_PRODUCTS_WRITTEN,
        value=float(imported),
        labels={"outcome": "imported"},
        help_text="Products written to the local store",
    )
    increment_counter(
        SYNC_PRODUCTS_WRITTEN,
        value=float(updated),
        labels={"outcome": "updated"},
        help_text="Products written to the local store",
    )


def record_proxy_request(endpoint: str, outcome: str) -> None:
    """Record one request routed through an egress point.

    Args:
        endpoint: Proxy label, or ``direct``.
        outcome: ``success``, ``rate_limited`` or ``failed``.
    """
    increment_counter(
        PROXY_REQUESTS,
        labels={"endpoint": endpoint, "outcome": outcome},
        help_text="Requests routed through the proxy pool",
    )


def record_proxy_cooldown(endpoint: str) -> None:
    increment_counter(
        PROXY_COOLDOWNS,
        labels={"endpoint": endpoint},
        help_text="Times a proxy endpoint entered cooldown",
    )


# ---------------------------------------------------------------------------
# Export utilities
# ---------------------------------------------------------------------------


def _label_str(key: LabelKey, quoted: bool) -> str:
    if quoted:
        return ",".join(f'{k}="{v}"' for k, v in key)
    return ",".join(f"{k}={v}" for k, v in key)


def get_metrics_summary() -> dict[str, object]:
    """Return a summary of all metrics for logging or API response."""
    counters: dict[str, dict[str, float]] = {}
    histograms: dict[str, dict[str, dict[str, float]]] = {}

    for name, counter in _registry.all_counters().items():
        counters[name] = {
            (_label_str(key, False) or "default"): value
            for key, value in counter.items()
        }

    for name, histogram in _registry.all_histograms().items():
        histograms[name] = {
            (_label_str(key, False) or "default"): histogram.get_stats(dict(key))
            for key in histogram.keys()
        }

    return {"counters": counters, "histograms": histograms}


def format_prometheus() -> str:
    """Format metrics in Prometheus text exposition format."""
    lines: list[str] = []

    for name, counter in _registry.all_counters().items():
        if counter.help_text:
            lines.append(f"# HELP {name} {counter.help_text}")
        lines.append(f"# TYPE {name} counter")
        for key, value in counter.items():
            if key:
                lines.append(f"{name}{{{_label_str(key, True)}}} {value}")
            else:
                lines.append(f"{name} {value}")

    for name, histogram in _registry.all_histograms().items():
        if histogram.help_text:
            lines.append(f"# HELP {name} {histogram.help_text}")
        lines.append(f"# TYPE {name} summary")
        for key in histogram.keys():
            stats = histogram.get_stats(dict(key))
            if key:
                labels = _label_str(key, True)
                lines.append(f"{name}_count{{{labels}}} {stats['count']}")
                lines.append(f"{name}_sum{{{labels}}} {stats['sum']}")
            else:
                lines.append(f"{name}_count {stats['count']}")
                lines.append(f"{name}_sum {stats['sum']}")

    return "\n".join(lines)
