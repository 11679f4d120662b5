"""
Lightweight in-process metrics for the self-assembly runtime.

Counters, gauges and histograms kept in memory and exported as a JSON-ready
snapshot. Labels are folded into the metric key, so
``metrics.inc("assembly_failed_total", stage="approval")`` is tracked as
``assembly_failed_total{stage=approval}``.

Usage:
    from neurogen.metrics import metrics

    metrics.inc("messages_published_total")
    metrics.observe("assembly_pipeline_seconds", 0.42)
    snapshot = metrics.snapshot()
"""

from __future__ import annotations

import threading
import time
from typing import Any


def _key(name: str, labels: dict[str, Any]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}{{{rendered}}}"


class _Histogram:
    """Tracks count, sum, min and max of observed values."""

    __slots__ = ("count", "total", "min_val", "max_val")

    def __init__(self) -> None:
        self.count = 0
        self.total = 0.0
        self.min_val = float("inf")
        self.max_val = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min_val = min(self.min_val, value)
        self.max_val = max(self.max_val, value)

    def snapshot(self) -> dict[str, Any]:
        avg = self.total / self.count if self.count else 0.0
        return {
            "count": self.count,
            "sum": round(self.total, 4),
            "avg": round(avg, 4),
            "min": round(self.min_val, 4) if self.count else 0.0,
            "max": round(self.max_val, 4) if self.count else 0.0,
        }


class MetricsRegistry:
    """Thread-safe in-process metrics registry."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = {}
        self._gauges: dict[str, float] = {}
        self._histograms: dict[str, _Histogram] = {}
        self._start_time = time.monotonic()

    def inc(self, name: str, value: int = 1, **labels: Any) -> None:
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def counter(self, name: str, **labels: Any) -> int:
        with self._lock:
            return self._counters.get(_key(name, labels), 0)

    def set_gauge(self, name: str, value: float, **labels: Any) -> None:
        with self._lock:
            self._gauges[_key(name, labels)] = value

    def gauge(self, name: str, **labels: Any) -> float:
        with self._lock:
            return self._gauges.get(_key(name, labels), 0.0)

    def observe(self, name: str, value: float, **labels: Any) -> None:
        key = _key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, _Histogram()).observe(value)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": round(time.monotonic() - self._start_time, 1),
                "counters": dict(self._counters),
                "gauges": dict(self._gauges),
                "histograms": {k: v.snapshot() for k, v in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._gauges.clear()
            self._histograms.clear()
            self._start_time = time.monotonic()


metrics = MetricsRegistry()
