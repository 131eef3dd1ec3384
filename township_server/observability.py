"""Structured logging and in-process metrics.

Every event is one JSON line on the ``township`` logger. Counters and latency
samples live in a process-local registry exposed by ``GET /metrics``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict, deque
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger("township")

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
logger.setLevel(logging.INFO)

MAX_SAMPLES = 2000


def _percentile(ordered: list[float], fraction: float) -> float:
    idx = max(0, int(fraction * len(ordered)) - 1)
    return ordered[idx]


class MetricsRegistry:
    def __init__(self, max_samples: int = MAX_SAMPLES):
        self._lock = threading.Lock()
        self._counters: dict[str, int] = defaultdict(int)
        self._samples: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=max_samples))

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            self._samples[name].append(float(value))

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)
            samples = {name: sorted(values) for name, values in self._samples.items()}
        timings = {}
        for name, ordered in samples.items():
            if not ordered:
                timings[name] = {"count": 0, "p50": 0.0, "p95": 0.0, "max": 0.0}
                continue
            timings[name] = {
                "count": len(ordered),
                "p50": _percentile(ordered, 0.5),
                "p95": _percentile(ordered, 0.95),
                "max": ordered[-1],
            }
        return {"counters": counters, "timings_ms": timings}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._samples.clear()


metrics = MetricsRegistry()


def _render(event: str, fields: dict[str, Any]) -> str:
    return json.dumps({"event": event, **fields}, separators=(",", ":"), sort_keys=True, default=str)


def log_event(event: str, **fields: Any) -> None:
    logger.info(_render(event, fields))


def log_warning(event: str, **fields: Any) -> None:
    metrics.increment(f"{event}.warnings")
    logger.warning(_render(event, fields))


def log_error(event: str, **fields: Any) -> None:
    metrics.increment(f"{event}.errors")
    logger.error(_render(event, fields))


def increment(name: str, value: int = 1) -> None:
    metrics.increment(name, value)


def observe_ms(name: str, value: float) -> None:
    metrics.observe(name, value)


@contextmanager
def timed(name: str) -> Iterator[None]:
    """Record the wall time of the block under ``name``, also when it raises."""
    t0 = time.perf_counter()
    try:
        yield
    finally:
        metrics.observe(name, (time.perf_counter() - t0) * 1000.0)


def snapshot() -> dict[str, Any]:
    return metrics.snapshot()
