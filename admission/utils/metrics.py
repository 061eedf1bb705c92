"""Per-name usage metrics for the rate limiter.

Counters are append-only aggregates. Each name has its own entry lock, so
recording a sample for one limit never waits on another.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RateLimitMetrics:
    """Point-in-time view of a limit's usage."""

    total_requests: int
    blocked_requests: int
    block_rate: float
    average_wait_time_ms: float


@dataclass
class _MetricsEntry:
    total: int = 0
    blocked: int = 0
    cumulative_wait_ms: float = 0.0
    samples: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class MetricsAccumulator:
    """Thread-safe accumulator of allow/deny samples keyed by limit name."""

    def __init__(self) -> None:
        self._entries: dict[str, _MetricsEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, name: str) -> _MetricsEntry:
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                entry = _MetricsEntry()
                self._entries[name] = entry
            return entry

    def record(self, name: str, *, allowed: bool, wait_ms: float) -> None:
        """Record one decision and the time it took to reach it."""

        entry = self._entry(name)
        with entry.lock:
            entry.total += 1
            if not allowed:
                entry.blocked += 1
            entry.cumulative_wait_ms += wait_ms
            entry.samples += 1

    def snapshot(self, name: str) -> RateLimitMetrics | None:
        """Return derived metrics for ``name``, or None if nothing was recorded."""

        with self._lock:
            entry = self._entries.get(name)
        if entry is None:
            return None

        with entry.lock:
            total = entry.total
            blocked = entry.blocked
            cumulative = entry.cumulative_wait_ms
            samples = entry.samples

        if samples == 0:
            return None

        return RateLimitMetrics(
            total_requests=total,
            blocked_requests=blocked,
            block_rate=blocked / total if total else 0.0,
            average_wait_time_ms=cumulative / samples,
        )

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)
