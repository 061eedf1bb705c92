"""In-memory multi-strategy rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: a registry lock guards the maps, and every runtime key carries
  its own lock so unrelated keys never serialize on a decision.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from admission.adapters.rate_limit.base import (
    DEFAULT_PENALTY_MS,
    UNMETERED,
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitStatus,
)
from admission.adapters.rate_limit.strategies import STRATEGIES, Strategy, get_strategy
from admission.core.errors import ConfigurationError
from admission.core.logging import hash_identifier
from admission.utils.metrics import MetricsAccumulator, RateLimitMetrics

logger = logging.getLogger(__name__)


def epoch_ms() -> float:
    """Current UNIX time in milliseconds."""
    return time.time() * 1000.0


@dataclass
class _KeySlot:
    state: Any
    last_seen: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class _LimitEntry:
    config: RateLimitConfig
    strategy: Strategy
    slots: dict[str, _KeySlot] = field(default_factory=dict)


def validate_rate_limit_config(
    name: str,
    config: RateLimitConfig | Mapping[str, Any],
) -> RateLimitConfig:
    """Normalize and validate a rate limit configuration.

    Args:
        name: Limit name, used for error context only.
        config: A RateLimitConfig or a mapping of options.

    Returns:
        The validated RateLimitConfig.

    Raises:
        ConfigurationError: On unknown strategy, missing options or invalid bounds.
    """
    if not name:
        raise ConfigurationError(
            code="rate_limit_invalid_name",
            message="Rate limit name must be a non-empty string",
        )

    if isinstance(config, Mapping):
        try:
            config = RateLimitConfig.from_mapping(config)
        except TypeError as exc:
            raise ConfigurationError(
                code="rate_limit_invalid_options",
                message=f"Invalid options for rate limit '{name}': {exc}",
                details={"name": name},
            ) from exc

    if get_strategy(config.strategy) is None:
        raise ConfigurationError(
            code="rate_limit_unknown_strategy",
            message=(
                f"Unknown rate limit strategy: '{config.strategy}'. "
                f"Supported strategies: {', '.join(sorted(STRATEGIES))}"
            ),
            details={"name": name, "field": "strategy", "value": config.strategy},
        )

    if not config.window_size_ms > 0:
        raise ConfigurationError(
            code="rate_limit_invalid_window",
            message="window_size_ms must be > 0",
            details={"name": name, "field": "window_size_ms", "value": config.window_size_ms},
        )
    if not isinstance(config.max_requests, int) or config.max_requests < 0:
        raise ConfigurationError(
            code="rate_limit_invalid_max_requests",
            message="max_requests must be an integer >= 0",
            details={"name": name, "field": "max_requests", "value": config.max_requests},
        )
    if config.burst is not None and (not isinstance(config.burst, int) or config.burst < 0):
        raise ConfigurationError(
            code="rate_limit_invalid_burst",
            message="burst must be an integer >= 0",
            details={"name": name, "field": "burst", "value": config.burst},
        )
    if config.penalty_ms is not None and config.penalty_ms < 0:
        raise ConfigurationError(
            code="rate_limit_invalid_penalty",
            message="penalty_ms must be >= 0",
            details={"name": name, "field": "penalty_ms", "value": config.penalty_ms},
        )

    return config


class InMemoryRateLimiter(AbstractRateLimiter):
    """Rate limiter supporting fixed/sliding window and token/leaky bucket.

    Each configuration name holds an independent set of runtime keys, one per
    ``client_id:endpoint`` pair, created lazily on first use.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = epoch_ms,
        default_penalty_ms: float = DEFAULT_PENALTY_MS,
        idle_windows: int = 10,
        sweep_interval_ms: float | None = 60_000.0,
    ) -> None:
        """Initialize the limiter.

        Args:
            clock: Time source returning UNIX time in milliseconds.
            default_penalty_ms: Retry hint for limits without a penalty.
            idle_windows: Keys untouched for this many windows are evicted by
                the idle sweep.
            sweep_interval_ms: Minimum spacing between opportunistic sweeps run
                from ``check_limit``; None disables them.
        """
        self._clock = clock
        self._default_penalty_ms = default_penalty_ms
        self._idle_windows = idle_windows
        self._sweep_interval_ms = sweep_interval_ms
        self._lock = threading.RLock()
        self._limits: dict[str, _LimitEntry] = {}
        self._metrics = MetricsAccumulator()
        self._last_sweep = clock()

    def set_config(self, name: str, config: RateLimitConfig | Mapping[str, Any]) -> RateLimitConfig:
        config = validate_rate_limit_config(name, config)
        strategy = STRATEGIES[config.strategy]

        with self._lock:
            self._limits[name] = _LimitEntry(config=config, strategy=strategy)

        logger.debug(
            "rate_limit.config_set",
            extra={
                "limit_name": name,
                "strategy": config.strategy,
                "window_ms": config.window_size_ms,
                "max_requests": config.max_requests,
            },
        )
        return config

    def get_config(self, name: str) -> RateLimitConfig | None:
        with self._lock:
            entry = self._limits.get(name)
        return entry.config if entry else None

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._limits)

    def _slot_for(self, entry: _LimitEntry, key: str, now: float) -> _KeySlot:
        with self._lock:
            slot = entry.slots.get(key)
            if slot is None:
                slot = _KeySlot(state=entry.strategy.new_state(entry.config, now), last_seen=now)
                entry.slots[key] = slot
            return slot

    def check_limit(
        self,
        name: str,
        client_id: str = "anonymous",
        endpoint: str = "default",
    ) -> RateLimitStatus:
        """Evaluate one request for ``client_id`` on ``endpoint`` under ``name``.

        Names without a configuration are unmetered: always allowed with
        ``remaining == -1``. This method never raises for that case.

        Returns:
            RateLimitStatus describing the decision.
        """
        with self._lock:
            entry = self._limits.get(name)
        if entry is None:
            return RateLimitStatus(allowed=True, remaining=UNMETERED, reset_time=0)

        started = time.perf_counter()
        config = entry.config
        penalty_ms = config.penalty_ms if config.penalty_ms is not None else self._default_penalty_ms
        key = f"{client_id}:{endpoint}"

        while True:
            slot = self._slot_for(entry, key, self._clock())
            with slot.lock:
                # A sweep or reset may have detached the slot before we locked it.
                with self._lock:
                    current = entry.slots.get(key) is slot
                if not current:
                    continue
                # Re-read the clock under the lock so timestamps stay monotonic per key.
                now = self._clock()
                decision = entry.strategy.evaluate(slot.state, config, now, penalty_ms)
                slot.last_seen = now
                break

        self._metrics.record(
            name,
            allowed=decision.allowed,
            wait_ms=(time.perf_counter() - started) * 1000.0,
        )

        if not decision.allowed:
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "limit_name": name,
                    "strategy": config.strategy,
                    "client_hash": hash_identifier(client_id),
                    "endpoint": endpoint,
                    "retry_after_ms": penalty_ms,
                },
            )

        self._maybe_sweep(now)

        return RateLimitStatus(
            allowed=decision.allowed,
            remaining=max(0, decision.remaining),
            reset_time=decision.reset_time,
            retry_after_ms=None if decision.allowed else penalty_ms,
            limit=config.max_requests,
        )

    def get_metrics(self, name: str) -> RateLimitMetrics | None:
        return self._metrics.snapshot(name)

    def all_metrics(self) -> dict[str, RateLimitMetrics]:
        """Metrics of every name that has recorded at least one sample."""
        snapshots = {name: self._metrics.snapshot(name) for name in self._metrics.names()}
        return {name: metrics for name, metrics in snapshots.items() if metrics is not None}

    def reset(self, name: str) -> None:
        with self._lock:
            entry = self._limits.get(name)
            if entry is None:
                return
            entry.slots = {}

        logger.info("rate_limit.reset", extra={"limit_name": name})

    def tracked_keys(self, name: str) -> int:
        """Number of runtime keys currently holding state under ``name``."""
        with self._lock:
            entry = self._limits.get(name)
            return len(entry.slots) if entry else 0

    def sweep_idle_state(self, now: float | None = None) -> int:
        """Drop runtime keys untouched for ``idle_windows`` windows.

        Keys of strategies whose state never expires (leaky bucket) are kept,
        and keys with a decision in progress are left for a later sweep.

        Returns:
            Number of keys evicted.
        """
        now = self._clock() if now is None else now
        evicted = 0
        with self._lock:
            self._last_sweep = now
            for entry in self._limits.values():
                if not entry.strategy.evict_when_idle:
                    continue
                max_idle = entry.config.window_size_ms * self._idle_windows
                for key, slot in list(entry.slots.items()):
                    if now - slot.last_seen <= max_idle:
                        continue
                    if not slot.lock.acquire(blocking=False):
                        continue
                    try:
                        if now - slot.last_seen > max_idle:
                            del entry.slots[key]
                            evicted += 1
                    finally:
                        slot.lock.release()

        if evicted:
            logger.debug("rate_limit.sweep", extra={"evicted": evicted})
        return evicted

    def _maybe_sweep(self, now: float) -> None:
        if self._sweep_interval_ms is None:
            return
        with self._lock:
            due = now - self._last_sweep >= self._sweep_interval_ms
        if due:
            self.sweep_idle_state(now)
