"""Limiting algorithms and their per-key state.

Strategies are stateless objects; all mutable data lives in the state
dataclass created by ``new_state``. ``evaluate`` performs the whole
read-modify-write for one request and must be called with the key's lock held.
All times are epoch milliseconds.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from admission.adapters.rate_limit.base import (
    FIXED_WINDOW,
    LEAKY_BUCKET,
    SLIDING_WINDOW,
    TOKEN_BUCKET,
    RateLimitConfig,
)

LEAKY_BUCKET_DEPTH_FACTOR = 10


@dataclass(frozen=True)
class Decision:
    allowed: bool
    remaining: int
    reset_time: float


@dataclass
class FixedWindowState:
    window_start: float
    request_count: int = 0


@dataclass
class SlidingWindowState:
    request_timestamps: deque[float] = field(default_factory=deque)


@dataclass
class TokenBucketState:
    tokens: float
    last_refill: float


@dataclass
class LeakyBucketState:
    queue: deque[float] = field(default_factory=deque)


class Strategy(ABC):
    """A rate limiting algorithm."""

    name: str
    # Idle state may be dropped only when a fresh state decides the same way.
    evict_when_idle = True

    @abstractmethod
    def new_state(self, config: RateLimitConfig, now: float) -> Any:
        """Return the zero-usage state for a fresh key."""

    @abstractmethod
    def evaluate(
        self,
        state: Any,
        config: RateLimitConfig,
        now: float,
        penalty_ms: float,
    ) -> Decision:
        """Decide one request, mutating ``state`` when it is admitted."""


class FixedWindowStrategy(Strategy):
    """Counter reset lazily once a window has fully elapsed.

    Up to ``2 * max_requests`` can pass across a window boundary; that is the
    nature of fixed windows.
    """

    name = FIXED_WINDOW

    def new_state(self, config: RateLimitConfig, now: float) -> FixedWindowState:
        return FixedWindowState(window_start=now)

    def evaluate(
        self,
        state: FixedWindowState,
        config: RateLimitConfig,
        now: float,
        penalty_ms: float,
    ) -> Decision:
        if now - state.window_start > config.window_size_ms:
            state.window_start = now
            state.request_count = 0

        allowed = state.request_count < config.max_requests
        if allowed:
            state.request_count += 1

        return Decision(
            allowed=allowed,
            remaining=config.max_requests - state.request_count,
            reset_time=state.window_start + config.window_size_ms,
        )


class SlidingWindowStrategy(Strategy):
    """Exact count over a trailing window; O(requests in window) memory."""

    name = SLIDING_WINDOW

    def new_state(self, config: RateLimitConfig, now: float) -> SlidingWindowState:
        return SlidingWindowState()

    def evaluate(
        self,
        state: SlidingWindowState,
        config: RateLimitConfig,
        now: float,
        penalty_ms: float,
    ) -> Decision:
        timestamps = state.request_timestamps
        cutoff = now - config.window_size_ms
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

        allowed = len(timestamps) < config.max_requests
        if allowed:
            timestamps.append(now)

        oldest = timestamps[0] if timestamps else now
        return Decision(
            allowed=allowed,
            remaining=config.max_requests - len(timestamps),
            reset_time=oldest + config.window_size_ms,
        )


class TokenBucketStrategy(Strategy):
    """Refills ``max_requests`` tokens per window up to the bucket capacity.

    ``reset_time`` is approximate: it is one full window from now, not the time
    until the next single token.
    """

    name = TOKEN_BUCKET

    def new_state(self, config: RateLimitConfig, now: float) -> TokenBucketState:
        return TokenBucketState(tokens=float(config.bucket_capacity), last_refill=now)

    def evaluate(
        self,
        state: TokenBucketState,
        config: RateLimitConfig,
        now: float,
        penalty_ms: float,
    ) -> Decision:
        elapsed = max(0.0, now - state.last_refill)
        refill = (elapsed / config.window_size_ms) * config.max_requests
        state.tokens = min(float(config.bucket_capacity), state.tokens + refill)
        state.last_refill = now

        allowed = config.max_requests > 0 and state.tokens >= 1
        if allowed:
            state.tokens -= 1

        return Decision(
            allowed=allowed,
            remaining=math.floor(state.tokens),
            reset_time=now + config.window_size_ms,
        )


class LeakyBucketStrategy(Strategy):
    """Queue-depth cap of ``max_requests * 10`` activity markers.

    Markers are only evicted when the cap is exceeded; nothing drains over
    time. This bounds total activity, not a leak rate.
    """

    name = LEAKY_BUCKET
    # Markers never expire, so a fresh bucket would admit a saturated key.
    evict_when_idle = False

    def new_state(self, config: RateLimitConfig, now: float) -> LeakyBucketState:
        return LeakyBucketState()

    def evaluate(
        self,
        state: LeakyBucketState,
        config: RateLimitConfig,
        now: float,
        penalty_ms: float,
    ) -> Decision:
        depth = config.max_requests * LEAKY_BUCKET_DEPTH_FACTOR
        state.queue.append(now)

        if len(state.queue) > depth:
            state.queue.popleft()
            return Decision(allowed=False, remaining=0, reset_time=now + penalty_ms)

        return Decision(
            allowed=True,
            remaining=depth - len(state.queue),
            reset_time=now + config.window_size_ms,
        )


STRATEGIES: dict[str, Strategy] = {
    strategy.name: strategy
    for strategy in (
        FixedWindowStrategy(),
        SlidingWindowStrategy(),
        TokenBucketStrategy(),
        LeakyBucketStrategy(),
    )
}


def get_strategy(name: str) -> Strategy | None:
    return STRATEGIES.get(name)
