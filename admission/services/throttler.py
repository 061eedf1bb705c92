"""Cooperative throttling of asynchronous operations.

A throttled call first takes a concurrency slot (when ``max_concurrent`` is
set), then waits out the minimum spacing, then runs. Waiters queue in FIFO
order and are woken the moment a slot is released; nothing polls.

A Throttler is bound to the event loop that first uses a key.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from admission.core.errors import ConfigurationError, ThrottleTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_OPTION_ALIASES = {
    "minInterval": "min_interval_ms",
    "minIntervalMs": "min_interval_ms",
    "maxConcurrent": "max_concurrent",
    "queueSize": "queue_size",
}


@dataclass(frozen=True)
class ThrottleConfig:
    """Pacing rules for a throttled name.

    Attributes:
        min_interval_ms: Minimum spacing between calls.
        max_concurrent: Cap on in-flight calls; None means unbounded.
        queue_size: Expected queue bound. Informational: exceeding it is logged,
            never rejected.
    """

    min_interval_ms: float = 0.0
    max_concurrent: int | None = None
    queue_size: int | None = None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "ThrottleConfig":
        return cls(**{_OPTION_ALIASES.get(k, k): v for k, v in options.items()})


@dataclass(frozen=True)
class ThrottleStatus:
    last_call_at: float
    concurrent: int
    queued: int


@dataclass
class _ThrottleState:
    last_call_at: float = 0.0
    in_flight: int = 0
    waiters: deque[asyncio.Future[None]] = field(default_factory=deque)
    spacing_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def validate_throttle_config(name: str, config: ThrottleConfig | Mapping[str, Any]) -> ThrottleConfig:
    if isinstance(config, Mapping):
        try:
            config = ThrottleConfig.from_mapping(config)
        except TypeError as exc:
            raise ConfigurationError(
                code="throttle_invalid_options",
                message=f"Invalid options for throttle '{name}': {exc}",
                details={"name": name},
            ) from exc

    if config.min_interval_ms < 0:
        raise ConfigurationError(
            code="throttle_invalid_interval",
            message="min_interval_ms must be >= 0",
            details={"name": name, "field": "min_interval_ms", "value": config.min_interval_ms},
        )
    if config.max_concurrent is not None and config.max_concurrent < 1:
        raise ConfigurationError(
            code="throttle_invalid_concurrency",
            message="max_concurrent must be >= 1",
            details={"name": name, "field": "max_concurrent", "value": config.max_concurrent},
        )
    if config.queue_size is not None and config.queue_size < 0:
        raise ConfigurationError(
            code="throttle_invalid_queue_size",
            message="queue_size must be >= 0",
            details={"name": name, "field": "queue_size", "value": config.queue_size},
        )
    return config


class Throttler:
    """Spaces out and concurrency-bounds calls per name."""

    def __init__(
        self,
        *,
        default_timeout: float | None = None,
        clock: Callable[[], float] = lambda: time.time() * 1000.0,
    ) -> None:
        """
        Args:
            default_timeout: Seconds a call may wait before it starts, used when
                ``throttle`` gets no explicit timeout. None waits indefinitely.
            clock: Time source returning UNIX time in milliseconds.
        """
        self._configs: dict[str, ThrottleConfig] = {}
        self._states: dict[str, _ThrottleState] = {}
        self._default_timeout = default_timeout
        self._clock = clock

    def set_config(self, name: str, config: ThrottleConfig | Mapping[str, Any]) -> ThrottleConfig:
        config = validate_throttle_config(name, config)
        self._configs[name] = config
        logger.debug(
            "throttle.config_set",
            extra={
                "throttle_name": name,
                "min_interval_ms": config.min_interval_ms,
                "max_concurrent": config.max_concurrent,
            },
        )
        return config

    def get_config(self, name: str) -> ThrottleConfig | None:
        return self._configs.get(name)

    def get_status(self, name: str) -> ThrottleStatus:
        state = self._states.get(name)
        if state is None:
            return ThrottleStatus(last_call_at=0.0, concurrent=0, queued=0)
        return ThrottleStatus(
            last_call_at=state.last_call_at,
            concurrent=state.in_flight,
            queued=sum(1 for waiter in state.waiters if not waiter.done()),
        )

    def _state_for(self, name: str) -> _ThrottleState:
        state = self._states.get(name)
        if state is None:
            state = _ThrottleState()
            self._states[name] = state
        return state

    async def throttle(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``operation`` once the spacing and concurrency rules allow it.

        Args:
            name: Throttle name. Unconfigured names run immediately.
            operation: Zero-argument callable returning an awaitable.
            timeout: Seconds to wait for admission. Falls back to the
                throttler's default timeout.

        Returns:
            Whatever the operation returns.

        Raises:
            ThrottleTimeoutError: If admission takes longer than ``timeout``.
            Exception: Anything raised by the operation, unchanged.
        """
        config = self._configs.get(name)
        if config is None:
            return await operation()

        state = self._state_for(name)
        timeout = timeout if timeout is not None else self._default_timeout

        try:
            await asyncio.wait_for(self._admit(name, state, config), timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "throttle.timeout",
                extra={"throttle_name": name, "timeout_s": timeout, "queued": len(state.waiters)},
            )
            raise ThrottleTimeoutError(
                code="throttle_timeout",
                message=f"Timed out after {timeout}s waiting for throttle '{name}'",
                details={"name": name, "timeout_seconds": timeout, "queued": len(state.waiters)},
            ) from exc

        try:
            return await operation()
        finally:
            state.last_call_at = self._clock()
            self._release(state, config)

    async def _admit(self, name: str, state: _ThrottleState, config: ThrottleConfig) -> None:
        await self._acquire_slot(name, state, config)
        try:
            await self._wait_spacing(state, config)
        except BaseException:
            self._release(state, config)
            raise

    async def _acquire_slot(self, name: str, state: _ThrottleState, config: ThrottleConfig) -> None:
        cap = config.max_concurrent
        if cap is None or (state.in_flight < cap and not state.waiters):
            state.in_flight += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        state.waiters.append(waiter)
        if config.queue_size is not None and len(state.waiters) > config.queue_size:
            logger.warning(
                "throttle.queue_over_capacity",
                extra={"throttle_name": name, "queued": len(state.waiters), "queue_size": config.queue_size},
            )
        else:
            logger.debug("throttle.queued", extra={"throttle_name": name, "queued": len(state.waiters)})

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just before cancellation; pass it on.
                self._release(state, config)
            else:
                try:
                    state.waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    async def _wait_spacing(self, state: _ThrottleState, config: ThrottleConfig) -> None:
        if config.min_interval_ms <= 0:
            return
        async with state.spacing_lock:
            delay_ms = state.last_call_at + config.min_interval_ms - self._clock()
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000.0)
            # Reserve the start so concurrent callers space off this call too.
            state.last_call_at = self._clock()

    def _release(self, state: _ThrottleState, config: ThrottleConfig) -> None:
        if config.max_concurrent is not None:
            while state.waiters:
                waiter = state.waiters.popleft()
                if not waiter.done():
                    # Hand the slot straight to the next waiter; in_flight is unchanged.
                    waiter.set_result(None)
                    return
        state.in_flight = max(0, state.in_flight - 1)
