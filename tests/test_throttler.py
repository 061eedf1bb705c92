"""Tests for the asyncio throttler: spacing, concurrency cap, timeouts."""

import asyncio
import logging
import time

import pytest

from admission.core.errors import ConfigurationError, ThrottleTimeoutError
from admission.services.throttler import ThrottleConfig, Throttler


@pytest.mark.asyncio
async def test_unconfigured_name_runs_immediately() -> None:
    throttler = Throttler()

    async def _op() -> str:
        return "done"

    assert await throttler.throttle("free", _op) == "done"
    assert throttler.get_status("free").concurrent == 0


@pytest.mark.asyncio
async def test_consecutive_calls_are_spaced_by_min_interval() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(min_interval_ms=200))
    starts: list[float] = []

    async def _op() -> None:
        starts.append(time.monotonic())

    await throttler.throttle("upstream", _op)
    await throttler.throttle("upstream", _op)

    assert starts[1] - starts[0] >= 0.19


@pytest.mark.asyncio
async def test_parallel_calls_are_spaced_between_starts() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(min_interval_ms=100))
    starts: list[float] = []

    async def _op() -> None:
        starts.append(time.monotonic())

    await asyncio.gather(*(throttler.throttle("upstream", _op) for _ in range(3)))

    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(gap >= 0.09 for gap in gaps)


@pytest.mark.asyncio
async def test_concurrency_cap_is_never_exceeded() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(max_concurrent=2))
    active = 0
    peak = 0
    order: list[int] = []

    async def _op(i: int) -> int:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        order.append(i)
        await asyncio.sleep(0.01)
        active -= 1
        return i

    results = await asyncio.gather(
        *(throttler.throttle("upstream", lambda i=i: _op(i)) for i in range(12))
    )

    assert results == list(range(12))
    assert peak == 2
    # waiters are admitted in arrival order
    assert order == list(range(12))
    status = throttler.get_status("upstream")
    assert status.concurrent == 0
    assert status.queued == 0


@pytest.mark.asyncio
async def test_status_reports_in_flight_and_queued() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(max_concurrent=1))
    gate = asyncio.Event()

    async def _op() -> None:
        await gate.wait()

    tasks = [asyncio.create_task(throttler.throttle("upstream", _op)) for _ in range(3)]
    await asyncio.sleep(0.01)

    status = throttler.get_status("upstream")
    assert status.concurrent == 1
    assert status.queued == 2

    gate.set()
    await asyncio.gather(*tasks)

    status = throttler.get_status("upstream")
    assert status.concurrent == 0
    assert status.queued == 0
    assert status.last_call_at > 0


@pytest.mark.asyncio
async def test_operation_error_propagates_and_releases_slot() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(max_concurrent=1))

    async def _boom() -> None:
        raise ValueError("upstream failed")

    async def _ok() -> str:
        return "ok"

    with pytest.raises(ValueError, match="upstream failed"):
        await throttler.throttle("upstream", _boom)

    assert throttler.get_status("upstream").concurrent == 0
    assert await throttler.throttle("upstream", _ok) == "ok"


@pytest.mark.asyncio
async def test_wait_beyond_timeout_raises_throttle_timeout() -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(max_concurrent=1))
    gate = asyncio.Event()

    async def _hold() -> None:
        await gate.wait()

    async def _quick() -> str:
        return "quick"

    holder = asyncio.create_task(throttler.throttle("upstream", _hold))
    await asyncio.sleep(0.01)

    with pytest.raises(ThrottleTimeoutError) as exc_info:
        await throttler.throttle("upstream", _quick, timeout=0.05)
    assert exc_info.value.code == "throttle_timeout"
    assert throttler.get_status("upstream").queued == 0

    gate.set()
    await holder
    assert throttler.get_status("upstream").concurrent == 0
    assert await throttler.throttle("upstream", _quick, timeout=0.5) == "quick"


@pytest.mark.asyncio
async def test_default_timeout_applies_to_spacing_wait() -> None:
    throttler = Throttler(default_timeout=0.05)
    throttler.set_config("slow", ThrottleConfig(min_interval_ms=5_000))

    async def _op() -> None:
        return None

    await throttler.throttle("slow", _op)
    with pytest.raises(ThrottleTimeoutError):
        await throttler.throttle("slow", _op)
    assert throttler.get_status("slow").concurrent == 0


@pytest.mark.asyncio
async def test_queue_size_overflow_is_logged_not_rejected(caplog: pytest.LogCaptureFixture) -> None:
    throttler = Throttler()
    throttler.set_config("upstream", ThrottleConfig(max_concurrent=1, queue_size=1))
    gate = asyncio.Event()

    async def _op() -> None:
        await gate.wait()

    with caplog.at_level(logging.WARNING, logger="admission.services.throttler"):
        tasks = [asyncio.create_task(throttler.throttle("upstream", _op)) for _ in range(3)]
        await asyncio.sleep(0.01)
        gate.set()
        await asyncio.gather(*tasks)

    assert any(r.getMessage() == "throttle.queue_over_capacity" for r in caplog.records)


def test_set_config_accepts_camel_case_option_names() -> None:
    throttler = Throttler()

    config = throttler.set_config("x", {"minInterval": 100, "maxConcurrent": 2, "queueSize": 5})

    assert config == ThrottleConfig(min_interval_ms=100, max_concurrent=2, queue_size=5)
    assert throttler.get_config("x") == config


@pytest.mark.parametrize(
    "options",
    [
        {"min_interval_ms": -1},
        {"max_concurrent": 0},
        {"queue_size": -1},
        {"burst": 3},
    ],
)
def test_invalid_throttle_config_raises(options: dict) -> None:
    with pytest.raises(ConfigurationError):
        Throttler().set_config("x", options)


def test_status_of_unknown_name_is_zero() -> None:
    status = Throttler().get_status("never")

    assert (status.last_call_at, status.concurrent, status.queued) == (0.0, 0, 0)
