"""Pydantic schemas for the limit and throttle admin endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field

from admission.adapters.rate_limit.base import RateLimitConfig, RateLimitStatus
from admission.services.throttler import ThrottleStatus
from admission.utils.metrics import RateLimitMetrics


class RateLimitConfigIn(BaseModel):
    """Limit definition submitted by an operator.

    Bounds and strategy are validated by the limiter so the API reports the
    same ConfigurationError as in-process callers.
    """

    strategy: str = Field(
        ...,
        description="fixed-window, sliding-window, token-bucket or leaky-bucket.",
    )
    window_size_ms: float = Field(..., description="Window / refill period in milliseconds.")
    max_requests: int = Field(..., description="Capacity per window; 0 denies every request.")
    burst: int | None = Field(default=None, description="Token-bucket capacity (defaults to max_requests).")
    penalty_ms: float | None = Field(default=None, description="Retry-after hint on denial.")

    def to_config(self) -> RateLimitConfig:
        return RateLimitConfig(**self.model_dump())


class RateLimitConfigOut(RateLimitConfigIn):
    name: str

    @classmethod
    def from_config(cls, name: str, config: RateLimitConfig) -> "RateLimitConfigOut":
        return cls(
            name=name,
            strategy=config.strategy,
            window_size_ms=config.window_size_ms,
            max_requests=config.max_requests,
            burst=config.burst,
            penalty_ms=config.penalty_ms,
        )


class RateLimitCheckIn(BaseModel):
    client_id: str = Field(default="anonymous", min_length=1)
    endpoint: str = Field(default="default", min_length=1)


class RateLimitStatusOut(BaseModel):
    allowed: bool
    remaining: int
    reset_time: float = Field(..., description="Epoch milliseconds.")
    retry_after_ms: float | None = None
    limit: int

    @classmethod
    def from_status(cls, result: RateLimitStatus) -> "RateLimitStatusOut":
        return cls(
            allowed=result.allowed,
            remaining=result.remaining,
            reset_time=result.reset_time,
            retry_after_ms=result.retry_after_ms,
            limit=result.limit,
        )


class RateLimitMetricsOut(BaseModel):
    total_requests: int
    blocked_requests: int
    block_rate: float = Field(..., description="blocked / total, between 0 and 1.")
    average_wait_time_ms: float

    @classmethod
    def from_metrics(cls, metrics: RateLimitMetrics) -> "RateLimitMetricsOut":
        return cls(
            total_requests=metrics.total_requests,
            blocked_requests=metrics.blocked_requests,
            block_rate=metrics.block_rate,
            average_wait_time_ms=metrics.average_wait_time_ms,
        )


class ThrottleStatusOut(BaseModel):
    last_call_at: float
    concurrent: int
    queued: int

    @classmethod
    def from_status(cls, status: ThrottleStatus) -> "ThrottleStatusOut":
        return cls(last_call_at=status.last_call_at, concurrent=status.concurrent, queued=status.queued)


class RateLimitMetricsListOut(BaseModel):
    metrics: dict[str, RateLimitMetricsOut]

    @classmethod
    def from_metrics(cls, metrics: dict[str, RateLimitMetrics]) -> "RateLimitMetricsListOut":
        return cls(metrics={name: RateLimitMetricsOut.from_metrics(m) for name, m in metrics.items()})
