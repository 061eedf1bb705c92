"""Rate limiting adapters.

A small abstraction layer: routes depend on ``AbstractRateLimiter`` while the
in-memory implementation owns the per-key state for all four strategies.
"""

from admission.adapters.rate_limit.base import (
    AbstractRateLimiter,
    RateLimitConfig,
    RateLimitStatus,
)
from admission.adapters.rate_limit.in_memory import InMemoryRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryRateLimiter",
    "RateLimitConfig",
    "RateLimitStatus",
]
