"""Rate limiter interfaces and value types.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the storage backend can be swapped without touching route code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

from admission.utils.metrics import RateLimitMetrics

FIXED_WINDOW = "fixed-window"
SLIDING_WINDOW = "sliding-window"
TOKEN_BUCKET = "token-bucket"
LEAKY_BUCKET = "leaky-bucket"

DEFAULT_PENALTY_MS = 1000.0

# Sentinel returned for names without a registered configuration.
UNMETERED = -1

# Alternate option names accepted when a config is supplied as a mapping.
_OPTION_ALIASES = {
    "windowSize": "window_size_ms",
    "window_size": "window_size_ms",
    "maxRequests": "max_requests",
    "penalty": "penalty_ms",
}


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for a named limit.

    Attributes:
        strategy: One of fixed-window, sliding-window, token-bucket, leaky-bucket.
        window_size_ms: Time base of the algorithm in milliseconds.
        max_requests: Capacity; its meaning depends on the strategy. 0 denies all.
        burst: Token-bucket capacity. Defaults to max_requests.
        penalty_ms: Retry hint attached to denials. Defaults to 1000 ms.
    """

    strategy: str
    window_size_ms: float
    max_requests: int
    burst: int | None = None
    penalty_ms: float | None = None

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "RateLimitConfig":
        """Build a config from a dict using snake_case or camelCase option names.

        Raises:
            TypeError: On unknown or missing options.
        """
        normalized = {_OPTION_ALIASES.get(k, k): v for k, v in options.items()}
        return cls(**normalized)

    @property
    def bucket_capacity(self) -> int:
        return self.burst if self.burst is not None else self.max_requests


@dataclass(frozen=True)
class RateLimitStatus:
    """Result of a single admission check.

    Attributes:
        allowed: Whether the request may proceed.
        remaining: Quota left (>= 0), or -1 when the name is unmetered.
        reset_time: Epoch milliseconds at which the quota is expected to recover.
        retry_after_ms: Suggested wait when denied; None when allowed.
        limit: Configured max_requests, or -1 when unmetered.
    """

    allowed: bool
    remaining: int
    reset_time: float
    retry_after_ms: float | None = None
    limit: int = UNMETERED


class AbstractRateLimiter(ABC):
    """Interface for rate limiters keyed by a configuration name."""

    @abstractmethod
    def set_config(self, name: str, config: RateLimitConfig | Mapping[str, Any]) -> RateLimitConfig:
        """Register or replace the configuration for ``name``.

        Raises:
            ConfigurationError: If the configuration is invalid.
        """
        raise NotImplementedError

    @abstractmethod
    def check_limit(
        self,
        name: str,
        client_id: str = "anonymous",
        endpoint: str = "default",
    ) -> RateLimitStatus:
        """Evaluate one request against the limit registered under ``name``."""
        raise NotImplementedError

    @abstractmethod
    def get_config(self, name: str) -> RateLimitConfig | None:
        raise NotImplementedError

    @abstractmethod
    def get_metrics(self, name: str) -> RateLimitMetrics | None:
        raise NotImplementedError

    @abstractmethod
    def reset(self, name: str) -> None:
        """Return every key under ``name`` to its zero state. Metrics are kept."""
        raise NotImplementedError
