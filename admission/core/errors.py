"""Application-level exception types.

Every error raised by the admission layer is local to a single call: a
misconfigured limit never changes the decisions made for another name.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    name: str
    field: str
    value: Any
    hint: str
    timeout_seconds: float
    queued: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for admission-control failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when a rate limit or throttle configuration is rejected."""


class ThrottleTimeoutError(AppError):
    """Raised when a throttled call waits longer than its deadline."""
