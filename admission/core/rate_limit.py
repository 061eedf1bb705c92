"""Rate limiting dependency for FastAPI routes.

This module translates limiter decisions into HTTP semantics: a denial
becomes ``429 Too Many Requests`` carrying ``Retry-After`` and the
``X-RateLimit-*`` headers. Allowed requests pass through untouched.

Client identity, in order of preference:
- the ``X-User-ID`` header set by the authentication layer
- the first hop of ``X-Forwarded-For``
- the peer address
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated, Awaitable, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from admission.adapters.rate_limit.base import RateLimitStatus
from admission.core.container import AdmissionControl, get_admission


def get_client_identifier(request: Request, user_id: str | None = None) -> str:
    """Resolve the client identity used as the runtime rate-limit key."""

    if user_id:
        return f"user:{user_id}"

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return f"ip:{first_hop}"

    client_host = request.client.host if request.client else "unknown"
    return f"ip:{client_host}"


def _iso_from_epoch_ms(epoch_ms: float) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000.0, tz=timezone.utc).isoformat()


def retry_after_seconds(result: RateLimitStatus) -> int:
    """Whole seconds a denied caller should wait, rounded up."""

    if result.retry_after_ms is None:
        return 0
    return max(0, math.ceil(result.retry_after_ms / 1000.0))


def build_rate_limit_headers(result: RateLimitStatus) -> dict[str, str]:
    """Build ``X-RateLimit-*`` (and ``Retry-After`` when denied) headers."""

    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": _iso_from_epoch_ms(result.reset_time),
    }
    if not result.allowed:
        headers["Retry-After"] = str(retry_after_seconds(result))
    return headers


def enforce_rate_limit(name: str) -> Callable[..., Awaitable[RateLimitStatus]]:
    """Build a FastAPI dependency enforcing the limit registered as ``name``.

    Usage:
        @router.post("/checkout", dependencies=[Depends(enforce_rate_limit("checkout"))])

    Raises (from the dependency):
        HTTPException: 429 Too Many Requests when the limit is exceeded.
    """

    async def _enforce(
        request: Request,
        admission: Annotated[AdmissionControl, Depends(get_admission)],
        x_user_id: Annotated[str | None, Header(alias="X-User-ID")] = None,
    ) -> RateLimitStatus:
        client_id = get_client_identifier(request, x_user_id)
        result = admission.limiter.check_limit(name, client_id, request.url.path)
        if result.allowed:
            return result

        headers = build_rate_limit_headers(result) if admission.include_headers else {}
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Try again later.",
            headers=headers or None,
        )

    return _enforce
