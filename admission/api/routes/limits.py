from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Response, status

from admission.core.container import ADMIN_LIMIT, AdmissionControl, get_admission
from admission.core.errors import ConfigurationError
from admission.core.rate_limit import build_rate_limit_headers, enforce_rate_limit
from admission.schemas.limits import (
    RateLimitCheckIn,
    RateLimitConfigIn,
    RateLimitConfigOut,
    RateLimitMetricsListOut,
    RateLimitMetricsOut,
    RateLimitStatusOut,
    ThrottleStatusOut,
)

router = APIRouter(tags=["Limits"], dependencies=[Depends(enforce_rate_limit(ADMIN_LIMIT))])

Admission = Annotated[AdmissionControl, Depends(get_admission)]


@router.get("/limits")
def list_limits(admission: Admission) -> dict:
    """Names of every registered rate limit."""

    return {"limits": admission.limiter.names()}


@router.put("/limits/{name}", response_model=RateLimitConfigOut)
def put_limit(name: str, body: RateLimitConfigIn, admission: Admission) -> RateLimitConfigOut:
    """Register or replace a rate limit.

    Replacing a limit discards the usage state of every key under it.

    Raises:
        ConfigurationError: Rendered as 400 by the global handler.
    """

    if name == ADMIN_LIMIT:
        raise ConfigurationError(
            code="rate_limit_protected",
            message=f"Limit '{name}' guards the admin routes and cannot be replaced here",
            details={"name": name},
        )

    config = admission.limiter.set_config(name, body.to_config())
    return RateLimitConfigOut.from_config(name, config)


@router.get("/limits/{name}", response_model=RateLimitConfigOut)
def get_limit(name: str, admission: Admission) -> RateLimitConfigOut:
    config = admission.limiter.get_config(name)
    if config is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown limit '{name}'")
    return RateLimitConfigOut.from_config(name, config)


@router.post("/limits/{name}/check", response_model=RateLimitStatusOut)
def check_limit(
    name: str,
    body: RateLimitCheckIn,
    response: Response,
    admission: Admission,
) -> RateLimitStatusOut:
    """Evaluate one request without serving it; useful for dry runs.

    Always answers 200: the decision is in the body. Unknown names are
    unmetered (``remaining == -1``).
    """

    result = admission.limiter.check_limit(name, body.client_id, body.endpoint)
    if admission.include_headers and result.limit >= 0:
        response.headers.update(build_rate_limit_headers(result))
    return RateLimitStatusOut.from_status(result)


@router.get("/limits/{name}/metrics", response_model=RateLimitMetricsOut)
def get_limit_metrics(name: str, admission: Admission) -> RateLimitMetricsOut:
    metrics = admission.limiter.get_metrics(name)
    if metrics is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No samples recorded for '{name}'",
        )
    return RateLimitMetricsOut.from_metrics(metrics)


@router.get("/metrics", response_model=RateLimitMetricsListOut)
def list_metrics(admission: Admission) -> RateLimitMetricsListOut:
    """Metrics of every limit that has seen at least one check."""

    return RateLimitMetricsListOut.from_metrics(admission.limiter.all_metrics())


@router.post("/limits/{name}/reset", status_code=status.HTTP_204_NO_CONTENT)
def reset_limit(name: str, admission: Admission) -> Response:
    admission.limiter.reset(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/throttles/{name}", response_model=ThrottleStatusOut)
def get_throttle_status(name: str, admission: Admission) -> ThrottleStatusOut:
    return ThrottleStatusOut.from_status(admission.throttler.get_status(name))
