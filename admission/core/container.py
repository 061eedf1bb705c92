"""Process-wide admission objects, built once and injected.

The app factory builds one ``AdmissionControl`` and stores it on
``app.state.admission``; routes receive it through ``get_admission``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from admission.adapters.rate_limit.base import FIXED_WINDOW, RateLimitConfig
from admission.adapters.rate_limit.in_memory import InMemoryRateLimiter
from admission.core.config import AdmissionSettings, settings
from admission.services.throttler import Throttler

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000.0

# Guards the admin routes; not replaceable through them.
ADMIN_LIMIT = "admin"

PRESET_LIMITS: dict[str, RateLimitConfig] = {
    ADMIN_LIMIT: RateLimitConfig(strategy=FIXED_WINDOW, window_size_ms=MINUTE_MS, max_requests=60),
    "api": RateLimitConfig(strategy=FIXED_WINDOW, window_size_ms=MINUTE_MS, max_requests=100),
    "auth": RateLimitConfig(strategy=FIXED_WINDOW, window_size_ms=15 * MINUTE_MS, max_requests=5),
    "checkout": RateLimitConfig(strategy=FIXED_WINDOW, window_size_ms=60 * MINUTE_MS, max_requests=10),
    # Unauthenticated callers get a tighter budget than "api".
    "anonymous": RateLimitConfig(strategy=FIXED_WINDOW, window_size_ms=MINUTE_MS, max_requests=20),
}


@dataclass
class AdmissionControl:
    limiter: InMemoryRateLimiter
    throttler: Throttler
    include_headers: bool = True


def build_admission_control(admission_settings: AdmissionSettings | None = None) -> AdmissionControl:
    """Construct the limiter and throttler from settings.

    Args:
        admission_settings: Optional settings; defaults to the global settings.

    Returns:
        AdmissionControl with presets registered when enabled.
    """

    cfg = admission_settings or settings.admission

    limiter = InMemoryRateLimiter(
        default_penalty_ms=cfg.default_penalty_ms,
        idle_windows=cfg.state_idle_windows,
        sweep_interval_ms=cfg.sweep_interval_ms,
    )
    if cfg.register_presets:
        for name, config in PRESET_LIMITS.items():
            limiter.set_config(name, config)

    throttler = Throttler(default_timeout=cfg.throttle_timeout_seconds)

    logger.info(
        "admission.initialized",
        extra={"presets": sorted(PRESET_LIMITS) if cfg.register_presets else []},
    )
    return AdmissionControl(limiter=limiter, throttler=throttler, include_headers=cfg.include_headers)


def get_admission(request: Request) -> AdmissionControl:
    """FastAPI dependency returning the app's AdmissionControl."""

    return request.app.state.admission
