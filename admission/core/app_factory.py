"""Application factory for the admission-control service.

Builds the single AdmissionControl instance for the process and attaches it to
``app.state`` so every route shares it through dependency injection.
"""

from __future__ import annotations

from fastapi import FastAPI

from admission.api.routes import health_router, limits_router
from admission.core.config import Settings, settings as default_settings
from admission.core.container import AdmissionControl, build_admission_control
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import request_id_middleware


def create_app(
    settings: Settings | None = None,
    admission: AdmissionControl | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Optional settings; defaults to the environment-derived settings.
        admission: Optional pre-built AdmissionControl (tests inject isolated ones).

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "In-process request admission control: fixed window, sliding window, "
            "token bucket and leaky bucket rate limits plus a cooperative throttler."
        ),
        version="0.1.0",
    )
    app.state.admission = admission or build_admission_control(cfg.admission)

    app.middleware("http")(request_id_middleware)
    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
