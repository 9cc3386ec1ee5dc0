"""Application factory for the FastAPI app.

Builds the app and the admission controller it owns. The controller lives on
``app.state.admission_controller`` and its reaper is stopped when the app
shuts down, so separate app instances (e.g., per test) never share state or
leak reaper threads.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from throttle.api.routes import health_router, rate_limit_router
from throttle.core.config import Settings, settings as default_settings
from throttle.core.exception_handlers import setup_exception_handlers
from throttle.core.logging import configure_logging
from throttle.core.middleware import build_request_id_middleware
from throttle.core.openapi import apply_openapi_customizations
from throttle.core.rate_limit import build_rate_limit_middleware, create_admission_controller

logger = logging.getLogger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Settings override; defaults to the environment-loaded
            global settings.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.

    Raises:
        ConfigurationAppError: If the rate limit settings are invalid.
    """
    cfg = app_settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    controller = (
        create_admission_controller(cfg.rate_limit) if cfg.rate_limit.enabled else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if controller is not None:
            controller.start()
        try:
            yield
        finally:
            if controller is not None:
                controller.close()
                logger.info("rate_limit.controller_closed")

    app = FastAPI(
        title=cfg.app.title,
        description=(
            "HTTP service fronted by a per-client fixed-window admission "
            "controller. Rejected requests receive 429 with Retry-After."
        ),
        version="0.1.0",
        debug=cfg.app.debug,
        lifespan=lifespan,
    )
    app.state.admission_controller = controller

    # Middleware added last runs first: request ids wrap the limiter so 429s
    # are correlated too.
    if controller is not None:
        app.middleware("http")(build_rate_limit_middleware(controller))
    app.middleware("http")(build_request_id_middleware(cfg.log.request_id_header))

    setup_exception_handlers(app)

    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(
        app,
        exempt_paths=cfg.rate_limit.skip_path_set if controller is not None else _all_paths(app),
        emit_headers=cfg.rate_limit.emit_headers,
    )

    return app


def _all_paths(app: FastAPI) -> set[str]:
    return {getattr(route, "path", "") for route in app.routes}
