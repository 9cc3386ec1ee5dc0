from __future__ import annotations

from throttle.api.routes.health import router as health_router
from throttle.api.routes.rate_limit import router as rate_limit_router

__all__ = ["health_router", "rate_limit_router"]
