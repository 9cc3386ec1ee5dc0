"""Request correlation middleware.

Every request/response pair carries a correlation id (taken from the client
or generated) so limiter decisions can be matched to access logs. The header
name comes from ``LogSettings.request_id_header`` of the app being built.

Usage:
    app.middleware("http")(build_request_id_middleware("X-Request-ID"))
"""

from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response

from throttle.core.logging import clear_request_id, set_request_id

DURATION_HEADER = "X-Request-Duration-ms"

RequestIdMiddleware = Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]


def build_request_id_middleware(header_name: str) -> RequestIdMiddleware:
    """Create an ``@app.middleware("http")`` function binding request ids.

    Args:
        header_name: Header read from the request and echoed on the response.

    Returns:
        Middleware that reuses the incoming id (or generates a UUID4), binds
        it to the logging context for the request's lifetime, and adds the
        id plus the handling time to the response.
    """

    async def request_id_middleware(request: Request, call_next) -> Response:
        request_id = request.headers.get(header_name) or str(uuid.uuid4())
        set_request_id(request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            clear_request_id()

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers[header_name] = request_id
        response.headers.setdefault(DURATION_HEADER, f"{elapsed_ms:.2f}")
        return response

    return request_id_middleware
