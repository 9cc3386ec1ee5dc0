"""Wires the admission controller into the HTTP layer.

Design goals:
- Minimal coupling: the middleware only sees ``AbstractAdmissionController``.
- Explicit ownership: the app factory builds one controller per app and
  closes it on shutdown; there is no module-level limiter.
- Rejection is a normal outcome rendered as a 429 response, never an
  exception routed through the error handlers.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from throttle.adapters.rate_limit.base import AbstractAdmissionController, AdmissionConfig
from throttle.adapters.rate_limit.in_memory import InMemoryFixedWindowAdmissionController
from throttle.adapters.rate_limit.keys import build_key_extractor
from throttle.core.config import RateLimitSettings
from throttle.schemas.rate_limit import RateLimitExceededResponse

logger = logging.getLogger(__name__)

RateLimitMiddleware = Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]


def build_skip_predicate(paths: Iterable[str]) -> Callable[[Any], bool] | None:
    """Return a predicate exempting requests whose path is in ``paths``.

    Returns:
        None when no paths are configured.
    """

    exempt = frozenset(paths)
    if not exempt:
        return None

    def _skip(request: Any) -> bool:
        return request.url.path in exempt

    return _skip


def create_admission_controller(
    rate_limit_settings: RateLimitSettings,
    *,
    start_reaper: bool = True,
) -> InMemoryFixedWindowAdmissionController:
    """Build the in-memory controller from settings.

    Raises:
        ConfigurationAppError: If the settings produce an invalid config.
    """

    config = AdmissionConfig(
        window_ms=rate_limit_settings.window_ms,
        max_requests=rate_limit_settings.max_requests,
        key_extractor=build_key_extractor(rate_limit_settings.trust_forwarded_for),
        skip=build_skip_predicate(rate_limit_settings.skip_path_set),
        emit_headers=rate_limit_settings.emit_headers,
    )
    logger.info(
        "rate_limit.configured",
        extra={
            "window_ms": config.window_ms,
            "max_requests": config.max_requests,
            "emit_headers": config.emit_headers,
            "trust_forwarded_for": rate_limit_settings.trust_forwarded_for,
        },
    )
    return InMemoryFixedWindowAdmissionController(config, start_reaper=start_reaper)


def build_rejection_response(retry_after_seconds: int, headers: dict[str, str]) -> JSONResponse:
    """Render the 429 body and quota headers for a rejected request."""

    body = RateLimitExceededResponse(retry_after_seconds=retry_after_seconds)
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=body.model_dump(by_alias=True),
        headers=headers or None,
    )


def build_rate_limit_middleware(controller: AbstractAdmissionController) -> RateLimitMiddleware:
    """Create an ``@app.middleware("http")`` function enforcing admission.

    Args:
        controller: Controller consulted once per request.

    Returns:
        Middleware that short-circuits rejected requests with a 429 response
        and copies quota headers onto admitted responses.
    """

    async def rate_limit_middleware(request: Request, call_next) -> Response:
        decision = controller.admit(request)

        if not decision.admit:
            retry_after = decision.retry_after_seconds or 0
            logger.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": decision.key_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "retry_after_s": retry_after,
                    "request_path": request.url.path,
                },
            )
            return build_rejection_response(retry_after, dict(decision.headers))

        if decision.key_hash is not None:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": decision.key_hash,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                },
            )

        response = await call_next(request)
        for name, value in decision.headers.items():
            response.headers[name] = value
        return response

    return rate_limit_middleware
