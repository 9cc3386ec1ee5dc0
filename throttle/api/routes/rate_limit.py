from __future__ import annotations

from fastapi import APIRouter, Request

from throttle.schemas.rate_limit import RateLimitStatusResponse

router = APIRouter(tags=["Rate Limit"])


@router.get("/rate-limit", response_model=RateLimitStatusResponse)
def rate_limit_status(request: Request) -> RateLimitStatusResponse:
    """Report limiter configuration and how many client windows are tracked.

    The response never includes client keys. When admission control is
    disabled only ``enabled=false`` is returned.
    """

    controller = getattr(request.app.state, "admission_controller", None)
    if controller is None:
        return RateLimitStatusResponse(enabled=False)

    return RateLimitStatusResponse(enabled=True, **controller.stats())
