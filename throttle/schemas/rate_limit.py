from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RateLimitExceededResponse(BaseModel):
    """Body returned with HTTP 429 when a client exhausts its window."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field("Too many requests", description="Human-readable error")
    retry_after_seconds: int = Field(
        ...,
        alias="retryAfterSeconds",
        description="Seconds until the client's current window resets",
        ge=0,
    )


class RateLimitStatusResponse(BaseModel):
    """Limiter configuration and store occupancy."""

    enabled: bool
    window_ms: int | None = None
    max_requests: int | None = None
    tracked_keys: int | None = None
    reaper_interval_s: float | None = None
    reaper_running: bool | None = None
