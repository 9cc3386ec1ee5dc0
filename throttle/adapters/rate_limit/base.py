"""Admission controller interfaces and value types.

The HTTP layer depends on this abstraction (not the concrete store) so the
in-memory implementation can later be replaced by one backed by a shared
store (e.g., Redis) for horizontally scaled deployments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from throttle.adapters.rate_limit.keys import client_address_key
from throttle.core.errors import ConfigurationAppError

UNKNOWN_KEY = "unknown"

DEFAULT_WINDOW_MS = 60_000
DEFAULT_MAX_REQUESTS = 60

KeyExtractor = Callable[[Any], "str | None"]
SkipPredicate = Callable[[Any], bool]


@dataclass
class Window:
    """Counting record for one key.

    Attributes:
        count: Requests seen in the current window (1 at creation).
        reset_at: UNIX epoch milliseconds at which the window expires.
    """

    count: int
    reset_at: int

    def is_expired(self, now_ms: int) -> bool:
        return self.reset_at <= now_ms


@dataclass(frozen=True)
class Decision:
    """Outcome of a single admission check.

    Attributes:
        admit: Whether the request may proceed.
        limit: Max requests per window (None when limiting was bypassed).
        remaining: Requests left in the current window, never negative.
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait in seconds; only set on rejection.
        headers: Response header values to attach; empty when disabled.
        key_hash: Short digest of the limiter key, safe for logs.
    """

    admit: bool
    limit: int | None = None
    remaining: int | None = None
    reset_at: int | None = None
    retry_after_seconds: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    key_hash: str | None = None


@dataclass(frozen=True)
class AdmissionConfig:
    """Immutable limiter options, validated on construction.

    Attributes:
        window_ms: Length of each counting window in milliseconds.
        max_requests: Requests admitted per key per window.
        key_extractor: Derives the identity string from a request.
        skip: Optional predicate; True bypasses limiting entirely.
        emit_headers: Attach X-RateLimit-* / Retry-After values to decisions.

    Raises:
        ConfigurationAppError: If any option is invalid.
    """

    window_ms: int = DEFAULT_WINDOW_MS
    max_requests: int = DEFAULT_MAX_REQUESTS
    key_extractor: KeyExtractor = client_address_key
    skip: SkipPredicate | None = None
    emit_headers: bool = True

    def __post_init__(self) -> None:
        for option in ("window_ms", "max_requests"):
            value = getattr(self, option)
            # bool is an int subclass; reject it explicitly
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigurationAppError(
                    code="invalid_rate_limit_config",
                    message=f"{option} must be a positive integer",
                    details={"option": option, "actual_value": value},
                )
        if not callable(self.key_extractor):
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message="key_extractor must be callable",
                details={"option": "key_extractor"},
            )
        if self.skip is not None and not callable(self.skip):
            raise ConfigurationAppError(
                code="invalid_rate_limit_config",
                message="skip must be callable when provided",
                details={"option": "skip"},
            )


class AbstractAdmissionController(ABC):
    """Interface for admission controllers."""

    @abstractmethod
    def admit(self, request: Any) -> Decision:
        """Decide whether a request may proceed.

        Implementations must never raise: internal faults resolve to an
        admitting decision.

        Args:
            request: Inbound request object handed to the key extractor.

        Returns:
            Decision describing the outcome and quota metadata.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release background resources owned by the controller."""
        raise NotImplementedError
