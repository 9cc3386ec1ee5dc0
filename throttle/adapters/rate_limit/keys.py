"""Key extractors deriving the limiter identity from a request.

Extractors return None when no identity can be derived; the controller then
files the request under the shared "unknown" key.
"""

from __future__ import annotations

import hashlib
from typing import Any, Callable

FORWARDED_FOR_HEADER = "X-Forwarded-For"


def _client_host(request: Any) -> str | None:
    client = getattr(request, "client", None)
    return getattr(client, "host", None) or None


def _forwarded_for(request: Any) -> str | None:
    headers = getattr(request, "headers", None)
    if not headers:
        return None

    raw = headers.get(FORWARDED_FOR_HEADER)
    if not raw:
        return None

    # Left-most entry is the originating client
    first = raw.split(",")[0].strip()
    return first or None


def client_address_key(request: Any) -> str | None:
    """Use the socket peer address, falling back to X-Forwarded-For.

    Args:
        request: Starlette/FastAPI request (or any object with ``client``
            and ``headers`` attributes).

    Returns:
        Client address string, or None when none is available.
    """

    return _client_host(request) or _forwarded_for(request)


def forwarded_for_key(request: Any) -> str | None:
    """Prefer X-Forwarded-For; only safe behind a trusted reverse proxy."""

    return _forwarded_for(request) or _client_host(request)


def build_key_extractor(trust_forwarded_for: bool) -> Callable[[Any], str | None]:
    """Select the extractor matching the deployment's proxy setup."""

    return forwarded_for_key if trust_forwarded_for else client_address_key


def hash_key(key: str) -> str:
    """Hash a limiter key for logging without exposing client addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]
