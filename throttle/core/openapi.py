"""OpenAPI customizations for rate-limited operations.

Every operation that is subject to admission control documents the 429
response body and the quota headers; exempt paths are left untouched.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable

from fastapi import FastAPI

from throttle.schemas.rate_limit import RateLimitExceededResponse

_QUOTA_HEADERS: Dict[str, Dict[str, Any]] = {
    "X-RateLimit-Limit": {
        "description": "Requests allowed per window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "X-RateLimit-Reset": {
        "description": "UNIX epoch seconds when the current window resets.",
        "schema": {"type": "integer"},
    },
}

_RETRY_AFTER_HEADER = {
    "description": "Seconds to wait before retrying.",
    "schema": {"type": "integer"},
}


def apply_openapi_customizations(
    app: FastAPI,
    *,
    exempt_paths: Iterable[str] = (),
    emit_headers: bool = True,
) -> None:
    """Patch FastAPI's OpenAPI generation to describe 429 responses.

    Args:
        app: Application whose schema generator is wrapped.
        exempt_paths: Paths that bypass admission control.
        emit_headers: Whether quota headers are documented.
    """

    original_openapi = app.openapi
    exempt = set(exempt_paths)

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        schemas = schema.setdefault("components", {}).setdefault("schemas", {})
        schemas.setdefault(
            "RateLimitExceededResponse",
            RateLimitExceededResponse.model_json_schema(by_alias=True),
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        for tag in (
            {"name": "Rate Limit", "description": "Admission control status."},
            {"name": "Health", "description": "Liveness checks."},
        ):
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if path in exempt:
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                responses = method_obj.setdefault("responses", {})
                too_many: Dict[str, Any] = {
                    "description": "Too many requests",
                    "content": {
                        "application/json": {
                            "schema": {"$ref": "#/components/schemas/RateLimitExceededResponse"}
                        }
                    },
                }
                if emit_headers:
                    too_many["headers"] = {**_QUOTA_HEADERS, "Retry-After": _RETRY_AFTER_HEADER}
                responses.setdefault("429", too_many)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
