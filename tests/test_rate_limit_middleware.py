"""Integration tests for admission control on the HTTP layer."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from throttle.adapters.rate_limit import AdmissionConfig, InMemoryFixedWindowAdmissionController
from throttle.core.app_factory import create_app
from throttle.core.config import LogSettings, RateLimitSettings, Settings
from throttle.core.rate_limit import build_rate_limit_middleware, build_skip_predicate


def _settings(**rate_limit_overrides) -> Settings:
    rate_limit_overrides.setdefault("max_requests", 2)
    return Settings(
        rate_limit=RateLimitSettings(**rate_limit_overrides),
        log=LogSettings(level="WARNING"),
    )


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app(_settings())) as test_client:
        yield test_client


class TestAdmission:
    """Requests within budget pass and carry quota headers."""

    def test_admitted_response_has_quota_headers(self, client: TestClient) -> None:
        resp = client.get("/v1/rate-limit")

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "2"
        assert resp.headers["X-RateLimit-Remaining"] == "1"
        assert int(resp.headers["X-RateLimit-Reset"]) > 0
        assert "Retry-After" not in resp.headers

    def test_status_reports_tracked_keys(self, client: TestClient) -> None:
        resp = client.get("/v1/rate-limit")

        body = resp.json()
        assert body["enabled"] is True
        assert body["max_requests"] == 2
        assert body["window_ms"] == 60_000
        assert body["tracked_keys"] == 1
        assert body["reaper_running"] is True


class TestRejection:
    """The request past the cap gets a structured 429."""

    def test_over_limit_returns_429_body_and_headers(self, client: TestClient) -> None:
        client.get("/v1/rate-limit")
        client.get("/v1/rate-limit")

        resp = client.get("/v1/rate-limit", headers={"X-Request-ID": "req-429"})

        assert resp.status_code == 429
        body = resp.json()
        assert body["error"] == "Too many requests"
        assert 0 < body["retryAfterSeconds"] <= 60
        assert resp.headers["Retry-After"] == str(body["retryAfterSeconds"])
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert resp.headers["X-Request-ID"] == "req-429"

    def test_unknown_routes_are_counted_too(self, client: TestClient) -> None:
        client.get("/missing")
        client.get("/missing")

        assert client.get("/v1/rate-limit").status_code == 429

    def test_headers_disabled(self) -> None:
        with TestClient(create_app(_settings(max_requests=1, emit_headers=False))) as client:
            client.get("/v1/rate-limit")
            resp = client.get("/v1/rate-limit")

        assert resp.status_code == 429
        assert resp.json()["retryAfterSeconds"] > 0
        assert "Retry-After" not in resp.headers
        assert "X-RateLimit-Limit" not in resp.headers


class TestSkipAndKeys:
    def test_health_is_exempt(self, client: TestClient) -> None:
        for _ in range(5):
            resp = client.get("/health")
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers

        assert client.get("/v1/rate-limit").status_code == 200

    def test_forwarded_for_keys_are_independent_when_trusted(self) -> None:
        app = create_app(_settings(max_requests=1, trust_forwarded_for=True))
        with TestClient(app) as client:
            first = client.get("/v1/rate-limit", headers={"X-Forwarded-For": "203.0.113.1"})
            second = client.get("/v1/rate-limit", headers={"X-Forwarded-For": "203.0.113.2"})
            again = client.get("/v1/rate-limit", headers={"X-Forwarded-For": "203.0.113.1"})

        assert first.status_code == 200
        assert second.status_code == 200
        assert again.status_code == 429

    def test_forwarded_for_ignored_by_default(self) -> None:
        with TestClient(create_app(_settings(max_requests=1))) as client:
            client.get("/v1/rate-limit", headers={"X-Forwarded-For": "203.0.113.1"})
            resp = client.get("/v1/rate-limit", headers={"X-Forwarded-For": "203.0.113.2"})

        assert resp.status_code == 429

    def test_build_skip_predicate_without_paths(self) -> None:
        assert build_skip_predicate([]) is None


def test_disabled_limiter_adds_nothing() -> None:
    with TestClient(create_app(_settings(enabled=False, max_requests=1))) as client:
        responses = [client.get("/v1/rate-limit") for _ in range(3)]

    assert all(r.status_code == 200 for r in responses)
    assert responses[0].json() == {
        "enabled": False,
        "window_ms": None,
        "max_requests": None,
        "tracked_keys": None,
        "reaper_interval_s": None,
        "reaper_running": None,
    }
    assert "X-RateLimit-Limit" not in responses[0].headers


def test_broken_key_extractor_fails_open() -> None:
    def _boom(request):
        raise RuntimeError("no client")

    controller = InMemoryFixedWindowAdmissionController(
        AdmissionConfig(max_requests=1, key_extractor=_boom),
        start_reaper=False,
    )
    app = FastAPI()
    app.middleware("http")(build_rate_limit_middleware(controller))

    @app.get("/ping")
    def ping() -> dict:
        return {"pong": True}

    client = TestClient(app)
    responses = [client.get("/ping") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 200]
    assert "X-RateLimit-Limit" not in responses[0].headers


def test_shutdown_stops_reaper() -> None:
    app = create_app(_settings())
    controller = app.state.admission_controller

    with TestClient(app):
        assert controller.reaper_running is True

    assert controller.reaper_running is False


def test_apps_do_not_share_limiter_state() -> None:
    with TestClient(create_app(_settings(max_requests=1))) as first:
        first.get("/v1/rate-limit")
        assert first.get("/v1/rate-limit").status_code == 429

    with TestClient(create_app(_settings(max_requests=1))) as second:
        assert second.get("/v1/rate-limit").status_code == 200


def test_openapi_documents_429_for_limited_routes(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()

    limited = schema["paths"]["/v1/rate-limit"]["get"]["responses"]
    assert "429" in limited
    assert "Retry-After" in limited["429"]["headers"]
    assert "429" not in schema["paths"]["/health"]["get"]["responses"]
    assert "RateLimitExceededResponse" in schema["components"]["schemas"]
