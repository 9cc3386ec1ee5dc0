"""Tests for global exception handlers.

Domain errors map to stable status codes and a consistent JSON envelope;
unexpected errors never leak internals.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from throttle.core.errors import AppError, ConfigurationAppError
from throttle.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/detailed")
    async def detailed_endpoint():
        raise AppError(
            code="bad_input",
            message="Input is invalid",
            details={"option": "window_ms", "actual_value": 0},
        )

    @app.get("/configuration")
    async def configuration_endpoint():
        raise ConfigurationAppError(
            code="invalid_rate_limit_config",
            message="window_ms must be a positive integer",
        )

    @app.get("/base")
    async def base_endpoint():
        raise AppError(code="generic", message="Generic failure")

    @app.get("/crash")
    async def crash_endpoint():
        raise RuntimeError("database password is hunter2")

    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    def test_app_error_returns_400_with_details(self, client: TestClient):
        response = client.get("/detailed")

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "bad_input"
        assert error["message"] == "Input is invalid"
        assert error["details"] == {"option": "window_ms", "actual_value": 0}
        assert "request_id" in error

    def test_configuration_error_returns_500(self, client: TestClient):
        response = client.get("/configuration")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "invalid_rate_limit_config"
        assert "details" not in error

    def test_base_app_error_defaults_to_400(self, client: TestClient):
        response = client.get("/base")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "generic"


class TestGeneralExceptionHandler:
    def test_unexpected_error_is_generic_500(self, client: TestClient):
        response = client.get("/crash")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "internal_server_error"
        assert "hunter2" not in response.text


def test_app_error_str_is_message():
    error = ConfigurationAppError(code="c", message="window_ms must be a positive integer")

    assert str(error) == "window_ms must be a positive integer"
    assert isinstance(error, AppError)
