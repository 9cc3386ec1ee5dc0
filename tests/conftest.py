"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before anything imports ``throttle.core.config``
so the global settings object is built for the testing environment.
"""

import os

os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")

from unittest.mock import Mock

import pytest

from throttle.adapters.rate_limit import AdmissionConfig, InMemoryFixedWindowAdmissionController

T0 = 1_700_000_000.0


@pytest.fixture
def clock() -> Mock:
    """Deterministic UNIX-seconds clock; tests move it via ``return_value``."""
    return Mock(return_value=T0)


@pytest.fixture
def make_controller(clock: Mock):
    """Build controllers on the shared fake clock and close them afterwards."""
    created: list[InMemoryFixedWindowAdmissionController] = []

    def _make(start_reaper: bool = False, **config_kwargs) -> InMemoryFixedWindowAdmissionController:
        config_kwargs.setdefault("key_extractor", lambda request: request)
        controller = InMemoryFixedWindowAdmissionController(
            AdmissionConfig(**config_kwargs),
            clock=clock,
            start_reaper=start_reaper,
        )
        created.append(controller)
        return controller

    yield _make

    for controller in created:
        controller.close()
