"""Admission control adapters.

The HTTP layer talks to ``AbstractAdmissionController`` so the in-memory,
single-process controller can later be swapped for one backed by a shared
store without touching the middleware.
"""

from throttle.adapters.rate_limit.base import (
    UNKNOWN_KEY,
    AbstractAdmissionController,
    AdmissionConfig,
    Decision,
    Window,
)
from throttle.adapters.rate_limit.in_memory import InMemoryFixedWindowAdmissionController

__all__ = [
    "UNKNOWN_KEY",
    "AbstractAdmissionController",
    "AdmissionConfig",
    "Decision",
    "InMemoryFixedWindowAdmissionController",
    "Window",
]
