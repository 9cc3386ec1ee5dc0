"""In-memory fixed-window admission controller.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Horizontally scaled deployments need a shared backing store instead.
- Thread-safe: a lock makes the read/increment/compare sequence atomic and
  serializes reaper deletions against it.
- Fail-open: any internal fault resolves to an admitting decision.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import replace
from typing import Any, Callable

from throttle.adapters.rate_limit.base import (
    UNKNOWN_KEY,
    AbstractAdmissionController,
    AdmissionConfig,
    Decision,
    Window,
)
from throttle.adapters.rate_limit.keys import hash_key

logger = logging.getLogger(__name__)

MIN_REAPER_INTERVAL_MS = 1000


class InMemoryFixedWindowAdmissionController(AbstractAdmissionController):
    """Admission controller counting requests per key in fixed windows.

    A window opens on the first request for a key (or the first one after the
    previous window expired) and lasts ``window_ms``. Exactly
    ``max_requests`` requests are admitted per window; the next one is
    rejected with a retry delay.

    A background reaper thread periodically drops expired windows so idle
    keys do not accumulate. The controller owns that thread: call ``close()``
    (or use the controller as a context manager) to stop it.
    """

    def __init__(
        self,
        config: AdmissionConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        start_reaper: bool = True,
    ) -> None:
        """Initialize the controller.

        Args:
            config: Limiter options; defaults to 60 requests per 60 seconds.
            clock: Time source returning UNIX time in seconds.
            start_reaper: Start the background reaper immediately.
        """
        self._config = config or AdmissionConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._store: dict[str, Window] = {}
        self._stop_event = threading.Event()
        self._reaper: threading.Thread | None = None

        if start_reaper:
            self.start()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryFixedWindowAdmissionController(window_ms={self._config.window_ms}, "
            f"max_requests={self._config.max_requests}, tracked_keys={len(self._store)})"
        )

    def __enter__(self) -> InMemoryFixedWindowAdmissionController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def config(self) -> AdmissionConfig:
        return self._config

    @property
    def reaper_interval_seconds(self) -> float:
        """Reaper period: half a window, but never under one second."""
        interval_ms = max(MIN_REAPER_INTERVAL_MS, self._config.window_ms // 2)
        return interval_ms / 1000

    @property
    def reaper_running(self) -> bool:
        return self._reaper is not None and self._reaper.is_alive()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def admit(self, request: Any) -> Decision:
        """Decide whether ``request`` may proceed.

        Never raises. A failing skip predicate, key extractor or decision step
        is logged and the request is admitted.

        Args:
            request: Inbound request object.

        Returns:
            Decision with quota metadata (and header values when enabled).
        """
        stage = "skip"
        try:
            skip = self._config.skip
            if skip is not None and skip(request):
                return Decision(admit=True)

            stage = "key_extraction"
            key = self._extract_key(request)

            stage = "decision"
            return self._consume(key)
        except Exception as exc:
            logger.warning(
                "rate_limit.internal_fault",
                extra={
                    "stage": stage,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                    "fail_open": True,
                },
                exc_info=True,
            )
            return Decision(admit=True)

    def _extract_key(self, request: Any) -> str:
        key = self._config.key_extractor(request)
        if not key or not isinstance(key, str):
            return UNKNOWN_KEY
        return key

    def _consume(self, key: str) -> Decision:
        cfg = self._config
        now = self._now_ms()

        with self._lock:
            window = self._store.get(key)
            if window is None or window.is_expired(now):
                window = Window(count=1, reset_at=now + cfg.window_ms)
                self._store[key] = window
            else:
                window.count += 1
            count = window.count
            reset_at = window.reset_at

        remaining = max(0, cfg.max_requests - count)
        reset_at_s = math.ceil(reset_at / 1000)

        headers: dict[str, str] = {}
        if cfg.emit_headers:
            headers["X-RateLimit-Limit"] = str(cfg.max_requests)
            headers["X-RateLimit-Remaining"] = str(remaining)
            headers["X-RateLimit-Reset"] = str(reset_at_s)

        if count > cfg.max_requests:
            retry_after = math.ceil((reset_at - now) / 1000)
            if cfg.emit_headers:
                headers["Retry-After"] = str(retry_after)
            return Decision(
                admit=False,
                limit=cfg.max_requests,
                remaining=remaining,
                reset_at=reset_at_s,
                retry_after_seconds=retry_after,
                headers=headers,
                key_hash=hash_key(key),
            )

        return Decision(
            admit=True,
            limit=cfg.max_requests,
            remaining=remaining,
            reset_at=reset_at_s,
            headers=headers,
            key_hash=hash_key(key),
        )

    # ------------------------------------------------------------------
    # Store inspection
    # ------------------------------------------------------------------

    def get_window(self, key: str) -> Window | None:
        """Return a copy of the window tracked under ``key``, if any."""
        with self._lock:
            window = self._store.get(key)
            return replace(window) if window is not None else None

    def stats(self) -> dict[str, int | float | bool]:
        """Return limiter metrics without exposing keys."""
        with self._lock:
            tracked = len(self._store)
        return {
            "window_ms": self._config.window_ms,
            "max_requests": self._config.max_requests,
            "tracked_keys": tracked,
            "reaper_interval_s": self.reaper_interval_seconds,
            "reaper_running": self.reaper_running,
        }

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    def reap_expired(self) -> int:
        """Drop every expired window in a single pass.

        Returns:
            Number of windows removed.
        """
        now = self._now_ms()
        with self._lock:
            expired = [key for key, window in self._store.items() if window.is_expired(now)]
            for key in expired:
                del self._store[key]
            tracked = len(self._store)

        if expired:
            logger.debug(
                "rate_limit.reaper.swept",
                extra={"removed": len(expired), "tracked_keys": tracked},
            )
        return len(expired)

    def _run_reaper(self) -> None:
        interval = self.reaper_interval_seconds
        while not self._stop_event.wait(interval):
            try:
                self.reap_expired()
            except Exception:
                # Keep the thread alive; the next tick retries the sweep.
                logger.exception("rate_limit.reaper.failed")

    def start(self) -> None:
        """Start the background reaper if it is not already running.

        Concurrent calls start at most one reaper thread.
        """
        with self._lifecycle_lock:
            if self.reaper_running:
                return

            self._stop_event.clear()
            self._reaper = threading.Thread(
                target=self._run_reaper,
                name="rate-limit-reaper",
                daemon=True,
            )
            self._reaper.start()
        logger.debug(
            "rate_limit.reaper.started",
            extra={"interval_s": self.reaper_interval_seconds},
        )

    def close(self) -> None:
        """Stop the background reaper. Safe to call more than once."""
        # The reaper thread never takes the lifecycle lock, so joining under it
        # cannot deadlock.
        with self._lifecycle_lock:
            reaper = self._reaper
            self._stop_event.set()
            if reaper is None:
                return

            if reaper is not threading.current_thread():
                reaper.join(timeout=self.reaper_interval_seconds + 1)
            self._reaper = None
        logger.debug("rate_limit.reaper.stopped")
