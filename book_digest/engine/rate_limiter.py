"""Fixed-window rate limiter pacing outbound catalog calls."""

from __future__ import annotations

import time
from threading import Lock
from typing import Callable, TypeVar

import structlog

from ..errors import CatalogRateLimited

T = TypeVar("T")


class RateLimiter:
    """Block callers until a slot is free; calls are delayed, never dropped.

    Two limits apply: at most ``max_calls`` per ``window_seconds`` window, and
    at least ``min_interval`` seconds between consecutive calls.
    """

    def __init__(
        self,
        max_calls: int = 100,
        window_seconds: float = 60.0,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._window_start: float | None = None
        self._calls_in_window = 0
        self._last_call: float | None = None
        self.total_calls = 0
        self.total_waited = 0.0

    def acquire(self) -> float:
        """Wait for a slot and record the call. Returns seconds spent waiting."""

        waited = 0.0
        with self._lock:
            now = self._clock()
            if self._last_call is not None and self.min_interval > 0:
                gap = now - self._last_call
                if gap < self.min_interval:
                    pause = self.min_interval - gap
                    self._sleep(pause)
                    waited += pause
                    now = self._clock()
            if self._window_start is None or now - self._window_start >= self.window_seconds:
                self._window_start = now
                self._calls_in_window = 0
            if self._calls_in_window >= self.max_calls:
                pause = self._window_start + self.window_seconds - now
                if pause > 0:
                    self._sleep(pause)
                    waited += pause
                now = self._clock()
                self._window_start = now
                self._calls_in_window = 0
            self._calls_in_window += 1
            self._last_call = now
            self.total_calls += 1
            self.total_waited += waited
        return waited

    def cooldown(self, seconds: float) -> None:
        """Back off after a rate-limit signal from the remote side."""

        if seconds <= 0:
            return
        self._sleep(seconds)
        with self._lock:
            self.total_waited += seconds

    def call(
        self,
        operation: Callable[[], T],
        cooldown_seconds: float,
        logger: structlog.BoundLogger | None = None,
    ) -> T:
        """Run ``operation`` in a slot; on ``CatalogRateLimited`` cool down and retry once.

        The pause is the larger of ``cooldown_seconds`` and the server's
        Retry-After. A second rate-limit signal propagates.
        """

        self.acquire()
        try:
            return operation()
        except CatalogRateLimited as exc:
            pause = max(cooldown_seconds, exc.retry_after or 0.0)
            if logger is not None:
                logger.warning("rate_limited_backoff", pause=pause)
            self.cooldown(pause)
            self.acquire()
            return operation()

    def status(self) -> dict[str, float | int]:
        with self._lock:
            return {
                "calls_in_window": self._calls_in_window,
                "max_calls": self.max_calls,
                "window_seconds": self.window_seconds,
                "total_calls": self.total_calls,
                "total_waited": round(self.total_waited, 3),
            }


__all__ = ["RateLimiter"]
