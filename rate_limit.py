"""In-memory fixed-window rate limiting keyed by (identity, endpoint).

The counter is a fixed window, not a sliding log: good enough to stop abuse
of expensive endpoints, not precise enough for billing. State lives in the
process; every worker keeps its own windows.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from config import get_settings

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECS = 60.0


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in_seconds: int


class _Window:
    __slots__ = ("lock", "count", "reset_at", "retired")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.count = 0
        self.reset_at = 0.0
        self.retired = False


class RateGovernor:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        cleanup_interval: float = CLEANUP_INTERVAL_SECS,
    ) -> None:
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._windows: dict[tuple[str, str], _Window] = {}
        self._registry_lock = threading.Lock()
        self._last_cleanup = clock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._windows)

    def _window_for(self, key: tuple[str, str]) -> _Window:
        with self._registry_lock:
            window = self._windows.get(key)
            if window is None:
                window = _Window()
                self._windows[key] = window
            return window

    def check(
        self, identity: str, endpoint: str, config: RateLimitConfig
    ) -> RateLimitResult:
        self._maybe_cleanup()
        key = (str(identity), endpoint)
        while True:
            window = self._window_for(key)
            with window.lock:
                if window.retired:
                    # Swept between lookup and lock; resolve the key again.
                    continue
                now = self._clock()
                if window.count == 0 or now >= window.reset_at:
                    window.count = 1
                    window.reset_at = now + config.window_seconds
                    return RateLimitResult(
                        allowed=True,
                        remaining=config.max_requests - 1,
                        reset_in_seconds=config.window_seconds,
                    )
                reset_in = math.ceil(window.reset_at - now)
                if window.count < config.max_requests:
                    window.count += 1
                    return RateLimitResult(
                        allowed=True,
                        remaining=config.max_requests - window.count,
                        reset_in_seconds=reset_in,
                    )
                return RateLimitResult(
                    allowed=False, remaining=0, reset_in_seconds=reset_in
                )

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        with self._registry_lock:
            if now - self._last_cleanup < self._cleanup_interval:
                return
            self._last_cleanup = now
            snapshot = list(self._windows.items())
        self._sweep(snapshot, now)

    def _sweep(
        self, snapshot: list[tuple[tuple[str, str], _Window]], now: float
    ) -> None:
        removed = 0
        for key, window in snapshot:
            # Busy keys are left for the next sweep.
            if not window.lock.acquire(blocking=False):
                continue
            try:
                if window.retired or now < window.reset_at:
                    continue
                window.retired = True
                with self._registry_lock:
                    if self._windows.get(key) is window:
                        del self._windows[key]
                removed += 1
            finally:
                window.lock.release()
        if removed:
            logger.debug(f"rate_limit_sweep: removed={removed}")

    def reset(self) -> None:
        """Forget every window. Checks already holding a window finish on it."""
        with self._registry_lock:
            windows = list(self._windows.values())
            self._windows.clear()
        for window in windows:
            with window.lock:
                window.retired = True


def rate_limit_headers(
    result: RateLimitResult, config: RateLimitConfig
) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(config.max_requests),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_in_seconds),
    }


def _configured_limits() -> dict[str, RateLimitConfig]:
    settings = get_settings()
    return {
        "standard": RateLimitConfig(max_requests=60, window_seconds=60),
        "ai": RateLimitConfig(*settings.rate_limit_ai),
        "heavy": RateLimitConfig(*settings.rate_limit_heavy),
    }


RATE_LIMITS = _configured_limits()

governor = RateGovernor()
