"""
Fixed-window rate limiter for expensive AI requests.

Each user gets `max_requests` allowed calls per window. The window opens on
the first call and is replaced by a fresh one on the first call after it
expires, so bursts at a window boundary are possible.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    request_count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        window_seconds: float,
        max_requests: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds <= 0 or max_requests <= 0:
            raise ValueError("window_seconds and max_requests must be positive")
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def allow(self, user_id: str) -> bool:
        """Count a request for user_id; False once the window's quota is used up.

        A denied request is not counted.
        """
        with self._lock:
            now = self._clock()
            window = self._windows.get(user_id)

            if window is None or now > window.reset_at:
                self._windows[user_id] = RateWindow(request_count=1, reset_at=now + self.window_seconds)
                return True

            if window.request_count >= self.max_requests:
                remaining = window.reset_at - now
                denied = True
            else:
                window.request_count += 1
                denied = False

        if denied:
            logger.warning(
                f"[RATE_LIMIT] Rate limit exceeded for {user_id}: "
                f"{self.max_requests} requests, resets in {remaining:.1f}s"
            )
            return False
        return True

    def remaining_seconds(self, user_id: str) -> int:
        """Whole seconds until the user's window resets, 0 if none is open."""
        with self._lock:
            window = self._windows.get(user_id)
            if window is None:
                return 0
            now = self._clock()
            if now > window.reset_at:
                return 0
            return math.ceil(window.reset_at - now)

    def reset(self, user_id: str) -> bool:
        with self._lock:
            existed = self._windows.pop(user_id, None) is not None
        logger.info(f"[RATE_LIMIT] Rate limit reset for {user_id}")
        return existed

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [user_id for user_id, w in self._windows.items() if now > w.reset_at]
            for user_id in expired:
                del self._windows[user_id]

        if expired:
            logger.debug(f"[RATE_LIMIT] Cleaned {len(expired)} expired rate limit windows")
        return len(expired)

    def stats(self) -> dict:
        with self._lock:
            return {
                "active_users": len(self._windows),
                "total_requests": sum(w.request_count for w in self._windows.values()),
            }

    def clear(self):
        with self._lock:
            self._windows.clear()
