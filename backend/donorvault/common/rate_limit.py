from __future__ import annotations

import threading
import time
from collections import deque


class LoginRateLimiter:
    """Counts failed logins per key inside a sliding window."""

    def __init__(self) -> None:
        self._failures: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def _prune(self, key: str, window_seconds: int, now: float) -> deque[float]:
        failures = self._failures.get(key)
        if failures is None:
            return deque()
        while failures and now - failures[0] > window_seconds:
            failures.popleft()
        if not failures:
            del self._failures[key]
        return failures

    def is_blocked(self, key: str, window_seconds: int, max_attempts: int) -> bool:
        with self._lock:
            return len(self._prune(key, window_seconds, time.monotonic())) >= max_attempts

    def add_failure(self, key: str) -> None:
        with self._lock:
            self._failures.setdefault(key, deque()).append(time.monotonic())

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._failures.clear()
            else:
                self._failures.pop(key, None)


login_rate_limiter = LoginRateLimiter()
