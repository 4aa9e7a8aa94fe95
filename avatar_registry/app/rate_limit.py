"""
Rate limiting module for the Avatar Registry service.

Sliding window rate limiting, tracked per client and endpoint.
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    Sliding window rate limiter.

    Keeps the timestamps of accepted requests per key and drops those that
    have left the window on every check.
    """

    def __init__(self, rpm: int, window_seconds: int = 60):
        self._limit = max(1, rpm)
        self._window = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._last_sweep = time.time()

    def allow(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitResult:
        now = time.time()
        window_start = now - self._window

        with self._lock:
            # Keys come from client headers; drop idle ones once per window.
            if now - self._last_sweep >= self._window:
                self._sweep(window_start)
                self._last_sweep = now

            q = self._hits[key]
            while q and q[0] < window_start:
                q.popleft()

            if len(q) >= self._limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=max(0.0, q[0] + self._window - now)
                )

            q.append(now)
            return RateLimitResult(allowed=True, remaining=self._limit - len(q))

    def cleanup_expired(self) -> int:
        """Remove expired entries and idle keys. Returns entries removed."""
        with self._lock:
            return self._sweep(time.time() - self._window)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, window_start: float) -> int:
        removed = 0
        empty_keys = []
        for key, q in self._hits.items():
            while q and q[0] < window_start:
                q.popleft()
                removed += 1
            if not q:
                empty_keys.append(key)
        for key in empty_keys:
            del self._hits[key]
        return removed

    def reset(self, key: Optional[str] = None) -> None:
        """Reset counters for one key, or all keys."""
        with self._lock:
            if key:
                self._hits.pop(key, None)
            else:
                self._hits.clear()
