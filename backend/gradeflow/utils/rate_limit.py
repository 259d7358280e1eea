"""In-memory rate limiting for the login and registration endpoints."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from ..errors import GradeflowError


class RateLimitExceeded(GradeflowError):
    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__(f"rate limit exceeded; retry after {retry_after}s")
        self.retry_after = retry_after


class InMemoryRateLimiter:
    """Sliding log of request times per key, trimmed to the window.

    State lives in process memory, so every worker keeps its own counts.
    """

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str) -> tuple[bool, int]:
        """Record a hit for `key`; return `(allowed, retry_after_seconds)`."""
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            cutoff = now - self.window_seconds
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                return False, max(1, int(self.window_seconds - (now - hits[0])))
            hits.append(now)
        return True, 0

    def enforce(self, key: str) -> None:
        allowed, retry_after = self.allow(key)
        if not allowed:
            raise RateLimitExceeded(retry_after)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
