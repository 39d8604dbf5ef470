"""
Rate Limiter
===========

Sliding-window request counter. Operations beyond ``max_requests`` within
``window_seconds`` are rejected without being run; there is no queueing.
"""

import inspect
import logging
import time
from collections import deque
from typing import Any, Callable, Dict

from .exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window rate limiter keyed by a logical resource name."""

    def __init__(self, name: str, max_requests: int, window_seconds: float,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self.requests: deque = deque()

        self.total_accepted = 0
        self.total_rejected = 0

    def _prune(self, now: float):
        while self.requests and now - self.requests[0] >= self.window_seconds:
            self.requests.popleft()

    @property
    def current_count(self) -> int:
        """Requests recorded within the current window."""
        self._prune(self._clock())
        return len(self.requests)

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function if the window has capacity."""
        now = self._clock()
        self._prune(now)

        if len(self.requests) >= self.max_requests:
            self.total_rejected += 1
            logger.debug(f"Rate limiter {self.name} rejected request ({len(self.requests)}/{self.max_requests})")
            raise RateLimitExceededError("Rate limit exceeded", limiter=self.name)

        self.requests.append(now)
        self.total_accepted += 1

        result = func(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "name": self.name,
            "max_requests": self.max_requests,
            "window_seconds": self.window_seconds,
            "current_count": self.current_count,
            "total_accepted": self.total_accepted,
            "total_rejected": self.total_rejected
        }
