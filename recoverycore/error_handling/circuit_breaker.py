"""
Circuit Breaker
==============

Per-resource failure-counting gate. Opens after ``failure_threshold``
consecutive failures, lets a single trial call through once
``reset_timeout`` has passed, and closes again on success.
"""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"         # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker keyed by a logical resource name."""

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 30.0,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock

        # State management
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._trial_in_flight = False

        # Metrics
        self.total_requests = 0
        self.total_failures = 0
        self.total_successes = 0
        self.total_rejections = 0

    async def execute(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        self.total_requests += 1

        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self.state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                logger.info(f"Circuit breaker {self.name} half-open, allowing trial call")
            else:
                self.total_rejections += 1
                raise CircuitOpenError("Circuit breaker is open", breaker=self.name)
        elif self.state == CircuitState.HALF_OPEN:
            # Only the trial call decides the next state
            if self._trial_in_flight:
                self.total_rejections += 1
                raise CircuitOpenError("Circuit breaker is open", breaker=self.name)
            self._trial_in_flight = True

        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            self._trial_in_flight = False
            raise
        except Exception:
            self._on_failure()
            raise
        else:
            self._on_success()
            return result

    def _should_attempt_reset(self) -> bool:
        """Check if circuit should attempt reset."""
        if self.last_failure_time is None:
            return True

        return self._clock() - self.last_failure_time >= self.reset_timeout

    def _on_success(self):
        self.total_successes += 1
        self._trial_in_flight = False
        if self.state != CircuitState.CLOSED:
            logger.info(f"Circuit breaker {self.name} closed")
        self.failure_count = 0
        self.state = CircuitState.CLOSED

    def _on_failure(self):
        self.total_failures += 1
        self.failure_count += 1
        self.last_failure_time = self._clock()

        was_trial = self._trial_in_flight
        self._trial_in_flight = False

        if was_trial or self.failure_count >= self.failure_threshold:
            if self.state != CircuitState.OPEN:
                logger.warning(f"Circuit breaker {self.name} opened after {self.failure_count} failures")
            self.state = CircuitState.OPEN

    def trip(self):
        """Force the breaker open, e.g. as a recovery action."""
        self.state = CircuitState.OPEN
        self.last_failure_time = self._clock()
        self._trial_in_flight = False
        logger.info(f"Circuit breaker {self.name} forced open")

    def reset(self):
        """Force the breaker closed."""
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self._trial_in_flight = False

    def get_stats(self) -> Dict[str, Any]:
        """Get circuit breaker statistics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "total_requests": self.total_requests,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "total_rejections": self.total_rejections,
            "failure_rate": self.total_failures / max(self.total_requests, 1),
            "last_failure_time": self.last_failure_time
        }
