"""
Circuit breaker pattern implementation for resilient service calls.
"""

import time
from enum import Enum
from typing import Dict, Any, Optional, Callable, Awaitable

from shared.logging import get_logger


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, requests blocked
    HALF_OPEN = "half_open"  # Cooldown elapsed, next call decides


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open."""
    pass


class CircuitBreaker:
    """Circuit breaker implementation.

    Opens once ``failure_threshold`` consecutive failures are recorded and
    blocks calls for ``recovery_timeout`` seconds. The first call after the
    cooldown is let through as a trial request: a failure reopens the breaker with a
    fresh cooldown window, a success closes it and zeroes the failure count.
    """

    def __init__(self,
                 failure_threshold: int = 5,
                 recovery_timeout: float = 30.0,
                 name: str = "default",
                 clock: Callable[[], float] = time.monotonic):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be positive")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.name = name
        self.logger = get_logger(f"circuit_breaker.{name}")
        self._clock = clock

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None
        self._success_count = 0

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def state(self) -> CircuitBreakerState:
        return self._state

    def _can_attempt_reset(self) -> bool:
        """Check if enough time has passed to attempt a reset."""
        if self._last_failure_time is None:
            return True
        return (self._clock() - self._last_failure_time) >= self.recovery_timeout

    def allow_request(self) -> bool:
        """Determine if a call should be attempted based on current state."""
        if self._state == CircuitBreakerState.OPEN:
            if self._can_attempt_reset():
                self._state = CircuitBreakerState.HALF_OPEN
                self.logger.info("Circuit breaker transitioning to half-open")
                return True
            return False
        return True

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Execute function with circuit breaker protection."""
        if not self.allow_request():
            raise CircuitBreakerOpenException(
                f"Circuit breaker '{self.name}' is OPEN - blocking call"
            )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self):
        """Record a success; closes the breaker if it was tripped."""
        self._success_count += 1
        if self._failure_count == 0 and self._state == CircuitBreakerState.CLOSED:
            return

        previous = self._state
        self._failure_count = 0
        self._state = CircuitBreakerState.CLOSED
        if previous != CircuitBreakerState.CLOSED:
            self.logger.info("Circuit breaker reset to CLOSED after successful call")

    def record_failure(self):
        """Record a failure and update state."""
        self._failure_count += 1
        self._last_failure_time = self._clock()
        self._success_count = 0

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker trial request failed, reopening",
                failure_count=self._failure_count
            )
        elif self._state == CircuitBreakerState.CLOSED and self._failure_count >= self.failure_threshold:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning(
                "Circuit breaker opened due to failures",
                failure_count=self._failure_count,
                threshold=self.failure_threshold
            )

    def trip(self):
        """Force the breaker open with a fresh cooldown window."""
        self._failure_count = max(self._failure_count, self.failure_threshold)
        self._last_failure_time = self._clock()
        if self._state != CircuitBreakerState.OPEN:
            self._state = CircuitBreakerState.OPEN
            self.logger.warning("Circuit breaker tripped", failure_count=self._failure_count)

    def is_open(self) -> bool:
        """True while the breaker is open and the cooldown has not elapsed."""
        return self._state == CircuitBreakerState.OPEN and not self._can_attempt_reset()

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state."""
        return {
            "name": self.name,
            "state": self._state.value,
            "is_open": self.is_open(),
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout
        }
