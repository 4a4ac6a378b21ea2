# docpipeline/app/core/circuit_breaker.py
"""
Circuit breaker for calls to an unhealthy dependency.

States:
- CLOSED: calls pass through; consecutive failures are counted
- OPEN: calls are rejected until ``recovery_timeout`` has passed
- HALF_OPEN: a limited number of trial calls; one success closes, one failure reopens

Usage:
    breaker = CircuitBreaker("anthropic", failure_threshold=5, recovery_timeout=60)

    if not breaker.can_execute():
        raise ...
    try:
        result = call_service()
    except Exception as e:
        breaker.record_failure(e)
        raise
    breaker.record_success()
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = max(1, half_open_max_calls)
        self._clock = clock

        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._half_open_calls = 0
        self._opened_at: Optional[float] = None
        self._last_failure_reason: Optional[str] = None

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the recovery timeout has passed."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.recovery_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
            return self._state

    @property
    def last_failure_reason(self) -> Optional[str]:
        return self._last_failure_reason

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._half_open_calls = 0
        if new_state == CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._opened_at = None
        logger.info("Circuit '%s' state changed: %s -> %s", self.name, old_state.value, new_state.value)

    def can_execute(self) -> bool:
        with self._lock:
            current = self.state
            if current == CircuitState.CLOSED:
                return True
            if current == CircuitState.OPEN:
                return False
            if self._half_open_calls < self.half_open_max_calls:
                self._half_open_calls += 1
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.CLOSED)
                logger.info("Circuit '%s' recovered", self.name)

    def record_failure(self, exception: Optional[BaseException] = None) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_reason = str(exception) if exception else "unknown"

            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
                logger.warning("Circuit '%s' reopened due to failure: %s", self.name, exception)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                logger.warning("Circuit '%s' opening: %d consecutive failures", self.name, self._failure_count)
                self._transition_to(CircuitState.OPEN)

    def time_remaining(self) -> float:
        """Seconds until an open circuit lets a trial call through."""
        with self._lock:
            if self._state != CircuitState.OPEN:
                return 0.0
            return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    def reset(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._last_failure_reason = None
