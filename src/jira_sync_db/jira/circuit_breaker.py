"""Circuit breakers gating calls to failing remote services.

State machine per service:

    CLOSED --(threshold consecutive failures)--> OPEN
    OPEN --(timeout elapsed, checked in can_execute)--> HALF_OPEN
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from jira_sync_db.logging import get_logger

if TYPE_CHECKING:
    from jira_sync_db.config import CircuitBreakerConfig

logger = get_logger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Failure-counting gate for one remote service.

    All mutations hold an internal lock so completions racing on the same
    breaker never interleave their updates.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout_ms: int = 60000,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize a closed breaker.

        Args:
            name: Service name (for logs)
            failure_threshold: Consecutive failures that open the circuit
            timeout_ms: How long an open circuit rejects calls
            clock: Monotonic clock in seconds (injectable for tests)
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout_ms = timeout_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def can_execute(self) -> bool:
        """Whether a call may be dispatched now.

        False only while OPEN and the timeout window has not elapsed. The
        first check after the window moves the breaker to HALF_OPEN.
        """
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return True
            elapsed_ms = (self._clock() - (self._last_failure_at or 0.0)) * 1000
            if elapsed_ms >= self.timeout_ms:
                self._state = CircuitState.HALF_OPEN
                logger.info("Circuit '{}' half-open, allowing trial call", self.name)
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit '{}' closed", self.name)

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_at = self._clock()
            if (
                self._failure_count >= self.failure_threshold
                and self._state is not CircuitState.OPEN
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit '{}' opened after {} consecutive failures",
                    self.name,
                    self._failure_count,
                )

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_at = None

    def snapshot(self) -> dict[str, Any]:
        """Current breaker state for reporting."""
        with self._lock:
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
                "timeout_ms": self.timeout_ms,
            }


class CircuitBreakerRegistry:
    """One breaker per named service.

    Owned by the application context; components receive the registry
    rather than reaching for a module-level instance.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout_ms: int = 60000,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self._default_threshold = failure_threshold
        self._default_timeout_ms = timeout_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_config(cls, config: CircuitBreakerConfig, *, clock: Clock = time.monotonic) -> CircuitBreakerRegistry:
        return cls(config.failure_threshold, config.timeout_ms, clock=clock)

    def get(
        self,
        name: str,
        failure_threshold: int | None = None,
        timeout_ms: int | None = None,
    ) -> CircuitBreaker:
        """Get the breaker for a service, creating it on first use.

        Parameters only apply when the breaker is created.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    failure_threshold or self._default_threshold,
                    self._default_timeout_ms if timeout_ms is None else timeout_ms,
                    clock=self._clock,
                )
                self._breakers[name] = breaker
            return breaker

    def reset_all(self) -> None:
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.snapshot() for breaker in breakers}

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    @property
    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._breakers)
