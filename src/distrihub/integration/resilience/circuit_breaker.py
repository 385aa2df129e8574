"""Circuit breaker pattern implementation.

Three-state circuit breaker (CLOSED -> OPEN -> HALF_OPEN -> CLOSED) that only
counts outcomes the caller reports. Time-based transitions are evaluated
lazily through ``check_and_advance`` rather than a background timer.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from distrihub.integration.resilience.exceptions import CircuitBreakerOpenError
from distrihub.integration.resilience.models import (
    CircuitBreakerConfig,
    CircuitBreakerSnapshot,
    CircuitBreakerState,
)

logger = structlog.get_logger(__name__)


class CircuitBreaker:
    """Circuit breaker for fault tolerance.

    State transitions:
    - CLOSED -> OPEN: When consecutive failures reach failure_threshold
    - OPEN -> HALF_OPEN: When timeout_seconds have elapsed since the last
      failure, observed on the next ``check_and_advance`` call
    - HALF_OPEN -> CLOSED: On the next success
    - HALF_OPEN -> OPEN: On the next failure, restarting the cooldown

    Mutating methods never await, so each update is atomic with respect to
    other tasks on the same event loop.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            config: Circuit breaker configuration
            clock: Monotonic clock returning seconds
        """
        self.config = config
        self._clock = clock
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None

        logger.info(
            "circuit_breaker_initialized",
            name=config.name,
            failure_threshold=config.failure_threshold,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def state(self) -> CircuitBreakerState:
        """Current state without evaluating the cooldown."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    def check_and_advance(self, now: float | None = None) -> CircuitBreakerState:
        """Apply any due OPEN -> HALF_OPEN transition and return the state.

        Args:
            now: Monotonic timestamp, defaults to the breaker clock

        Returns:
            State after the transition check
        """
        if self._state != CircuitBreakerState.OPEN:
            return self._state

        if self._last_failure_time is None:
            return self._state

        now = self._clock() if now is None else now
        elapsed = now - self._last_failure_time
        if elapsed >= self.config.timeout_seconds:
            self._state = CircuitBreakerState.HALF_OPEN

            logger.info(
                "circuit_breaker_half_open",
                name=self.config.name,
                elapsed_seconds=elapsed,
            )

        return self._state

    def is_open(self, now: float | None = None) -> bool:
        """Return True while OPEN and still inside the cooldown.

        Advances OPEN to HALF_OPEN as a side effect once the cooldown elapsed.
        """
        return self.check_and_advance(now) == CircuitBreakerState.OPEN

    def ensure_closed(self, now: float | None = None) -> None:
        """Raise CircuitBreakerOpenError if requests must be short-circuited."""
        if self.is_open(now):
            logger.warning(
                "circuit_breaker_rejected",
                name=self.config.name,
                failures=self._failure_count,
            )
            raise CircuitBreakerOpenError(
                name=self.config.name,
                failure_count=self._failure_count,
                threshold=self.config.failure_threshold,
            )

    def record_success(self) -> None:
        """Record a successful operation.

        Resets the failure count and closes the circuit.
        """
        previous = self._state
        self._failure_count = 0
        self._state = CircuitBreakerState.CLOSED

        if previous != CircuitBreakerState.CLOSED:
            logger.info(
                "circuit_breaker_closed",
                name=self.config.name,
                previous_state=previous,
            )

    def record_failure(self, now: float | None = None) -> None:
        """Record a failed operation.

        Args:
            now: Monotonic timestamp, defaults to the breaker clock
        """
        self._failure_count += 1
        self._last_failure_time = self._clock() if now is None else now

        logger.warning(
            "circuit_breaker_failure",
            name=self.config.name,
            state=self._state,
            failure_count=self._failure_count,
            threshold=self.config.failure_threshold,
        )

        if self._state == CircuitBreakerState.HALF_OPEN:
            self._open_circuit()
        elif (
            self._state == CircuitBreakerState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open_circuit()

    def _open_circuit(self) -> None:
        self._state = CircuitBreakerState.OPEN

        logger.error(
            "circuit_breaker_opened",
            name=self.config.name,
            failure_count=self._failure_count,
            threshold=self.config.failure_threshold,
        )

    def reset(self) -> None:
        """Force the circuit back to CLOSED and clear counters."""
        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._last_failure_time = None

        logger.info(
            "circuit_breaker_reset",
            name=self.config.name,
        )

    def snapshot(self) -> CircuitBreakerSnapshot:
        """Copy of the current state. Does not evaluate the cooldown."""
        return CircuitBreakerSnapshot(
            name=self.config.name,
            state=self._state,
            failure_count=self._failure_count,
            last_failure_time=self._last_failure_time,
        )
