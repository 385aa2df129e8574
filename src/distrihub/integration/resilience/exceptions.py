"""Resilience pattern exceptions.

Custom exception hierarchy for circuit breaker, rate limit, and timeout errors.
"""

from __future__ import annotations


class ResilienceError(Exception):
    """Base exception for all resilience pattern errors."""

    def __init__(self, message: str) -> None:
        """Initialize resilience error.

        Args:
            message: Error description
        """
        self.message = message
        super().__init__(message)


class CircuitBreakerOpenError(ResilienceError):
    """Exception raised when circuit breaker is open.

    Raised when a request is attempted while the circuit breaker is in the
    OPEN state and the cooldown has not elapsed yet.
    """

    def __init__(
        self,
        name: str,
        failure_count: int,
        threshold: int,
    ) -> None:
        """Initialize circuit breaker open error.

        Args:
            name: Circuit breaker name
            failure_count: Current failure count
            threshold: Failure threshold
        """
        self.name = name
        self.failure_count = failure_count
        self.threshold = threshold
        super().__init__(
            f"Circuit breaker '{name}' is OPEN: {failure_count}/{threshold} failures"
        )


class RateLimitExceededError(ResilienceError):
    """Exception raised when the sliding window is full."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_seconds: float,
    ) -> None:
        """Initialize rate limit error.

        Args:
            name: Rate limiter name
            max_requests: Requests allowed per window
            window_seconds: Window length in seconds
        """
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        super().__init__(
            f"Rate limit '{name}' exceeded: "
            f"{max_requests} requests per {window_seconds}s"
        )


class ResilienceTimeoutError(ResilienceError):
    """Exception raised when operation times out.

    Raised when an operation exceeds its configured timeout duration,
    preventing indefinite blocking.
    """

    def __init__(
        self,
        operation: str,
        timeout_seconds: float,
    ) -> None:
        """Initialize resilience timeout error.

        Args:
            operation: Operation that timed out
            timeout_seconds: Timeout value in seconds
        """
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Operation '{operation}' timed out after {timeout_seconds}s"
        )
