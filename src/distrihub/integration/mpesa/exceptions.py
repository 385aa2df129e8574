"""Payment integration exceptions.

Error taxonomy surfaced to the rest of the application:
- PaymentValidationError: fix the input, never retried
- PaymentConfigurationError: credentials or settings missing
- ExternalServiceError: provider failures, the only retryable kind
"""

from __future__ import annotations


class PaymentError(Exception):
    """Base exception for all payment integration errors."""

    def __init__(self, message: str) -> None:
        """Initialize payment error.

        Args:
            message: Error description
        """
        self.message = message
        super().__init__(message)


class PaymentValidationError(PaymentError):
    """Payment request failed validation."""

    pass


class PaymentConfigurationError(PaymentError):
    """Payment provider is not configured."""

    pass


class ExternalServiceError(PaymentError):
    """Payment provider call failed."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        attempts: int | None = None,
    ) -> None:
        """Initialize external service error.

        Args:
            service: Provider operation that failed (e.g. "M-Pesa OAuth")
            message: Error message
            status_code: Optional HTTP status code
            response_body: Optional response body
            attempts: Attempts made before giving up, when known
        """
        self.service = service
        self.status_code = status_code
        self.response_body = response_body
        self.attempts = attempts
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.service}: {self.message}"


class ProviderTimeoutError(ExternalServiceError):
    """Provider call exceeded its timeout."""

    def __init__(self, service: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(service, f"Request timeout after {timeout_seconds}s")


class ServiceUnavailableError(ExternalServiceError):
    """Circuit breaker is open; the provider was not called."""

    def __init__(self, service: str, failure_count: int) -> None:
        self.failure_count = failure_count
        super().__init__(
            service,
            "Circuit breaker is open - service temporarily unavailable",
        )


class PaymentRateLimitError(ExternalServiceError):
    """Local rate limit exceeded; the provider was not called."""

    def __init__(self, service: str) -> None:
        super().__init__(service, "Rate limit exceeded - too many requests")
