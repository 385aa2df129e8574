"""Resilience patterns for fault tolerance around external providers.

Provides circuit breakers, retry with backoff, sliding window rate limiting,
and timeouts for outbound service integrations.
"""

from distrihub.integration.resilience.circuit_breaker import CircuitBreaker
from distrihub.integration.resilience.exceptions import (
    CircuitBreakerOpenError,
    RateLimitExceededError,
    ResilienceError,
    ResilienceTimeoutError,
)
from distrihub.integration.resilience.models import (
    CircuitBreakerConfig,
    CircuitBreakerSnapshot,
    CircuitBreakerState,
    RateLimitConfig,
    RetryPolicy,
    TimeoutConfig,
    UsageMetrics,
)
from distrihub.integration.resilience.rate_limiter import SlidingWindowRateLimiter
from distrihub.integration.resilience.retry import (
    calculate_delay,
    is_client_error,
    retry_with_backoff,
    should_retry,
)
from distrihub.integration.resilience.timeout import TimeoutManager, with_timeout

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerSnapshot",
    "CircuitBreakerState",
    # Retry
    "RetryPolicy",
    "calculate_delay",
    "is_client_error",
    "retry_with_backoff",
    "should_retry",
    # Rate Limiting
    "RateLimitConfig",
    "SlidingWindowRateLimiter",
    # Timeout
    "TimeoutConfig",
    "TimeoutManager",
    "with_timeout",
    # Metrics
    "UsageMetrics",
    # Exceptions
    "ResilienceError",
    "CircuitBreakerOpenError",
    "RateLimitExceededError",
    "ResilienceTimeoutError",
]
