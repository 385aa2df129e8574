"""Resilience pattern data models.

Pydantic models for circuit breaker, retry, rate limit, and timeout
configurations plus the runtime snapshots they expose.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CircuitBreakerState(str, Enum):
    """Circuit breaker state enumeration.

    States:
        CLOSED: Normal operation, requests pass through
        OPEN: Failing, requests are rejected immediately
        HALF_OPEN: Cooldown elapsed, the next request probes the provider
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker configuration.

    Controls failure detection and cooldown behavior.
    """

    name: str = Field(
        ...,
        description="Circuit breaker name",
    )

    failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive failures before opening circuit",
    )

    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds since the last failure before OPEN becomes HALF_OPEN",
    )

    model_config = {"frozen": True}


class CircuitBreakerSnapshot(BaseModel):
    """Point-in-time copy of circuit breaker state."""

    name: str = Field(
        ...,
        description="Circuit breaker name",
    )

    state: CircuitBreakerState = Field(
        ...,
        description="Current circuit state",
    )

    failure_count: int = Field(
        default=0,
        ge=0,
        description="Consecutive failures recorded",
    )

    last_failure_time: float | None = Field(
        default=None,
        description="Monotonic timestamp of the last failure",
    )


class RetryPolicy(BaseModel):
    """Retry policy configuration.

    Exponential backoff with up to 10% jitter. ``max_retries`` counts every
    attempt, including the first one.
    """

    max_retries: int = Field(
        default=3,
        ge=1,
        description="Maximum attempts including the first",
    )

    base_delay_ms: float = Field(
        default=1000.0,
        ge=0,
        description="Delay before the second attempt in milliseconds",
    )

    max_delay_ms: float = Field(
        default=30000.0,
        ge=0,
        description="Upper bound for any single delay in milliseconds",
    )

    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied per attempt",
    )

    model_config = {"frozen": True}


class RateLimitConfig(BaseModel):
    """Sliding window rate limit configuration."""

    name: str = Field(
        ...,
        description="Rate limiter name",
    )

    window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Trailing window length in seconds",
    )

    max_requests: int = Field(
        default=100,
        ge=1,
        description="Maximum requests accepted within the window",
    )

    model_config = {"frozen": True}


class TimeoutConfig(BaseModel):
    """Timeout configuration."""

    name: str = Field(
        ...,
        description="Timeout name",
    )

    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Operation timeout in seconds",
    )

    model_config = {"frozen": True}


class UsageMetrics(BaseModel):
    """Request metrics for a guarded provider.

    Only the terminal outcome of a guarded operation is counted; retried
    attempts inside one operation are not.
    """

    total_requests: int = Field(default=0, ge=0, description="Guarded operations completed")
    successful_requests: int = Field(default=0, ge=0, description="Operations that succeeded")
    failed_requests: int = Field(default=0, ge=0, description="Operations that failed")
    average_response_time_ms: float = Field(
        default=0.0,
        ge=0,
        description="Running mean of operation duration in milliseconds",
    )
    last_request_time: datetime | None = Field(
        default=None,
        description="Wall-clock time of the last recorded operation",
    )

    def record(self, success: bool, response_time_ms: float, at: datetime) -> None:
        """Record one terminal outcome and fold its latency into the mean."""
        self.total_requests += 1
        self.last_request_time = at

        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1

        n = self.total_requests
        self.average_response_time_ms = (
            self.average_response_time_ms * (n - 1) + response_time_ms
        ) / n
