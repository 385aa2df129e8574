"""Sliding window rate limiting.

A single shared window of request timestamps. It bounds aggregate
throughput towards one provider, not per-caller fairness.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable

import structlog

from distrihub.integration.resilience.exceptions import RateLimitExceededError
from distrihub.integration.resilience.models import RateLimitConfig

logger = structlog.get_logger(__name__)


class SlidingWindowRateLimiter:
    """Sliding window rate limiter.

    On each check, timestamps older than the window are discarded; the
    request is rejected if the remaining count is at or above max_requests,
    otherwise its timestamp is recorded.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            config: Rate limit configuration
            clock: Monotonic clock returning seconds
        """
        self.config = config
        self._clock = clock
        self._timestamps: deque[float] = deque()

        logger.info(
            "rate_limiter_initialized",
            name=config.name,
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
        )

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.config.window_seconds:
            self._timestamps.popleft()

    def try_acquire(self, now: float | None = None) -> bool:
        """Record a request if the window has capacity.

        Args:
            now: Monotonic timestamp, defaults to the limiter clock

        Returns:
            True if the request was accepted
        """
        now = self._clock() if now is None else now
        self._prune(now)

        if len(self._timestamps) >= self.config.max_requests:
            return False

        self._timestamps.append(now)
        return True

    def acquire(self, now: float | None = None) -> None:
        """Record a request or raise RateLimitExceededError."""
        if not self.try_acquire(now):
            logger.warning(
                "rate_limit_exceeded",
                name=self.config.name,
                max_requests=self.config.max_requests,
                window_seconds=self.config.window_seconds,
            )
            raise RateLimitExceededError(
                name=self.config.name,
                max_requests=self.config.max_requests,
                window_seconds=self.config.window_seconds,
            )

    def remaining(self, now: float | None = None) -> int:
        """Requests still accepted in the current window."""
        now = self._clock() if now is None else now
        self._prune(now)
        return max(self.config.max_requests - len(self._timestamps), 0)

    def reset(self) -> None:
        self._timestamps.clear()
        logger.info("rate_limit_reset", name=self.config.name)
