"""Sliding window rate limiter tests."""

from __future__ import annotations

import pytest

from distrihub.integration.resilience.exceptions import RateLimitExceededError
from distrihub.integration.resilience.models import RateLimitConfig
from distrihub.integration.resilience.rate_limiter import SlidingWindowRateLimiter


class TestSlidingWindowRateLimiter:
    """Test sliding window rate limiting."""

    @pytest.fixture
    def limiter(self, clock) -> SlidingWindowRateLimiter:
        return SlidingWindowRateLimiter(
            RateLimitConfig(name="test_limiter", window_seconds=60.0, max_requests=3),
            clock=clock)

    def test_accepts_up_to_max(self, limiter: SlidingWindowRateLimiter) -> None:
        assert all(limiter.try_acquire() for _ in range(3))
        assert limiter.remaining() == 0

    def test_rejects_request_over_max(self, limiter: SlidingWindowRateLimiter) -> None:
        """Test the (N+1)-th request within the window is rejected."""
        for _ in range(3):
            limiter.try_acquire()

        assert not limiter.try_acquire()

    def test_rejection_is_not_recorded(self, limiter: SlidingWindowRateLimiter, clock) -> None:
        """Test rejected requests do not extend the window."""
        limiter.try_acquire()
        clock.advance(10)
        limiter.try_acquire()
        limiter.try_acquire()
        clock.advance(10)
        assert not limiter.try_acquire()

        clock.advance(40)
        assert limiter.try_acquire()

    def test_capacity_frees_after_window_from_oldest(
        self, limiter: SlidingWindowRateLimiter, clock
    ) -> None:
        """Test capacity returns once the oldest entry leaves the window."""
        limiter.try_acquire()
        clock.advance(30)
        limiter.try_acquire()
        limiter.try_acquire()

        clock.advance(29)
        assert not limiter.try_acquire()

        clock.advance(1)
        assert limiter.remaining() == 1
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_acquire_raises(self, limiter: SlidingWindowRateLimiter) -> None:
        for _ in range(3):
            limiter.acquire()

        with pytest.raises(RateLimitExceededError) as exc_info:
            limiter.acquire()

        assert exc_info.value.max_requests == 3
        assert exc_info.value.window_seconds == 60.0

    def test_reset(self, limiter: SlidingWindowRateLimiter) -> None:
        for _ in range(3):
            limiter.try_acquire()

        limiter.reset()

        assert limiter.remaining() == 3
