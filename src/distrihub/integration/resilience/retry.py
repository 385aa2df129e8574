"""Retry with exponential backoff and jitter.

Retries an async operation per a RetryPolicy. Client-class failures (errors
carrying a 4xx ``status_code``) are never retried.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from distrihub.integration.resilience.models import RetryPolicy

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.1


def calculate_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: Callable[[], float] = random.random,
) -> float:
    """Calculate the delay before the attempt following ``attempt``.

    Args:
        attempt: Attempt number that just failed (1-indexed)
        policy: Retry policy
        rng: Source of uniform floats in [0, 1)

    Returns:
        Delay in milliseconds
    """
    delay = policy.base_delay_ms * policy.backoff_multiplier ** (attempt - 1)
    jitter = rng() * JITTER_RATIO * delay
    return min(delay + jitter, policy.max_delay_ms)


def is_client_error(error: BaseException) -> bool:
    """Return True if the error carries a 4xx status code."""
    status_code = getattr(error, "status_code", None)
    return isinstance(status_code, int) and 400 <= status_code < 500


def should_retry(
    error: BaseException,
    attempt: int,
    policy: RetryPolicy,
    non_retryable: tuple[type[BaseException], ...] = (),
) -> bool:
    """Decide whether a failed attempt is retried.

    Args:
        error: Error raised by the attempt
        attempt: Attempt number that failed (1-indexed)
        policy: Retry policy
        non_retryable: Exception types that are never retried

    Returns:
        True if another attempt should be made
    """
    if attempt >= policy.max_retries:
        return False

    if non_retryable and isinstance(error, non_retryable):
        return False

    if is_client_error(error):
        return False

    return True


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    context: str = "operation",
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    non_retryable: tuple[type[BaseException], ...] = (),
) -> T:
    """Execute operation with retry and exponential backoff.

    Args:
        operation: Zero-argument async callable
        policy: Retry policy
        context: Operation name used in logs
        sleep: Async sleep taking seconds
        rng: Jitter source
        non_retryable: Exception types that are never retried

    Returns:
        Operation result

    Raises:
        Exception: The last error once attempts are exhausted or the error
            is not retryable
    """
    start_time = time.monotonic()
    last_error: Exception | None = None

    for attempt in range(1, policy.max_retries + 1):
        try:
            result = await operation()
        except Exception as e:
            last_error = e
            elapsed_ms = (time.monotonic() - start_time) * 1000

            if not should_retry(e, attempt, policy, non_retryable):
                if attempt >= policy.max_retries:
                    logger.error(
                        "retry_exhausted",
                        context=context,
                        attempts=attempt,
                        elapsed_ms=elapsed_ms,
                        error=str(e),
                    )
                else:
                    logger.error(
                        "retry_not_retryable",
                        context=context,
                        attempt=attempt,
                        elapsed_ms=elapsed_ms,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                raise

            delay_ms = calculate_delay(attempt, policy, rng)

            logger.warning(
                "retry_scheduled",
                context=context,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_ms=delay_ms,
                elapsed_ms=elapsed_ms,
                error=str(e),
            )

            await sleep(delay_ms / 1000)
            continue

        if attempt > 1:
            logger.info(
                "retry_recovered",
                context=context,
                attempt=attempt,
            )

        return result

    # Unreachable: max_retries >= 1
    raise last_error or RuntimeError(f"{context} failed without an error")
