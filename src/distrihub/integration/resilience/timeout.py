"""Timeout enforcement for async operations."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from distrihub.integration.resilience.exceptions import ResilienceTimeoutError
from distrihub.integration.resilience.models import TimeoutConfig

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def with_timeout(
    operation: Callable[..., Awaitable[T]],
    timeout_seconds: float,
    operation_name: str = "operation",
    *args: Any,
    **kwargs: Any,
) -> T:
    """Execute operation with a timeout.

    The in-flight coroutine is cancelled when the timeout expires.

    Args:
        operation: Async callable to execute
        timeout_seconds: Timeout in seconds
        operation_name: Name for logs and error messages
        *args: Positional arguments for operation
        **kwargs: Keyword arguments for operation

    Returns:
        Operation result

    Raises:
        ResilienceTimeoutError: If operation times out
    """
    try:
        return await asyncio.wait_for(
            operation(*args, **kwargs),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        logger.warning(
            "timeout_exceeded",
            name=operation_name,
            timeout_seconds=timeout_seconds,
        )
        raise ResilienceTimeoutError(
            operation=operation_name,
            timeout_seconds=timeout_seconds,
        ) from e


class TimeoutManager:
    """Timeout manager bound to a TimeoutConfig."""

    def __init__(self, config: TimeoutConfig) -> None:
        self.config = config

    async def execute(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        timeout_override: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute operation with the configured timeout.

        Args:
            operation: Async callable to execute
            *args: Positional arguments for operation
            timeout_override: Optional timeout override in seconds
            **kwargs: Keyword arguments for operation

        Returns:
            Operation result

        Raises:
            ResilienceTimeoutError: If operation times out
        """
        timeout = timeout_override or self.config.timeout_seconds
        return await with_timeout(operation, timeout, self.config.name, *args, **kwargs)
