"""M-Pesa payment gateway guard.

Mediates every outbound call to the Daraja API:
- Exponential backoff retry with jitter for transient failures
- Circuit breaker that fast-fails after repeated failed operations
- Per-attempt request timeout
- Sliding window rate limiting for STK pushes
- Usage metrics and a health snapshot

The gateway owns its breaker, limiter and metrics. Build one per process at
the composition root (see ``create_mpesa_gateway``) and inject it where
payments are initiated.
"""

from __future__ import annotations

import asyncio
import math
import random
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any, Protocol, TypeVar

import structlog

from distrihub.integration.mpesa import metrics as prom
from distrihub.integration.mpesa.client import DarajaClient
from distrihub.integration.mpesa.config import MpesaSettings, get_mpesa_settings
from distrihub.integration.mpesa.exceptions import (
    ExternalServiceError,
    PaymentConfigurationError,
    PaymentRateLimitError,
    PaymentValidationError,
    ProviderTimeoutError,
    ServiceUnavailableError,
)
from distrihub.integration.mpesa.models import (
    ConnectionTestResult,
    GatewayHealth,
    StkPushRequest,
    StkPushResponse,
    normalize_phone,
    redact_reference,
)
from distrihub.integration.resilience.circuit_breaker import CircuitBreaker
from distrihub.integration.resilience.exceptions import (
    CircuitBreakerOpenError,
    RateLimitExceededError,
    ResilienceTimeoutError,
)
from distrihub.integration.resilience.models import (
    CircuitBreakerState,
    RetryPolicy,
    UsageMetrics,
)
from distrihub.integration.resilience.rate_limiter import SlidingWindowRateLimiter
from distrihub.integration.resilience.retry import retry_with_backoff
from distrihub.integration.resilience.timeout import TimeoutManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SERVICE = "M-Pesa"
OAUTH_SERVICE = "M-Pesa OAuth"
STK_PUSH_SERVICE = "M-Pesa STK Push"

_NON_RETRYABLE = (PaymentValidationError, PaymentConfigurationError)


class PaymentProvider(Protocol):
    """Provider calls wrapped by the gateway."""

    async def get_access_token(self) -> str: ...

    async def initiate_stk_push(self, request: StkPushRequest) -> StkPushResponse: ...


class MpesaGateway:
    """Resilient wrapper around the Daraja API.

    Only the terminal outcome of each guarded operation is recorded in the
    metrics and the circuit breaker; attempts retried inside one operation
    are not counted separately. A breaker threshold of 5 therefore means
    5 fully failed operations.
    """

    def __init__(
        self,
        settings: MpesaSettings,
        client: PaymentProvider | None = None,
        *,
        circuit_breaker: CircuitBreaker | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        """Initialize payment gateway.

        Args:
            settings: M-Pesa settings
            client: Provider client, defaults to a DarajaClient owned by the gateway
            circuit_breaker: Optional circuit breaker override
            rate_limiter: Optional rate limiter override
            clock: Monotonic clock returning seconds
            sleep: Async sleep used between retries
            rng: Jitter source
        """
        self.settings = settings
        self._owns_client = client is None
        self._client: PaymentProvider = client or DarajaClient(settings)
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            settings.circuit_breaker_config(), clock=clock
        )
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            settings.rate_limit_config(), clock=clock
        )
        self.metrics = UsageMetrics()
        self._timeout = TimeoutManager(settings.timeout_config())

        logger.info(
            "mpesa_gateway_initialized",
            environment=settings.environment,
            configured=settings.is_configured,
            max_retries=settings.max_retries,
            timeout_ms=settings.timeout_ms,
        )

    async def acquire_access_token(self) -> str:
        """Fetch an OAuth access token through the guard.

        Returns:
            Bearer token

        Raises:
            PaymentConfigurationError: If credentials are missing
            ServiceUnavailableError: If the circuit breaker is open
            ExternalServiceError: If every attempt failed
        """
        self._ensure_configured()
        self._ensure_circuit_closed("oauth")

        start = self._clock()
        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self._call_with_timeout(OAUTH_SERVICE, self._client.get_access_token)

        try:
            token = await self._retry(attempt, self.settings.auth_retry_policy(), OAUTH_SERVICE)
        except Exception as e:
            self._record_outcome("oauth", False, start)

            if isinstance(e, ExternalServiceError):
                if e.attempts is None:
                    e.attempts = attempts
                raise

            raise ExternalServiceError(
                OAUTH_SERVICE,
                f"Failed to get access token after {attempts} attempt(s): {e}",
                attempts=attempts,
            ) from e

        self._record_outcome("oauth", True, start)
        return token

    async def initiate_payment(self, request: StkPushRequest) -> StkPushResponse:
        """Initiate an STK push through the guard.

        Args:
            request: Payment request

        Returns:
            Provider acknowledgement

        Raises:
            PaymentConfigurationError: If credentials are missing
            PaymentValidationError: If the request is invalid; no provider call
            ServiceUnavailableError: If the circuit breaker is open
            ExternalServiceError: If every attempt failed
        """
        self._ensure_configured()
        request = self._validate(request)
        self._ensure_circuit_closed("stk_push")

        account = redact_reference(request.account_reference)
        start = self._clock()
        attempts = 0

        async def attempt() -> StkPushResponse:
            nonlocal attempts
            attempts += 1
            return await self._call_with_timeout(
                STK_PUSH_SERVICE, self._client.initiate_stk_push, request
            )

        try:
            response = await self._retry(attempt, self.settings.retry_policy(), STK_PUSH_SERVICE)
        except _NON_RETRYABLE:
            logger.error("mpesa_stk_push_rejected", account=account, attempts=attempts)
            raise
        except Exception as e:
            self._record_outcome("stk_push", False, start)

            logger.error(
                "mpesa_stk_push_failed",
                account=account,
                attempts=attempts,
                error=str(e),
            )

            if isinstance(e, ExternalServiceError):
                if e.attempts is None:
                    e.attempts = attempts
                raise

            raise ExternalServiceError(
                STK_PUSH_SERVICE,
                f"Failed to initiate payment after {attempts} attempt(s): {e}",
                attempts=attempts,
            ) from e

        self._record_outcome("stk_push", True, start)

        logger.info(
            "mpesa_stk_push_initiated",
            account=account,
            attempts=attempts,
            checkout_request_id=response.checkout_request_id,
        )
        return response

    async def initiate_payment_rate_limited(self, request: StkPushRequest) -> StkPushResponse:
        """Initiate an STK push if the shared rate window has capacity.

        Raises:
            PaymentRateLimitError: If the window is full; no provider call
        """
        try:
            self.rate_limiter.acquire()
        except RateLimitExceededError as e:
            prom.record_rejection("stk_push", "rate_limited")
            raise PaymentRateLimitError(SERVICE) from e

        return await self.initiate_payment(request)

    def get_health(self) -> GatewayHealth:
        """Health snapshot. Pure read; does not advance the breaker."""
        configured = self.settings.is_configured
        return GatewayHealth(
            healthy=self.circuit_breaker.state == CircuitBreakerState.CLOSED and configured,
            circuit_breaker=self.circuit_breaker.snapshot(),
            metrics=self.metrics.model_copy(),
            configured=configured,
        )

    def reset_circuit_breaker(self) -> None:
        """Administrative override closing the circuit."""
        self.circuit_breaker.reset()
        prom.set_circuit_open(False)
        logger.warning("mpesa_circuit_breaker_reset_manually")

    async def test_connection(self) -> ConnectionTestResult:
        """Check provider connectivity by acquiring a token."""
        try:
            await self.acquire_access_token()
        except (PaymentConfigurationError, ExternalServiceError) as e:
            return ConnectionTestResult(
                success=False,
                message=f"M-Pesa connection failed: {e}",
            )
        return ConnectionTestResult(success=True, message="M-Pesa connection successful")

    def _ensure_configured(self) -> None:
        if not self.settings.is_configured:
            raise PaymentConfigurationError("M-Pesa credentials not configured")

    def _validate(self, request: StkPushRequest) -> StkPushRequest:
        if not request.phone or request.amount is None or not request.account_reference:
            prom.record_rejection("stk_push", "validation")
            raise PaymentValidationError(
                "Missing required fields: phone, amount, accountReference"
            )

        if not math.isfinite(request.amount):
            prom.record_rejection("stk_push", "validation")
            raise PaymentValidationError("Amount must be a finite number")

        if request.amount <= 0:
            prom.record_rejection("stk_push", "validation")
            raise PaymentValidationError("Amount must be greater than 0")

        # Daraja only accepts whole shillings
        if not float(request.amount).is_integer():
            prom.record_rejection("stk_push", "validation")
            raise PaymentValidationError("Amount must be a whole number of KES")

        try:
            phone = normalize_phone(request.phone)
        except PaymentValidationError:
            prom.record_rejection("stk_push", "validation")
            raise

        return request.model_copy(update={"phone": phone})

    def _ensure_circuit_closed(self, operation: str) -> None:
        try:
            self.circuit_breaker.ensure_closed()
        except CircuitBreakerOpenError as e:
            prom.set_circuit_open(True)
            prom.record_rejection(operation, "circuit_open")
            raise ServiceUnavailableError(SERVICE, e.failure_count) from e

        prom.set_circuit_open(False)

    async def _call_with_timeout(
        self,
        service: str,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
    ) -> T:
        try:
            return await self._timeout.execute(operation, *args)
        except ResilienceTimeoutError as e:
            raise ProviderTimeoutError(service, e.timeout_seconds) from e

    async def _retry(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
        context: str,
    ) -> T:
        return await retry_with_backoff(
            operation,
            policy,
            context,
            sleep=self._sleep,
            rng=self._rng,
            non_retryable=_NON_RETRYABLE,
        )

    def _record_outcome(self, operation: str, success: bool, start: float) -> None:
        elapsed = self._clock() - start
        self.metrics.record(success, elapsed * 1000, datetime.now(UTC))

        if success:
            self.circuit_breaker.record_success()
        else:
            self.circuit_breaker.record_failure()

        prom.record_outcome(operation, success, elapsed)
        prom.set_circuit_open(self.circuit_breaker.state == CircuitBreakerState.OPEN)

    async def close(self) -> None:
        """Close the provider client if the gateway created it."""
        if self._owns_client and isinstance(self._client, DarajaClient):
            await self._client.close()

    async def __aenter__(self) -> MpesaGateway:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()


def create_mpesa_gateway(settings: MpesaSettings | None = None) -> MpesaGateway:
    """Build a gateway from explicit settings or the environment."""
    return MpesaGateway(settings or get_mpesa_settings())
