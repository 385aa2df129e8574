"""Async Daraja API client.

Thin httpx client for the two provider calls the payment flow needs: OAuth
token generation and STK push initiation. It performs a single attempt per
call; retries, circuit breaking and rate limiting live in MpesaGateway.
"""

from __future__ import annotations

import base64
import math
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from distrihub.integration.mpesa.config import MpesaSettings
from distrihub.integration.mpesa.exceptions import (
    ExternalServiceError,
    PaymentConfigurationError,
    PaymentValidationError,
    ProviderTimeoutError,
)
from distrihub.integration.mpesa.models import (
    AccessToken,
    StkPushRequest,
    StkPushResponse,
    normalize_phone,
    redact_reference,
)

logger = structlog.get_logger(__name__)

OAUTH_PATH = "/oauth/v1/generate"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"

# Daraja timestamps are East Africa Time
EAT = timezone(timedelta(hours=3))

TOKEN_REFRESH_MARGIN_SECONDS = 60


def build_password(shortcode: str, passkey: str, timestamp: str) -> str:
    """Base64 of shortcode + passkey + timestamp, as Daraja expects."""
    return base64.b64encode(f"{shortcode}{passkey}{timestamp}".encode()).decode()


def daraja_timestamp(now: datetime | None = None) -> str:
    """Format a timestamp as YYYYMMDDHHMMSS in East Africa Time."""
    now = now or datetime.now(EAT)
    return now.astimezone(EAT).strftime("%Y%m%d%H%M%S")


class DarajaClient:
    """Async client for the Safaricom Daraja API.

    Features:
    - OAuth client-credentials token with in-memory caching
    - STK push request construction (password, timestamp, MSISDN)
    - Mapping of transport and HTTP failures to ExternalServiceError
    """

    def __init__(
        self,
        settings: MpesaSettings,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize Daraja client.

        Args:
            settings: M-Pesa settings
            http_client: Optional preconfigured httpx client (not closed by us)
            clock: Monotonic clock used for token expiry
        """
        self.settings = settings
        self._clock = clock
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.resolved_base_url,
            timeout=httpx.Timeout(settings.timeout_seconds),
        )
        self._token: AccessToken | None = None
        self._closed = False

        logger.info(
            "daraja_client_initialized",
            base_url=settings.resolved_base_url,
            environment=settings.environment,
        )

    async def get_access_token(self) -> str:
        """Return a cached access token, fetching a new one when needed.

        Returns:
            Bearer token

        Raises:
            PaymentConfigurationError: If consumer credentials are missing
            ExternalServiceError: If the provider call fails
        """
        if self._token and self._clock() < self._token.expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._token.token

        if not (self.settings.consumer_key and self.settings.consumer_secret):
            raise PaymentConfigurationError("M-Pesa credentials not configured")

        response = await self._send(
            "M-Pesa OAuth",
            "GET",
            self._url(OAUTH_PATH),
            params={"grant_type": "client_credentials"},
            auth=(
                self.settings.consumer_key,
                self.settings.consumer_secret.get_secret_value(),
            ),
        )

        data = self._json(response, "M-Pesa OAuth")
        token = data.get("access_token")
        if not token:
            raise ExternalServiceError(
                "M-Pesa OAuth",
                "Token response did not include an access_token",
                status_code=response.status_code,
                response_body=response.text,
            )

        expires_in = int(data.get("expires_in", 3599))
        self._token = AccessToken(token=token, expires_at=self._clock() + expires_in)

        logger.info("daraja_token_refreshed", expires_in=expires_in)
        return token

    async def initiate_stk_push(self, request: StkPushRequest) -> StkPushResponse:
        """Send an STK push prompt to the payer's phone.

        Args:
            request: Validated payment request

        Returns:
            Provider acknowledgement

        Raises:
            PaymentConfigurationError: If shortcode or passkey are missing
            PaymentValidationError: If the phone number or amount is invalid
            ExternalServiceError: If the provider call fails
        """
        if not (self.settings.shortcode and self.settings.passkey):
            raise PaymentConfigurationError("M-Pesa shortcode and passkey are required")

        phone = normalize_phone(request.phone or "")
        amount = request.amount or 0
        if not math.isfinite(amount) or amount <= 0 or not float(amount).is_integer():
            raise PaymentValidationError("Amount must be a positive whole number of KES")

        token = await self.get_access_token()
        timestamp = daraja_timestamp()
        shortcode = self.settings.shortcode

        payload: dict[str, Any] = {
            "BusinessShortCode": shortcode,
            "Password": build_password(
                shortcode, self.settings.passkey.get_secret_value(), timestamp
            ),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone,
            "PartyB": shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.settings.callback_url or "",
            "AccountReference": request.account_reference,
            "TransactionDesc": request.transaction_desc,
        }

        response = await self._send(
            "M-Pesa STK Push",
            "POST",
            self._url(STK_PUSH_PATH),
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )

        result = StkPushResponse.model_validate(self._json(response, "M-Pesa STK Push"))

        logger.info(
            "daraja_stk_push_accepted",
            account=redact_reference(request.account_reference),
            checkout_request_id=result.checkout_request_id,
            response_code=result.response_code,
        )
        return result

    def _url(self, path: str) -> str:
        return f"{self.settings.resolved_base_url}{path}"

    async def _send(self, service: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute one HTTP request and map failures to typed errors."""
        if self._closed:
            raise ExternalServiceError(service, "Daraja client is closed")

        start_time = time.monotonic()

        try:
            response = await self._client.request(
                method,
                url,
                timeout=self.settings.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.error(
                "daraja_request_timeout",
                service=service,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
            raise ProviderTimeoutError(service, self.settings.timeout_seconds) from e
        except httpx.HTTPError as e:
            logger.error(
                "daraja_request_error",
                service=service,
                duration_ms=(time.monotonic() - start_time) * 1000,
                error=str(e),
            )
            raise ExternalServiceError(service, f"Connection failed: {e}") from e

        if not response.is_success:
            self._raise_for_status(service, response)

        return response

    @staticmethod
    def _raise_for_status(service: str, response: httpx.Response) -> None:
        try:
            body = response.json()
            message = (
                body.get("errorMessage")
                or body.get("error_description")
                or body.get("message")
                or response.text
            )
        except ValueError:
            message = response.text or response.reason_phrase

        logger.error(
            "daraja_request_failed",
            service=service,
            status_code=response.status_code,
        )
        raise ExternalServiceError(
            service,
            message,
            status_code=response.status_code,
            response_body=response.text,
        )

    @staticmethod
    def _json(response: httpx.Response, service: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                service,
                "Provider returned a non-JSON response",
                status_code=response.status_code,
                response_body=response.text,
            ) from e
        if not isinstance(data, dict):
            raise ExternalServiceError(service, "Unexpected response shape", status_code=response.status_code)
        return data

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if not self._closed:
            if self._owns_client:
                await self._client.aclose()
            self._closed = True
            logger.info("daraja_client_closed")

    async def __aenter__(self) -> DarajaClient:
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        await self.close()
