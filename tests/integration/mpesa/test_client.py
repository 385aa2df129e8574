"""Tests for the Daraja API client."""

from __future__ import annotations

import base64
import json

import httpx
import pytest
import respx
from httpx import Response

from distrihub.integration.mpesa.client import (
    DarajaClient,
    build_password,
    daraja_timestamp)
from distrihub.integration.mpesa.config import MpesaSettings
from distrihub.integration.mpesa.exceptions import (
    ExternalServiceError,
    PaymentConfigurationError,
    PaymentValidationError,
    ProviderTimeoutError)
from distrihub.integration.mpesa.models import StkPushRequest

OAUTH_URL = "https://sandbox.safaricom.co.ke/oauth/v1/generate"
STK_URL = "https://sandbox.safaricom.co.ke/mpesa/stkpush/v1/processrequest"

STK_ACCEPTED = {
    "MerchantRequestID": "29115-34620561-1",
    "CheckoutRequestID": "ws_CO_191220191020363925",
    "ResponseCode": "0",
    "ResponseDescription": "Success. Request accepted for processing",
    "CustomerMessage": "Success. Request accepted for processing",
}


@pytest.fixture
def request_body() -> StkPushRequest:
    return StkPushRequest(
        phone="254712345678",
        amount=150,
        account_reference="ORD-0042",
        transaction_desc="Order 42")


class TestHelpers:
    def test_build_password(self) -> None:
        password = build_password("174379", "passkey", "20240117103000")

        assert base64.b64decode(password).decode() == "174379passkey20240117103000"

    def test_timestamp_format(self) -> None:
        timestamp = daraja_timestamp()

        assert len(timestamp) == 14
        assert timestamp.isdigit()


class TestAccessToken:
    """Test OAuth token acquisition."""

    @respx.mock
    async def test_fetches_token_with_basic_auth(self, settings: MpesaSettings, clock) -> None:
        route = respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )

        async with DarajaClient(settings, clock=clock) as client:
            token = await client.get_access_token()

        assert token == "abc123"
        assert route.called
        sent = route.calls.last.request
        assert sent.url.params["grant_type"] == "client_credentials"
        expected = base64.b64encode(b"test-consumer-key:test-consumer-secret").decode()
        assert sent.headers["Authorization"] == f"Basic {expected}"

    @respx.mock
    async def test_token_is_cached_until_expiry(self, settings: MpesaSettings, clock) -> None:
        route = respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )

        async with DarajaClient(settings, clock=clock) as client:
            await client.get_access_token()
            clock.advance(3000)
            await client.get_access_token()
            assert route.call_count == 1

            clock.advance(600)
            await client.get_access_token()
            assert route.call_count == 2

    async def test_missing_credentials(self) -> None:
        async with DarajaClient(MpesaSettings(), clock=lambda: 0.0) as client:
            with pytest.raises(PaymentConfigurationError):
                await client.get_access_token()

    @respx.mock
    async def test_unauthorized_maps_to_client_error(self, settings: MpesaSettings) -> None:
        respx.get(OAUTH_URL).mock(
            return_value=Response(
                401,
                json={"errorCode": "404.001.03", "errorMessage": "Invalid Access Token"},
            )
        )

        async with DarajaClient(settings) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.get_access_token()

        assert exc_info.value.status_code == 401
        assert exc_info.value.service == "M-Pesa OAuth"
        assert "Invalid Access Token" in str(exc_info.value)

    @respx.mock
    async def test_missing_token_in_response(self, settings: MpesaSettings) -> None:
        respx.get(OAUTH_URL).mock(return_value=Response(200, json={"expires_in": "3599"}))

        async with DarajaClient(settings) as client:
            with pytest.raises(ExternalServiceError, match="access_token"):
                await client.get_access_token()


class TestStkPush:
    """Test STK push initiation."""

    @respx.mock
    async def test_builds_provider_payload(
        self, settings: MpesaSettings, request_body: StkPushRequest
    ) -> None:
        respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )
        route = respx.post(STK_URL).mock(return_value=Response(200, json=STK_ACCEPTED))

        async with DarajaClient(settings) as client:
            response = await client.initiate_stk_push(request_body)

        assert response.checkout_request_id == "ws_CO_191220191020363925"

        sent = route.calls.last.request
        assert sent.headers["Authorization"] == "Bearer abc123"
        payload = json.loads(sent.content)
        assert payload["BusinessShortCode"] == "174379"
        assert payload["TransactionType"] == "CustomerPayBillOnline"
        assert payload["Amount"] == 150
        assert payload["PartyA"] == "254712345678"
        assert payload["PhoneNumber"] == "254712345678"
        assert payload["PartyB"] == "174379"
        assert payload["CallBackURL"] == "https://example.com/api/mpesa/callback"
        assert payload["AccountReference"] == "ORD-0042"
        assert payload["TransactionDesc"] == "Order 42"
        decoded = base64.b64decode(payload["Password"]).decode()
        assert decoded == f"174379test-passkey{payload['Timestamp']}"

    @respx.mock
    async def test_server_error_is_retryable_class(
        self, settings: MpesaSettings, request_body: StkPushRequest
    ) -> None:
        respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )
        respx.post(STK_URL).mock(return_value=Response(503, text="Service Unavailable"))

        async with DarajaClient(settings) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.initiate_stk_push(request_body)

        assert exc_info.value.status_code == 503
        assert exc_info.value.service == "M-Pesa STK Push"

    @respx.mock
    async def test_bad_request(self, settings: MpesaSettings, request_body: StkPushRequest) -> None:
        respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )
        respx.post(STK_URL).mock(
            return_value=Response(
                400,
                json={"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid Amount"},
            )
        )

        async with DarajaClient(settings) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.initiate_stk_push(request_body)

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Bad Request - Invalid Amount"

    @respx.mock
    async def test_timeout(self, settings: MpesaSettings, request_body: StkPushRequest) -> None:
        respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )
        respx.post(STK_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        async with DarajaClient(settings) as client:
            with pytest.raises(ProviderTimeoutError) as exc_info:
                await client.initiate_stk_push(request_body)

        assert exc_info.value.status_code is None
        assert "timeout" in str(exc_info.value).lower()

    @respx.mock
    async def test_connection_error(
        self, settings: MpesaSettings, request_body: StkPushRequest
    ) -> None:
        respx.get(OAUTH_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        async with DarajaClient(settings) as client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.initiate_stk_push(request_body)

        assert exc_info.value.status_code is None
        assert "Connection failed" in exc_info.value.message

    @respx.mock
    @pytest.mark.parametrize("amount", [0.4, 2.5, float("nan"), float("inf"), 0])
    async def test_rejects_amount_it_cannot_send_unchanged(
        self, settings: MpesaSettings, amount: float
    ) -> None:
        oauth = respx.get(OAUTH_URL).mock(
            return_value=Response(200, json={"access_token": "abc123", "expires_in": "3599"})
        )
        stk = respx.post(STK_URL).mock(return_value=Response(200, json=STK_ACCEPTED))
        request = StkPushRequest(phone="0712345678", amount=amount, account_reference="ORD-1")

        async with DarajaClient(settings) as client:
            with pytest.raises(PaymentValidationError, match="whole number"):
                await client.initiate_stk_push(request)

        assert not oauth.called
        assert not stk.called

    async def test_requires_shortcode_and_passkey(self, request_body: StkPushRequest) -> None:
        settings = MpesaSettings(consumer_key="key", consumer_secret="secret")

        async with DarajaClient(settings) as client:
            with pytest.raises(PaymentConfigurationError):
                await client.initiate_stk_push(request_body)

    async def test_closed_client_rejects(
        self, settings: MpesaSettings, request_body: StkPushRequest
    ) -> None:
        client = DarajaClient(settings)
        await client.close()

        with pytest.raises(ExternalServiceError, match="closed"):
            await client.get_access_token()
