"""Root-level pytest configuration for all tests."""

from __future__ import annotations

from typing import Any

import pytest

from distrihub.integration.mpesa.config import MpesaSettings
from distrihub.integration.mpesa.models import StkPushRequest, StkPushResponse


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and advances a clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class FakeProvider:
    """Scripted payment provider.

    Each call consumes the next scripted outcome; an exception instance is
    raised, anything else is returned. The last outcome repeats once the
    script runs out.
    """

    def __init__(
        self,
        token_outcomes: list[Any] | None = None,
        push_outcomes: list[Any] | None = None,
        clock: FakeClock | None = None,
        latencies: list[float] | None = None,
    ) -> None:
        self.token_outcomes = token_outcomes or ["token-123"]
        self.push_outcomes = push_outcomes or [make_stk_response()]
        self.token_calls = 0
        self.push_calls = 0
        self.push_requests: list[StkPushRequest] = []
        self._clock = clock
        self._latencies = latencies or []

    def _next(self, outcomes: list[Any], index: int) -> Any:
        outcome = outcomes[min(index, len(outcomes) - 1)]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def _tick(self, index: int) -> None:
        if self._clock is not None and self._latencies:
            self._clock.advance(self._latencies[min(index, len(self._latencies) - 1)])

    async def get_access_token(self) -> str:
        index = self.token_calls
        self.token_calls += 1
        self._tick(index)
        return self._next(self.token_outcomes, index)

    async def initiate_stk_push(self, request: StkPushRequest) -> StkPushResponse:
        index = self.push_calls
        self.push_calls += 1
        self.push_requests.append(request)
        self._tick(index)
        return self._next(self.push_outcomes, index)


def make_stk_response(checkout_id: str = "ws_CO_191220191020363925") -> StkPushResponse:
    return StkPushResponse(
        MerchantRequestID="29115-34620561-1",
        CheckoutRequestID=checkout_id,
        ResponseCode="0",
        ResponseDescription="Success. Request accepted for processing",
        CustomerMessage="Success. Request accepted for processing",
    )


@pytest.fixture(autouse=True)
def _clear_mpesa_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep host MPESA_* variables out of settings built in tests."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("MPESA_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def settings() -> MpesaSettings:
    """Fully configured sandbox settings."""
    return MpesaSettings(
        consumer_key="test-consumer-key",
        consumer_secret="test-consumer-secret",
        shortcode="174379",
        passkey="test-passkey",
        callback_url="https://example.com/api/mpesa/callback",
    )


@pytest.fixture
def payment_request() -> StkPushRequest:
    return StkPushRequest(
        phone="0712345678",
        amount=150,
        account_reference="ORD-20240117-0042",
    )


@pytest.fixture
def stk_response() -> StkPushResponse:
    return make_stk_response()


@pytest.fixture
def make_provider(clock: FakeClock):
    """Factory for scripted providers sharing the test clock."""

    def _make(
        token_outcomes: list[Any] | None = None,
        push_outcomes: list[Any] | None = None,
        latencies: list[float] | None = None,
    ) -> FakeProvider:
        return FakeProvider(
            token_outcomes=token_outcomes,
            push_outcomes=push_outcomes,
            clock=clock,
            latencies=latencies,
        )

    return _make
