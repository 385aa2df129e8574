"""M-Pesa request and response models."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field

from distrihub.integration.mpesa.exceptions import PaymentValidationError
from distrihub.integration.resilience.models import (
    CircuitBreakerSnapshot,
    UsageMetrics,
)

_KENYAN_MSISDN = re.compile(r"^254[17]\d{8}$")


def normalize_phone(phone: str) -> str:
    """Normalize a Kenyan phone number to the 2547XXXXXXXX form.

    Accepts ``07XXXXXXXX``, ``01XXXXXXXX``, ``+2547XXXXXXXX`` and
    ``2547XXXXXXXX``, with optional spaces or dashes.

    Raises:
        PaymentValidationError: If the number is not a Kenyan mobile number
    """
    digits = re.sub(r"[\s\-]", "", phone).lstrip("+")

    if digits.startswith("0") and len(digits) == 10:
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "17":
        digits = "254" + digits

    if not _KENYAN_MSISDN.match(digits):
        raise PaymentValidationError(f"Invalid phone number: {redact_reference(phone)}")

    return digits


def redact_reference(value: str | None) -> str:
    """Keep the first four characters and mask the rest."""
    if not value:
        return "****"
    return f"{value[:4]}****"


class StkPushRequest(BaseModel):
    """STK push (Lipa na M-Pesa Online) payment request.

    Fields are optional so that missing values surface as
    PaymentValidationError from the gateway instead of a model error.
    """

    phone: str | None = Field(default=None, description="Payer phone number")
    amount: float | None = Field(default=None, description="Amount in KES")
    account_reference: str | None = Field(default=None, description="Order or account reference")
    transaction_desc: str = Field(default="Payment", max_length=13, description="Shown to the payer")


class StkPushResponse(BaseModel):
    """Provider acknowledgement of an STK push."""

    merchant_request_id: str = Field(alias="MerchantRequestID")
    checkout_request_id: str = Field(alias="CheckoutRequestID")
    response_code: str = Field(alias="ResponseCode")
    response_description: str = Field(alias="ResponseDescription")
    customer_message: str | None = Field(default=None, alias="CustomerMessage")

    model_config = ConfigDict(populate_by_name=True)


class AccessToken(BaseModel):
    """Cached OAuth access token."""

    token: str
    expires_at: float = Field(description="Monotonic expiry timestamp")


class GatewayHealth(BaseModel):
    """Health snapshot of the payment gateway."""

    healthy: bool
    circuit_breaker: CircuitBreakerSnapshot
    metrics: UsageMetrics
    configured: bool


class ConnectionTestResult(BaseModel):
    """Result of a provider connectivity check."""

    success: bool
    message: str
