"""M-Pesa configuration.

Settings are read from ``MPESA_*`` environment variables. Credentials are
optional at load time; the gateway refuses to call the provider until they
are all present.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from distrihub.integration.mpesa.exceptions import PaymentConfigurationError
from distrihub.integration.resilience.models import (
    CircuitBreakerConfig,
    RateLimitConfig,
    RetryPolicy,
    TimeoutConfig,
)

SANDBOX_BASE_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_BASE_URL = "https://api.safaricom.co.ke"


class MpesaSettings(BaseSettings):
    """M-Pesa (Daraja) integration settings."""

    # Credentials
    consumer_key: str | None = Field(default=None)
    consumer_secret: SecretStr | None = Field(default=None)
    shortcode: str | None = Field(default=None)
    passkey: SecretStr | None = Field(default=None)
    callback_url: str | None = Field(default=None)

    environment: Literal["sandbox", "production"] = Field(default="sandbox")
    base_url: str | None = Field(default=None, description="Overrides the environment URL")

    # Request settings
    timeout_ms: int = Field(default=30000, ge=1)
    max_retries: int = Field(default=3, ge=1, le=10)
    auth_max_retries: int = Field(default=2, ge=1, le=10)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    # Circuit breaker
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    circuit_breaker_timeout_ms: int = Field(default=60000, ge=1)

    # Rate limiting
    rate_limit_window_ms: int = Field(default=60000, ge=1)
    rate_limit_max_requests: int = Field(default=100, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="MPESA_",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_credentials(self) -> MpesaSettings:
        if self.consumer_key and not self.consumer_secret:
            raise ValueError(
                "M-Pesa consumer secret is required when consumer key is provided"
            )
        return self

    @property
    def is_configured(self) -> bool:
        """True when every credential needed for an STK push is present."""
        return bool(
            self.consumer_key
            and self.consumer_secret
            and self.consumer_secret.get_secret_value()
            and self.shortcode
            and self.passkey
            and self.passkey.get_secret_value()
        )

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        if self.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
        )

    def auth_retry_policy(self) -> RetryPolicy:
        """Retry policy for token acquisition, with fewer attempts."""
        return self.retry_policy().model_copy(
            update={"max_retries": self.auth_max_retries}
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            name="mpesa",
            failure_threshold=self.circuit_breaker_threshold,
            timeout_seconds=self.circuit_breaker_timeout_ms / 1000,
        )

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            name="mpesa_stk_push",
            window_seconds=self.rate_limit_window_ms / 1000,
            max_requests=self.rate_limit_max_requests,
        )

    def timeout_config(self) -> TimeoutConfig:
        return TimeoutConfig(name="mpesa_request", timeout_seconds=self.timeout_seconds)

    def export_safe(self) -> dict[str, Any]:
        """Settings safe to expose to admin views; no credentials."""
        return {
            "environment": self.environment,
            "configured": self.is_configured,
            "timeout_ms": self.timeout_ms,
            "max_retries": self.max_retries,
            "circuit_breaker_threshold": self.circuit_breaker_threshold,
            "rate_limit_max_requests": self.rate_limit_max_requests,
            "rate_limit_window_ms": self.rate_limit_window_ms,
        }


def load_mpesa_settings(**overrides: Any) -> MpesaSettings:
    """Load M-Pesa settings from the environment.

    Args:
        **overrides: Explicit values taking precedence over the environment

    Returns:
        MpesaSettings instance

    Raises:
        PaymentConfigurationError: If the settings are invalid
    """
    try:
        return MpesaSettings(**overrides)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise PaymentConfigurationError(f"Invalid M-Pesa settings: {messages}") from e


@lru_cache
def get_mpesa_settings() -> MpesaSettings:
    """Process-wide settings loaded once from the environment."""
    return load_mpesa_settings()
