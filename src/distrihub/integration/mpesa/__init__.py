"""M-Pesa (Daraja) payment integration.

Resilient STK push payments with retry, circuit breaking, rate limiting and
typed errors the calling layer can branch on.

Example usage:
    ```python
    from distrihub.integration.mpesa import (
        StkPushRequest,
        create_mpesa_gateway,
        ExternalServiceError,
        PaymentValidationError,
    )

    gateway = create_mpesa_gateway()

    try:
        response = await gateway.initiate_payment_rate_limited(
            StkPushRequest(phone="0712345678", amount=150, account_reference="ORD-1042")
        )
    except PaymentValidationError:
        ...  # ask the user to fix the input
    except ExternalServiceError:
        ...  # ask the user to try again later
    ```
"""

from distrihub.integration.mpesa.client import DarajaClient
from distrihub.integration.mpesa.config import (
    MpesaSettings,
    get_mpesa_settings,
    load_mpesa_settings,
)
from distrihub.integration.mpesa.exceptions import (
    ExternalServiceError,
    PaymentConfigurationError,
    PaymentError,
    PaymentRateLimitError,
    PaymentValidationError,
    ProviderTimeoutError,
    ServiceUnavailableError,
)
from distrihub.integration.mpesa.gateway import (
    MpesaGateway,
    PaymentProvider,
    create_mpesa_gateway,
)
from distrihub.integration.mpesa.models import (
    ConnectionTestResult,
    GatewayHealth,
    StkPushRequest,
    StkPushResponse,
    normalize_phone,
    redact_reference,
)

__all__ = [
    # Gateway
    "MpesaGateway",
    "PaymentProvider",
    "create_mpesa_gateway",
    # Client
    "DarajaClient",
    # Configuration
    "MpesaSettings",
    "get_mpesa_settings",
    "load_mpesa_settings",
    # Models
    "StkPushRequest",
    "StkPushResponse",
    "GatewayHealth",
    "ConnectionTestResult",
    "normalize_phone",
    "redact_reference",
    # Exceptions
    "PaymentError",
    "PaymentValidationError",
    "PaymentConfigurationError",
    "ExternalServiceError",
    "ProviderTimeoutError",
    "ServiceUnavailableError",
    "PaymentRateLimitError",
]
