"""Payment domain models and money helpers."""
from .models import (
    Address,
    CaptureResponse,
    CardDetails,
    CurrencyRate,
    GatewayType,
    PaymentRequest,
    PaymentResponse,
    PaymentState,
    PaymentStatus,
    PayoutRequest,
    PayoutResponse,
    RefundRequest,
    RefundResponse,
    SupportedMethods,
    TokenResponse,
    WebhookResponse,
)
from .money import ZERO_DECIMAL_CURRENCIES, from_minor_units, to_minor_units

__all__ = [
    "Address",
    "CaptureResponse",
    "CardDetails",
    "CurrencyRate",
    "GatewayType",
    "PaymentRequest",
    "PaymentResponse",
    "PaymentState",
    "PaymentStatus",
    "PayoutRequest",
    "PayoutResponse",
    "RefundRequest",
    "RefundResponse",
    "SupportedMethods",
    "TokenResponse",
    "WebhookResponse",
    "ZERO_DECIMAL_CURRENCIES",
    "from_minor_units",
    "to_minor_units",
]
