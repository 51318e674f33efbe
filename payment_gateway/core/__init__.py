"""Core payment services: routing, validation and orchestration."""
from .exceptions import (
    GatewayErrorType,
    GatewayUnavailableError,
    PaymentGatewayError,
    PaymentProcessingError,
    PaymentValidationError,
    UnsupportedGatewayError,
    UnsupportedOperationError,
    WebhookError,
)

__all__ = [
    "GatewayErrorType",
    "GatewayUnavailableError",
    "PaymentGatewayError",
    "PaymentProcessingError",
    "PaymentValidationError",
    "UnsupportedGatewayError",
    "UnsupportedOperationError",
    "WebhookError",
]
