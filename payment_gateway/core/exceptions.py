"""
Exception hierarchy for payment gateway operations.

Gateway adapters classify every provider failure into a GatewayErrorType so
the resilience layer can decide whether a call is worth retrying.
"""
from enum import Enum
from typing import List, Optional


class GatewayErrorType(Enum):
    """Classification of gateway errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class PaymentGatewayError(Exception):
    """Base exception for all payment gateway errors."""

    pass


class PaymentProcessingError(PaymentGatewayError):
    """Raised when a gateway rejects or fails an operation."""

    def __init__(
        self,
        message: str,
        error_type: GatewayErrorType = GatewayErrorType.PERMANENT,
        error_code: Optional[str] = None,
        gateway_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize processing error.

        Args:
            message: Error message
            error_type: Classification of error
            error_code: Provider error code, when one is available
            gateway_name: Gateway that produced the error
            original_error: Original provider exception
        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.error_code = error_code
        self.gateway_name = gateway_name
        self.original_error = original_error

    @property
    def retryable(self) -> bool:
        """Transient and rate-limit failures may succeed on a later attempt."""
        return self.error_type in (GatewayErrorType.TRANSIENT, GatewayErrorType.RATE_LIMIT)


class UnsupportedOperationError(PaymentProcessingError):
    """Raised when a gateway does not implement an operation server-side."""

    pass


class PaymentValidationError(PaymentGatewayError):
    """Raised when payment input validation fails."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class UnsupportedGatewayError(PaymentGatewayError):
    """Raised when a gateway is unknown, unregistered or unavailable."""

    pass


class WebhookError(PaymentGatewayError):
    """Raised when webhook verification or processing fails."""

    pass


class GatewayUnavailableError(UnsupportedGatewayError):
    """Raised when a registered gateway fails its availability check."""

    pass


class PaymentAuthorizationError(PaymentGatewayError):
    """Raised when the caller's roles do not allow a payment operation."""

    def __init__(self, message: str, subject: Optional[str] = None):
        super().__init__(message)
        self.subject = subject
