"""
Payment request validation.

Collects every problem with a request instead of stopping at the first one,
so clients get a complete list of errors back.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

import structlog

from payment_gateway.core.sanitizer import InputSanitizer
from payment_gateway.domain.models import Address, PaymentRequest

logger = structlog.get_logger(__name__)

MAX_AMOUNT = Decimal("999999.99")

SUPPORTED_CURRENCIES = frozenset(
    {
        "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "SEK", "NOK", "DKK",
        "NGN", "GHS", "ZAR", "KES", "UGX", "XAF", "XOF", "EGP", "MAD", "TND",
    }
)

SUPPORTED_PAYMENT_METHODS = frozenset(
    {
        "card", "bank_transfer", "mobile_money", "ussd", "qr", "eft",
        "paypal", "apple_pay", "google_pay", "bank", "wallet",
    }
)

VALID_COUNTRY_CODES = frozenset(
    {
        "US", "CA", "GB", "FR", "DE", "ES", "IT", "NL", "SE", "NO", "DK", "FI",
        "NG", "GH", "ZA", "KE", "UG", "EG", "MA", "TN", "CI", "SN", "ML", "BF",
        "AU", "NZ", "JP", "KR", "SG", "MY", "TH", "IN", "CN", "HK", "TW",
    }
)

IDENTIFIER = re.compile(r"^[a-zA-Z0-9\-_]+$")
CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
EMAIL = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)

    @property
    def error_message(self) -> str:
        return "; ".join(self.errors)


def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


class PaymentRequestValidator:
    """Field-by-field validation of payment requests."""

    def __init__(self, sanitizer: Optional[InputSanitizer] = None):
        self.sanitizer = sanitizer or InputSanitizer()

    def validate_payment_request(self, request: Optional[PaymentRequest]) -> ValidationResult:
        """
        Validate a payment request.

        Args:
            request: Payment request to validate

        Returns:
            ValidationResult: valid flag and every error found
        """
        if request is None:
            return ValidationResult(False, ["Payment request cannot be null"])

        errors: List[str] = []

        self._validate_amount(request.amount, errors)
        self._validate_currency(request.currency, errors)
        self._validate_identifier(request.order_id, "Order ID", errors)
        self._validate_identifier(request.customer_id, "Customer ID", errors)
        self._validate_email(request.customer_email, errors)

        self._validate_customer_name(request.customer_name, errors)
        self._validate_phone(request.customer_phone, errors)
        self._validate_country_code(request.country_code, errors)
        self._validate_payment_method(request.payment_method, errors)
        self._validate_description(request.description, errors)
        self._validate_metadata(request.metadata, errors)

        if request.billing_address is not None:
            self._validate_address(request.billing_address, "billing", errors)
        if request.shipping_address is not None:
            self._validate_address(request.shipping_address, "shipping", errors)

        if errors:
            logger.warning("payment_request_validation_failed", errors=errors)
        else:
            logger.info(
                "payment_request_validated",
                order_id=self.sanitizer.sanitize_for_logging(request.order_id),
            )

        return ValidationResult(not errors, errors)

    def _validate_amount(self, amount: Optional[Decimal], errors: List[str]) -> None:
        if amount is None:
            errors.append("Amount is required")
            return
        if amount <= 0:
            errors.append("Amount must be positive")
        if amount > MAX_AMOUNT:
            errors.append("Amount exceeds maximum allowed (999,999.99)")
        exponent = amount.normalize().as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            errors.append("Amount cannot have more than 2 decimal places")

    def _validate_currency(self, currency: Optional[str], errors: List[str]) -> None:
        if not _has_text(currency):
            errors.append("Currency is required")
            return
        if not self.sanitizer.is_valid_input(currency):
            errors.append("Invalid currency format detected")
            return
        if len(currency) != 3:
            errors.append("Currency must be 3 characters (ISO 4217 format)")
            return
        if not CURRENCY_CODE.match(currency):
            errors.append("Currency must be uppercase ISO 4217 format")
            return
        if currency not in SUPPORTED_CURRENCIES:
            errors.append(f"Unsupported currency: {self.sanitizer.sanitize_for_logging(currency)}")

    def _validate_identifier(self, value: Optional[str], label: str, errors: List[str]) -> None:
        if not _has_text(value):
            errors.append(f"{label} is required")
            return
        if not self.sanitizer.is_valid_input(value):
            errors.append(f"Invalid {label.lower().replace('id', 'ID')} format detected")
            return
        if len(value) > 100:
            errors.append(f"{label} is too long (max 100 characters)")
        if not IDENTIFIER.match(value):
            errors.append(
                f"{label} contains invalid characters (alphanumeric, hyphens, underscores only)"
            )

    def _validate_email(self, email: Optional[str], errors: List[str]) -> None:
        if not _has_text(email):
            errors.append("Customer email is required")
            return
        if not self.sanitizer.is_valid_input(email):
            errors.append("Invalid email format detected")
            return
        if not EMAIL.match(email):
            errors.append("Invalid email format")
        if len(email) > 254:
            errors.append("Email address is too long (max 254 characters)")

    def _validate_customer_name(self, name: Optional[str], errors: List[str]) -> None:
        if _has_text(name) and not self.sanitizer.is_valid_customer_name(name):
            errors.append("Invalid customer name format or content")

    def _validate_phone(self, phone: Optional[str], errors: List[str]) -> None:
        if _has_text(phone) and not self.sanitizer.is_valid_phone_number(phone):
            errors.append("Invalid phone number format")

    def _validate_country_code(self, country_code: Optional[str], errors: List[str]) -> None:
        if not _has_text(country_code):
            return
        if not self.sanitizer.is_valid_country_code(country_code):
            errors.append("Invalid country code format")
            return
        if country_code not in VALID_COUNTRY_CODES:
            errors.append(
                f"Unsupported country code: {self.sanitizer.sanitize_for_logging(country_code)}"
            )

    def _validate_payment_method(self, method: Optional[str], errors: List[str]) -> None:
        if not _has_text(method):
            return
        if not self.sanitizer.is_valid_input(method):
            errors.append("Invalid payment method format detected")
            return
        if len(method) > 50:
            errors.append("Payment method name is too long (max 50 characters)")
            return
        if method.lower() not in SUPPORTED_PAYMENT_METHODS:
            errors.append(f"Unsupported payment method: {self.sanitizer.sanitize_for_logging(method)}")

    def _validate_description(self, description: Optional[str], errors: List[str]) -> None:
        if not _has_text(description):
            return
        if not self.sanitizer.is_valid_input(description):
            errors.append("Invalid description format detected")
            return
        if len(description) > 500:
            errors.append("Description is too long (max 500 characters)")

    def _validate_metadata(self, metadata: Optional[Dict[str, str]], errors: List[str]) -> None:
        if metadata and not self.sanitizer.is_valid_metadata(metadata):
            errors.append("Invalid metadata detected")

    def _validate_address(self, address: Address, kind: str, errors: List[str]) -> None:
        self._check_address_field(address.line1, kind, "line 1", "line1", 100, True, errors)
        self._check_address_field(address.city, kind, "city", "city", 50, True, errors)

        if not _has_text(address.country):
            errors.append(f"{kind} address country is required")
        elif not self.sanitizer.is_valid_country_code(address.country):
            errors.append(f"Invalid {kind} address country code")

        self._check_address_field(address.line2, kind, "line 2", "line2", 100, False, errors)
        self._check_address_field(address.state, kind, "state", "state", 50, False, errors)
        self._check_address_field(
            address.postal_code, kind, "postal code", "postal code", 20, False, errors
        )

    def _check_address_field(
        self,
        value: Optional[str],
        kind: str,
        label: str,
        field_name: str,
        max_length: int,
        required: bool,
        errors: List[str],
    ) -> None:
        if not _has_text(value):
            if required:
                errors.append(f"{kind} address {label} is required")
            return
        if not self.sanitizer.is_valid_address_component(value, field_name):
            errors.append(f"Invalid {kind} address {label}")
        if len(value) > max_length:
            errors.append(f"{kind} address {label} is too long (max {max_length} characters)")
