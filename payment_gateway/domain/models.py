"""
Payment domain models shared by every gateway.

Request models mirror what clients send; response models are normalised so
callers never see provider-specific status strings.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class GatewayType(Enum):
    """Supported payment gateways with their display name and region."""

    STRIPE = ("Stripe", "Europe & Rest of World")
    PAYSTACK = ("Paystack", "Africa")
    PAYPAL = ("PayPal", "Global - Disabled")
    SQUARE = ("Square", "Future Implementation")

    def __init__(self, display_name: str, region: str):
        self.display_name = display_name
        self.region = region


class PaymentState:
    """Normalised payment status values."""

    COMPLETED = "COMPLETED"
    PROCESSING = "PROCESSING"
    PENDING = "PENDING"
    REQUIRES_ACTION = "REQUIRES_ACTION"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    CAPTURED = "CAPTURED"
    UNKNOWN = "UNKNOWN"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Address(BaseModel):
    """Billing or shipping address."""

    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class PaymentRequest(BaseModel):
    """Request to charge a customer."""

    amount: Optional[Decimal] = Field(default=None, description="Amount in major units")
    currency: Optional[str] = Field(default=None, description="ISO 4217 currency code")
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    country_code: Optional[str] = Field(default=None, description="ISO 3166-1 alpha-2 code")
    description: Optional[str] = None
    payment_method: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    setup_future_usage: Optional[bool] = None
    requires_authentication: Optional[bool] = None
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "amount": "49.99",
                    "currency": "NGN",
                    "order_id": "order-123",
                    "customer_id": "cust-42",
                    "customer_email": "ada@example.com",
                    "country_code": "NG",
                    "payment_method": "mobile_money",
                }
            ]
        }
    }


class PaymentResponse(BaseModel):
    """Result of a payment attempt."""

    transaction_id: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    gateway_response: Optional[str] = Field(
        default=None, description="Client secret or authorization URL"
    )
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    payment_method: Optional[str] = None
    gateway: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None
    error_code: Optional[str] = None


class RefundRequest(BaseModel):
    """Request to refund a captured payment."""

    transaction_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, le=Decimal("999999.99"))
    currency: str = Field(..., pattern=r"^[A-Z]{3}$")
    reason: str = Field(..., min_length=1, max_length=500)
    requested_by: Optional[str] = Field(default=None, max_length=100)
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    is_partial_refund: Optional[bool] = None


class RefundResponse(BaseModel):
    refund_id: str
    transaction_id: str
    amount: Decimal
    currency: str
    status: Optional[str] = None
    message: Optional[str] = None
    processed_at: datetime = Field(default_factory=utcnow)
    gateway: Optional[str] = None


class CaptureResponse(BaseModel):
    transaction_id: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: str
    message: Optional[str] = None
    captured_at: datetime = Field(default_factory=utcnow)
    gateway: Optional[str] = None


class PaymentStatus(BaseModel):
    transaction_id: str
    status: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)
    gateway: Optional[str] = None
    payment_method: Optional[str] = None
    customer_id: Optional[str] = None


class PayoutRequest(BaseModel):
    """Request to pay out funds to a vendor."""

    vendor_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., pattern=r"^[A-Z]{3}$")
    description: Optional[str] = None
    payout_type: Optional[str] = None
    country_code: Optional[str] = None
    account_number: Optional[str] = None
    bank_code: Optional[str] = None
    account_name: Optional[str] = None


class PayoutResponse(BaseModel):
    payout_id: str
    amount: Decimal
    currency: str
    status: Optional[str] = None
    estimated_arrival: Optional[datetime] = None
    message: Optional[str] = None
    gateway: Optional[str] = None


class WebhookResponse(BaseModel):
    event_id: str
    event_type: str
    processed: bool
    message: Optional[str] = None
    processed_at: datetime = Field(default_factory=utcnow)


class CardDetails(BaseModel):
    """Raw card data; only used for server-side tokenisation in test mode."""

    card_number: str
    expiry_month: int = Field(..., ge=1, le=12)
    expiry_year: int
    cvv: str


class TokenResponse(BaseModel):
    token: str
    last_four_digits: Optional[str] = None
    card_brand: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None


class CurrencyRate(BaseModel):
    """Exchange rate between two currencies."""

    from_currency: str
    to_currency: str
    rate: Decimal
    source: str = "LIVE"
    timestamp: datetime = Field(default_factory=utcnow)


class SupportedMethods(BaseModel):
    gateway: str
    payment_methods: List[str]
    currencies: List[str]


class QueuedPaymentFailure(BaseModel):
    transaction_id: str
    order_id: Optional[str] = None
    error: str


class QueueDrainResult(BaseModel):
    """Outcome of re-submitting the payments queued during an outage."""

    processed: List[PaymentResponse] = Field(default_factory=list)
    failed: List[QueuedPaymentFailure] = Field(default_factory=list)
    remaining: int = 0
