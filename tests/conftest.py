"""
Pytest configuration and fixtures.
"""
import json
import os
from decimal import Decimal
from typing import Any, List, Optional

# Settings are read from the environment on first use
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_fake_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_fake_secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_paystack_fake_key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("QUEUE_DRAIN_INTERVAL", "0")

import pytest

from payment_gateway.config import Settings
from payment_gateway.core.service import PaymentService
from payment_gateway.domain.models import (
    CaptureResponse,
    CardDetails,
    GatewayType,
    PaymentRequest,
    PaymentResponse,
    PaymentState,
    PaymentStatus,
    PayoutRequest,
    PayoutResponse,
    RefundRequest,
    RefundResponse,
    TokenResponse,
    WebhookResponse,
)
from payment_gateway.events.bus import EventBus
from payment_gateway.gateways.base import PaymentGateway, WebhookPayload
from payment_gateway.gateways.factory import PaymentGatewayFactory
from payment_gateway.gateways.paystack_gateway import PaystackGateway
from payment_gateway.gateways.stripe_gateway import StripeGateway
from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry
from payment_gateway.resilience.executor import ResilienceExecutor, RetryConfig

VALID_SIGNATURE = "valid-signature"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests spanning several components")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubGateway(PaymentGateway):
    """
    In-memory gateway.

    Errors queued in `errors` are raised, one per call, by every operation
    before it succeeds.
    """

    def __init__(self, settings: Settings, gateway_type: GatewayType, available: bool = True):
        self.gateway_type = gateway_type
        super().__init__(settings)
        real = StripeGateway if gateway_type == GatewayType.STRIPE else PaystackGateway
        self.supported_payment_methods = real.supported_payment_methods
        self.supported_currencies = real.supported_currencies
        self.prefix = "pi_" if gateway_type == GatewayType.STRIPE else "PAYSTACK_"
        self.available = available
        self.errors: List[Exception] = []
        self.calls: List[str] = []

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if self.errors:
            raise self.errors.pop(0)

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        self._call("process_payment")
        self.validate_payment_request(request)
        return PaymentResponse(
            transaction_id=f"{self.prefix}{request.order_id}",
            status=PaymentState.COMPLETED,
            amount=request.amount,
            currency=request.currency,
            message="Payment processed",
            gateway=self.name,
        )

    async def refund_payment(self, request: RefundRequest) -> RefundResponse:
        self._call("refund_payment")
        return RefundResponse(
            refund_id="re_1",
            transaction_id=request.transaction_id,
            amount=request.amount,
            currency=request.currency,
            status="succeeded",
            gateway=self.name,
        )

    async def capture_payment(
        self, transaction_id: str, amount: Optional[Decimal] = None
    ) -> CaptureResponse:
        self._call("capture_payment")
        return CaptureResponse(
            transaction_id=transaction_id,
            amount=amount if amount is not None else Decimal("10.00"),
            currency="USD",
            status=PaymentState.COMPLETED,
            gateway=self.name,
        )

    def verify_webhook_signature(self, payload: WebhookPayload, signature: Optional[str]) -> bool:
        return signature == VALID_SIGNATURE

    async def process_webhook(self, payload: WebhookPayload) -> WebhookResponse:
        self._call("process_webhook")
        event = json.loads(payload)
        return WebhookResponse(
            event_id=str(event.get("id")),
            event_type=event.get("type") or event.get("event"),
            processed=True,
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        self._call("get_payment_status")
        return PaymentStatus(
            transaction_id=transaction_id,
            status=PaymentState.COMPLETED,
            amount=Decimal("10.00"),
            currency="USD",
            gateway=self.name,
        )

    async def create_payment_token(self, card: CardDetails) -> TokenResponse:
        self._call("create_payment_token")
        return TokenResponse(token="tok_1", last_four_digits=card.card_number[-4:])

    async def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        self._call("initiate_payout")
        return PayoutResponse(
            payout_id="po_1",
            amount=request.amount,
            currency=request.currency,
            status="pending",
            gateway=self.name,
        )

    async def is_available(self) -> bool:
        return self.available


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        stripe_publishable_key="pk_test_fake_key_for_testing",
        stripe_webhook_secret="whsec_test_fake_secret",
        paystack_secret_key="sk_test_paystack_fake_key",
        paystack_base_url="https://api.paystack.test",
        app_name="payment-gateway-test",
        app_env="test",
        log_level="DEBUG",
        retry_max_attempts=3,
        retry_min_wait=0,
        retry_max_wait=0,
        call_timeout=5.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stripe_stub(test_settings: Settings) -> StubGateway:
    return StubGateway(test_settings, GatewayType.STRIPE)


@pytest.fixture
def paystack_stub(test_settings: Settings) -> StubGateway:
    return StubGateway(test_settings, GatewayType.PAYSTACK)


@pytest.fixture
def gateway_factory(stripe_stub: StubGateway, paystack_stub: StubGateway) -> PaymentGatewayFactory:
    factory = PaymentGatewayFactory()
    factory.register(GatewayType.STRIPE, stripe_stub)
    factory.register(GatewayType.PAYSTACK, paystack_stub)
    return factory


@pytest.fixture
def executor(clock: FakeClock) -> ResilienceExecutor:
    return ResilienceExecutor(
        circuit_breakers=CircuitBreakerRegistry(clock=clock),
        retry_config=RetryConfig(max_attempts=3, min_wait=0, max_wait=0),
        default_timeout=5.0,
    )


@pytest.fixture
def event_bus(executor: ResilienceExecutor) -> EventBus:
    return EventBus(circuit_breakers=executor.circuit_breakers)


@pytest.fixture
def payment_service(
    test_settings: Settings,
    gateway_factory: PaymentGatewayFactory,
    executor: ResilienceExecutor,
    event_bus: EventBus,
) -> PaymentService:
    return PaymentService(
        test_settings, gateway_factory, executor=executor, event_bus=event_bus
    )


@pytest.fixture
def nigerian_payment() -> PaymentRequest:
    """Payment from Nigeria, routed to Paystack."""
    return PaymentRequest(
        amount=Decimal("5000.00"),
        currency="NGN",
        order_id="order-ng-1",
        customer_id="cust-1",
        customer_email="ada@example.com",
        customer_name="Ada Obi",
        country_code="NG",
        payment_method="mobile_money",
        metadata={"channel": "web"},
    )


@pytest.fixture
def us_payment() -> PaymentRequest:
    """Payment from the United States, routed to Stripe."""
    return PaymentRequest(
        amount=Decimal("49.99"),
        currency="USD",
        order_id="order-us-1",
        customer_id="cust-2",
        customer_email="jordan@example.com",
        country_code="US",
        payment_method="card",
    )
