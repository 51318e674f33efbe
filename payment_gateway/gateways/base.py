"""
Payment gateway interface.

Every provider adapter implements the same async operations and returns the
shared domain models, so routing and resilience code never needs to know
which provider it is talking to.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, Iterator, Optional, Union

import structlog

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import GatewayErrorType, PaymentProcessingError
from payment_gateway.domain.models import (
    CaptureResponse,
    CardDetails,
    GatewayType,
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
    PayoutRequest,
    PayoutResponse,
    RefundRequest,
    RefundResponse,
    TokenResponse,
    WebhookResponse,
)
from payment_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

WebhookPayload = Union[bytes, str]
WebhookEventHandler = Callable[[Dict[str, Any]], Any]


class PaymentGateway(ABC):
    """Base class for payment provider adapters."""

    gateway_type: GatewayType
    supported_payment_methods: FrozenSet[str] = frozenset()
    supported_currencies: FrozenSet[str] = frozenset()

    def __init__(self, settings: Settings):
        self.settings = settings
        self._webhook_handlers: Dict[str, WebhookEventHandler] = {}

    @property
    def name(self) -> str:
        return self.gateway_type.name

    def validate_payment_request(self, request: PaymentRequest) -> None:
        """
        Check the amount and currency against this gateway's limits.

        Raises:
            PaymentProcessingError: If the amount or currency is not acceptable
        """
        if request.amount is None or request.amount <= 0:
            raise PaymentProcessingError("Payment amount must be positive", gateway_name=self.name)

        maximum = Decimal(str(self.settings.max_amount_per_transaction))
        if request.amount > maximum:
            raise PaymentProcessingError(
                f"Payment amount exceeds maximum allowed: {maximum}",
                gateway_name=self.name,
            )

        if not request.currency or request.currency.upper() not in self.supported_currencies:
            raise PaymentProcessingError(
                f"Unsupported currency for {self.gateway_type.display_name}: {request.currency}",
                gateway_name=self.name,
            )

    @contextmanager
    def observe(self, operation: str) -> Iterator[None]:
        """Record call count and duration for a gateway operation."""
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except PaymentProcessingError as e:
            status = "error"
            metrics.record_gateway_error(self.name, e.error_type.value)
            raise
        except Exception:
            status = "error"
            metrics.record_gateway_error(self.name, GatewayErrorType.TRANSIENT.value)
            raise
        finally:
            metrics.record_gateway_call(self.name, operation, status, time.perf_counter() - start)

    # Webhooks

    def register_webhook_handler(self, event_type: str, handler: WebhookEventHandler) -> None:
        """
        Register a handler for a provider event type.

        Args:
            event_type: Provider event type (e.g. 'payment_intent.succeeded')
            handler: Sync or async callable receiving the decoded event
        """
        self._webhook_handlers[event_type] = handler
        logger.info("webhook_handler_registered", gateway=self.name, event_type=event_type)

    async def dispatch_webhook_event(self, event_type: str, event: Dict[str, Any]) -> bool:
        """Run the handler for an event type; False when none is registered."""
        handler = self._webhook_handlers.get(event_type)
        if handler is None:
            logger.info("unhandled_webhook_event", gateway=self.name, event_type=event_type)
            return False

        result = handler(event)
        if asyncio.iscoroutine(result):
            await result
        return True

    # Operations

    @abstractmethod
    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        """Charge a customer."""

    @abstractmethod
    async def refund_payment(self, request: RefundRequest) -> RefundResponse:
        """Refund part or all of a payment."""

    @abstractmethod
    async def capture_payment(
        self, transaction_id: str, amount: Optional[Decimal] = None
    ) -> CaptureResponse:
        """Capture an authorised payment."""

    @abstractmethod
    def verify_webhook_signature(self, payload: WebhookPayload, signature: Optional[str]) -> bool:
        """Check that a webhook body was signed by the provider."""

    @abstractmethod
    async def process_webhook(self, payload: WebhookPayload) -> WebhookResponse:
        """Handle a verified webhook body."""

    @abstractmethod
    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        """Fetch the current status of a payment."""

    @abstractmethod
    async def create_payment_token(self, card: CardDetails) -> TokenResponse:
        """Tokenise card details."""

    @abstractmethod
    async def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        """Send funds to a vendor."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the provider API is reachable."""
