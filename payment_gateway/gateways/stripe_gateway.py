"""
Stripe adapter for Europe and the rest of the world.

Implements:
- PaymentIntent creation with idempotency keys derived from the order id
- Refund, capture, status, payout and (test mode) card tokenisation
- Webhook signature verification via stripe.Webhook
- Classification of Stripe SDK errors for retry logic
"""
import asyncio
import functools
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import stripe
import structlog

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import (
    GatewayErrorType,
    PaymentProcessingError,
    UnsupportedOperationError,
)
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
from payment_gateway.domain.money import from_minor_units, to_minor_units
from payment_gateway.gateways.base import PaymentGateway, WebhookPayload

logger = structlog.get_logger(__name__)

STRIPE_STATUS_MAP = {
    "succeeded": PaymentState.COMPLETED,
    "processing": PaymentState.PROCESSING,
    "requires_payment_method": PaymentState.PENDING,
    "requires_confirmation": PaymentState.PENDING,
    "requires_action": PaymentState.REQUIRES_ACTION,
    "canceled": PaymentState.CANCELLED,
}


def map_stripe_status(status: Optional[str]) -> str:
    return STRIPE_STATUS_MAP.get(status or "", PaymentState.FAILED)


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class StripeGateway(PaymentGateway):
    """
    Stripe payment gateway.

    The Stripe SDK is blocking, so every API call runs on the loop's default
    executor. The event loop stays free and a time limit around an async
    method can actually cancel the wait.
    """

    gateway_type = GatewayType.STRIPE

    supported_payment_methods = frozenset(
        {
            "card",
            "sepa_debit",
            "ideal",
            "bancontact",
            "giropay",
            "sofort",
            "klarna",
            "afterpay_clearpay",
            "alipay",
            "wechat_pay",
        }
    )

    supported_currencies = frozenset(
        {
            "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF", "CNY", "SEK", "NOK",
            "DKK", "PLN", "CZK", "HUF", "RON", "BGN", "HRK", "RUB", "TRY", "INR",
            "IDR", "ILS", "KRW", "MXN", "MYR", "NZD", "PHP", "SGD", "THB", "ZAR",
            "AED", "SAR", "QAR", "KWD", "BHD", "OMR",
        }
    )

    def __init__(self, settings: Settings):
        """Initialize Stripe gateway and its default webhook handlers."""
        super().__init__(settings)
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version

        self.register_webhook_handler("payment_intent.succeeded", self._on_payment_succeeded)
        self.register_webhook_handler("payment_intent.payment_failed", self._on_payment_failed)
        self.register_webhook_handler("charge.refunded", self._on_refund_completed)
        self.register_webhook_handler("payout.paid", self._on_payout_completed)

        logger.info(
            "stripe_gateway_initialized",
            api_version=settings.stripe_api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    async def _call(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking SDK call in the default executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    @staticmethod
    def classify_error(error: Exception) -> GatewayErrorType:
        """
        Classify Stripe error for retry logic.

        Args:
            error: Stripe error

        Returns:
            GatewayErrorType: Error classification
        """
        if isinstance(error, stripe.RateLimitError):
            return GatewayErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return GatewayErrorType.TRANSIENT
        elif isinstance(error, (stripe.CardError, stripe.InvalidRequestError)):
            return GatewayErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return GatewayErrorType.TRANSIENT

    def _raise_stripe_error(self, error: stripe.StripeError, operation: str) -> None:
        """
        Log and re-raise a Stripe error as a classified PaymentProcessingError.

        Raises:
            PaymentProcessingError: Always
        """
        error_type = self.classify_error(error)
        error_code = getattr(error, "code", None)

        logger.error(
            "stripe_api_error",
            operation=operation,
            error_type=error_type.value,
            error_code=error_code,
            error_message=str(error),
        )

        raise PaymentProcessingError(
            f"Stripe {operation} failed: {error}",
            error_type=error_type,
            error_code=error_code,
            gateway_name=self.name,
            original_error=error,
        ) from error

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        """
        Create a PaymentIntent for the request.

        Returns:
            PaymentResponse: Mapped status with the client secret for Stripe.js
        """
        self.validate_payment_request(request)

        metadata: Dict[str, str] = dict(request.metadata or {})
        metadata.update(
            {
                key: value
                for key, value in (
                    ("order_id", request.order_id),
                    ("customer_id", request.customer_id),
                )
                if value
            }
        )
        metadata["region"] = "EUROPE_REST_OF_WORLD"

        params: Dict[str, Any] = {
            "amount": to_minor_units(request.amount, request.currency),
            "currency": request.currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if request.description:
            params["description"] = request.description
        if request.customer_email:
            params["receipt_email"] = request.customer_email
        if request.setup_future_usage:
            params["setup_future_usage"] = "off_session"
        if request.order_id:
            params["idempotency_key"] = f"payment-{request.order_id}"

        logger.info(
            "creating_payment_intent",
            order_id=request.order_id,
            amount_minor=params["amount"],
            currency=params["currency"],
        )

        with self.observe("process_payment"):
            try:
                intent = await self._call(stripe.PaymentIntent.create, **params)
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "payment")

        logger.info("payment_intent_created", payment_intent_id=intent.id, status=intent.status)

        return PaymentResponse(
            transaction_id=intent.id,
            status=map_stripe_status(intent.status),
            amount=request.amount,
            currency=request.currency,
            gateway_response=intent.client_secret,
            message="Payment intent created successfully",
            payment_method=request.payment_method,
            gateway=self.name,
        )

    async def refund_payment(self, request: RefundRequest) -> RefundResponse:
        logger.info(
            "creating_refund",
            payment_intent_id=request.transaction_id,
            amount=str(request.amount),
        )

        with self.observe("refund_payment"):
            try:
                refund = await self._call(
                    stripe.Refund.create,
                    payment_intent=request.transaction_id,
                    amount=to_minor_units(request.amount, request.currency),
                    reason="requested_by_customer",
                    metadata={"refund_reason": request.reason},
                    idempotency_key=f"refund-{request.transaction_id}-{request.amount}",
                )
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "refund")

        logger.info("refund_created", refund_id=refund.id, status=refund.status)

        return RefundResponse(
            refund_id=refund.id,
            transaction_id=request.transaction_id,
            amount=request.amount,
            currency=request.currency,
            status=refund.status,
            message="Refund processed successfully",
            gateway=self.name,
        )

    async def capture_payment(
        self, transaction_id: str, amount: Optional[Decimal] = None
    ) -> CaptureResponse:
        """Capture an authorised PaymentIntent, in full unless an amount is given."""
        with self.observe("capture_payment"):
            try:
                intent = await self._call(stripe.PaymentIntent.retrieve, transaction_id)
                params: Dict[str, Any] = {}
                if amount is not None:
                    params["amount_to_capture"] = to_minor_units(amount, intent.currency)
                captured = await self._call(stripe.PaymentIntent.capture, transaction_id, **params)
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "capture")

        currency = captured.currency.upper()
        logger.info("payment_intent_captured", payment_intent_id=captured.id)

        return CaptureResponse(
            transaction_id=captured.id,
            amount=amount if amount is not None else from_minor_units(captured.amount, currency),
            currency=currency,
            status=map_stripe_status(captured.status),
            message="Payment captured successfully",
            gateway=self.name,
        )

    def verify_webhook_signature(self, payload: WebhookPayload, signature: Optional[str]) -> bool:
        """Verify a Stripe-Signature header against the webhook secret."""
        if not signature:
            return False
        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.settings.stripe_webhook_secret,
            )
            return True
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe_webhook_signature_invalid", error=str(e))
            return False
        except ValueError as e:
            logger.warning("stripe_webhook_payload_invalid", error=str(e))
            return False

    async def process_webhook(self, payload: WebhookPayload) -> WebhookResponse:
        """
        Dispatch a verified Stripe event to its handler.

        Unknown event types are logged and still acknowledged.

        Raises:
            PaymentProcessingError: If the payload is not a JSON event
        """
        try:
            event = json.loads(payload)
            event_type = event["type"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("stripe_webhook_processing_error", error=str(e))
            raise PaymentProcessingError(
                "Webhook processing failed", gateway_name=self.name, original_error=e
            ) from e

        await self.dispatch_webhook_event(event_type, event)

        return WebhookResponse(
            event_id=str(event.get("id")),
            event_type=event_type,
            processed=True,
            message="Webhook processed successfully",
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        with self.observe("get_payment_status"):
            try:
                intent = await self._call(stripe.PaymentIntent.retrieve, transaction_id)
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "status check")

        currency = intent.currency.upper()
        metadata = intent.metadata or {}
        return PaymentStatus(
            transaction_id=intent.id,
            status=map_stripe_status(intent.status),
            amount=from_minor_units(intent.amount, currency),
            currency=currency,
            last_updated=_from_timestamp(intent.created) or datetime.now(timezone.utc),
            gateway=self.name,
            customer_id=metadata.get("customer_id"),
        )

    async def create_payment_token(self, card: CardDetails) -> TokenResponse:
        """
        Tokenise a card server-side.

        Production tokenisation happens in the browser with Stripe.js; raw
        card numbers are only accepted with test keys.
        """
        if not self.settings.is_test_mode:
            raise UnsupportedOperationError(
                "Server-side card tokenization is only available in test mode",
                gateway_name=self.name,
            )

        with self.observe("create_payment_token"):
            try:
                token = await self._call(
                    stripe.Token.create,
                    card={
                        "number": card.card_number,
                        "exp_month": str(card.expiry_month),
                        "exp_year": str(card.expiry_year),
                        "cvc": card.cvv,
                    }
                )
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "tokenization")

        return TokenResponse(
            token=token.id,
            last_four_digits=token.card.last4,
            card_brand=token.card.brand,
            expiry_month=str(token.card.exp_month),
            expiry_year=str(token.card.exp_year),
        )

    async def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        metadata = {"vendor_id": request.vendor_id}
        if request.payout_type:
            metadata["payout_type"] = request.payout_type

        params: Dict[str, Any] = {
            "amount": to_minor_units(request.amount, request.currency),
            "currency": request.currency.lower(),
            "metadata": metadata,
        }
        if request.description:
            params["description"] = request.description

        with self.observe("initiate_payout"):
            try:
                payout = await self._call(stripe.Payout.create, **params)
            except stripe.StripeError as e:
                self._raise_stripe_error(e, "payout")

        logger.info("payout_created", payout_id=payout.id, vendor_id=request.vendor_id)

        return PayoutResponse(
            payout_id=payout.id,
            amount=request.amount,
            currency=request.currency,
            status=payout.status,
            estimated_arrival=_from_timestamp(payout.arrival_date),
            message="Payout initiated successfully",
            gateway=self.name,
        )

    async def is_available(self) -> bool:
        try:
            await self._call(stripe.Balance.retrieve)
            return True
        except Exception as e:
            logger.warning("stripe_availability_check_failed", error=str(e))
            return False

    # Default webhook handlers

    def _on_payment_succeeded(self, event: Dict[str, Any]) -> None:
        logger.info("stripe_payment_succeeded", event_id=event.get("id"))

    def _on_payment_failed(self, event: Dict[str, Any]) -> None:
        logger.warning("stripe_payment_failed", event_id=event.get("id"))

    def _on_refund_completed(self, event: Dict[str, Any]) -> None:
        logger.info("stripe_refund_completed", event_id=event.get("id"))

    def _on_payout_completed(self, event: Dict[str, Any]) -> None:
        logger.info("stripe_payout_completed", event_id=event.get("id"))
