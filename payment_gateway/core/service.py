"""
Payment orchestration.

Validates requests, routes them to the regional gateway, runs gateway calls
through the resilience executor and publishes an event for every completed
operation.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

import structlog

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import (
    GatewayUnavailableError,
    PaymentValidationError,
    WebhookError,
)
from payment_gateway.core.router import RegionalPaymentRouter
from payment_gateway.core.sanitizer import InputSanitizer
from payment_gateway.core.validator import PaymentRequestValidator
from payment_gateway.domain.models import (
    CaptureResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentState,
    PaymentStatus,
    PayoutRequest,
    PayoutResponse,
    QueuedPaymentFailure,
    QueueDrainResult,
    RefundRequest,
    RefundResponse,
    SupportedMethods,
    WebhookResponse,
)
from payment_gateway.events.bus import (
    PAYMENT_CAPTURED,
    PAYMENT_PROCESSED,
    PAYMENT_REFUNDED,
    PAYOUT_INITIATED,
    WEBHOOK_RECEIVED,
    EventBus,
    PaymentEvent,
)
from payment_gateway.events.kafka import KafkaEventPublisher
from payment_gateway.gateways.base import PaymentGateway, WebhookPayload
from payment_gateway.gateways.factory import PaymentGatewayFactory, create_default_factory
from payment_gateway.monitoring.metrics import metrics
from payment_gateway.monitoring.tracing import current_trace_id, traced
from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry
from payment_gateway.resilience.executor import ResilienceExecutor
from payment_gateway.resilience.fallback import FallbackStrategies

logger = structlog.get_logger(__name__)


def breaker_name(gateway: PaymentGateway) -> str:
    """Circuit breaker and bulkhead name for a gateway, e.g. stripe-gateway."""
    return f"{gateway.name.lower()}-gateway"


class PaymentService:
    """
    Entry point for payment operations.

    Features:
    - Request validation and sanitisation
    - Regional routing (Paystack for Africa, Stripe elsewhere)
    - Circuit breaker, retry, bulkhead and time limit per gateway
    - Queueing fallback for payments during gateway outages
    - Payment events on the event bus
    """

    def __init__(
        self,
        settings: Settings,
        factory: PaymentGatewayFactory,
        executor: Optional[ResilienceExecutor] = None,
        fallbacks: Optional[FallbackStrategies] = None,
        event_bus: Optional[EventBus] = None,
        validator: Optional[PaymentRequestValidator] = None,
    ):
        self.settings = settings
        self.factory = factory
        self.router = RegionalPaymentRouter(factory)
        self.executor = executor or ResilienceExecutor.from_settings(settings)
        self.fallbacks = fallbacks or FallbackStrategies()
        self.event_bus = event_bus or EventBus(circuit_breakers=self.circuit_breakers)
        self.sanitizer = InputSanitizer()
        self.validator = validator or PaymentRequestValidator(self.sanitizer)

    @classmethod
    def create(
        cls, settings: Settings, factory: Optional[PaymentGatewayFactory] = None
    ) -> "PaymentService":
        """Wire a service from settings, with a Kafka sink when one is configured."""
        circuit_breakers = CircuitBreakerRegistry()
        sink = None
        if settings.kafka_enabled:
            sink = KafkaEventPublisher(
                settings.kafka_bootstrap_servers, settings.kafka_payment_events_topic
            )
        return cls(
            settings=settings,
            factory=factory or create_default_factory(settings),
            executor=ResilienceExecutor.from_settings(settings, circuit_breakers),
            event_bus=EventBus(sink=sink, circuit_breakers=circuit_breakers),
        )

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        return self.executor.circuit_breakers

    async def _publish(self, event_type: str, key: Optional[str], payload: Dict[str, Any]) -> None:
        event = PaymentEvent(
            event_type=event_type,
            payload=payload,
            key=key,
            trace_id=current_trace_id(),
        )
        await self.event_bus.publish(event)

    def _resolve_gateway(self, transaction_id: str, gateway: Optional[str]) -> PaymentGateway:
        if gateway:
            return self.factory.registered(gateway)
        return self.router.gateway_for_transaction(transaction_id)

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        """
        Validate, route and process a payment.

        Args:
            request: Payment request

        Returns:
            PaymentResponse: Gateway response, or a PENDING response when the
            payment was queued because the gateway is down

        Raises:
            PaymentValidationError: If the request is invalid
            PaymentProcessingError: If the gateway rejects the payment
        """
        return await self._submit(request)

    async def _submit(
        self, request: PaymentRequest, queued_id: Optional[str] = None
    ) -> PaymentResponse:
        validation = self.validator.validate_payment_request(request)
        if not validation.valid:
            raise PaymentValidationError("Payment request validation failed", validation.errors)

        if request.metadata:
            request = request.model_copy(
                update={"metadata": self.sanitizer.sanitize_metadata(request.metadata)}
            )

        with traced(
            "payment.process",
            order_id=request.order_id,
            country_code=request.country_code,
            currency=request.currency,
            amount=request.amount,
        ) as span:
            try:
                gateway = await self.router.select_gateway(request.country_code)
            except GatewayUnavailableError as e:
                gateway_name = self.router.get_gateway_name(request.country_code)
                response = self.fallbacks.payment_fallback(request, e, queued_id)
            else:
                gateway_name = gateway.name
                response = await self.executor.execute(
                    breaker_name(gateway),
                    lambda: gateway.process_payment(request),
                    fallback=lambda error: self.fallbacks.payment_fallback(
                        request, error, queued_id
                    ),
                )

            if response.gateway is None:
                response = response.model_copy(update={"gateway": gateway_name})
            span.set_attribute("payment.gateway", gateway_name)
            span.set_attribute("payment.status", response.status)

        logger.info(
            "payment_processed",
            order_id=request.order_id,
            transaction_id=response.transaction_id,
            gateway=gateway_name,
            status=response.status,
        )

        await self._publish(
            PAYMENT_PROCESSED,
            request.order_id or response.transaction_id,
            {
                "transaction_id": response.transaction_id,
                "order_id": request.order_id,
                "customer_id": request.customer_id,
                "status": response.status,
                "amount": str(response.amount),
                "currency": response.currency,
                "gateway": gateway_name,
            },
        )
        return response

    async def process_queued_payments(self) -> QueueDrainResult:
        """
        Re-submit payments queued by the fallback, oldest first.

        Each payment is processed on its own: a decline or error for one of
        them is recorded as FAILED under its queued id and the rest still go
        through. Payments that hit another outage are queued again under the
        same id.
        """
        result = QueueDrainResult()

        for entry in self.fallbacks.drain_payment_queue():
            try:
                response = await self._submit(entry.request, queued_id=entry.transaction_id)
            except Exception as e:
                logger.error(
                    "queued_payment_failed",
                    transaction_id=entry.transaction_id,
                    order_id=entry.request.order_id,
                    attempts=entry.attempts,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self.fallbacks.resolve_queued_payment(entry.transaction_id, PaymentState.FAILED)
                metrics.record_queued_payment("failed")
                result.failed.append(
                    QueuedPaymentFailure(
                        transaction_id=entry.transaction_id,
                        order_id=entry.request.order_id,
                        error=str(e),
                    )
                )
                continue

            if response.transaction_id == entry.transaction_id:
                metrics.record_queued_payment("requeued")
            else:
                self.fallbacks.resolve_queued_payment(
                    entry.transaction_id,
                    response.status,
                    gateway=response.gateway,
                    gateway_transaction_id=response.transaction_id,
                )
                metrics.record_queued_payment("processed")
            result.processed.append(response)

        result.remaining = self.fallbacks.queued_payments()
        logger.info(
            "payment_queue_processed",
            processed=len(result.processed),
            failed=len(result.failed),
            remaining=result.remaining,
        )
        return result

    async def get_payment_status(
        self, transaction_id: str, gateway: Optional[str] = None
    ) -> PaymentStatus:
        """
        Fetch the status of a payment.

        Ids handed out by the queueing fallback report PENDING while queued,
        then the status of the gateway payment they were processed as.

        Args:
            transaction_id: Gateway transaction id, or a queued payment id
            gateway: Gateway name; inferred from the id prefix when omitted
        """
        if gateway is None:
            queued = self.fallbacks.find_queued_payment(transaction_id)
            if queued is not None:
                if queued.gateway_transaction_id:
                    status = await self.get_payment_status(
                        queued.gateway_transaction_id, queued.gateway
                    )
                    if status.customer_id is None:
                        status = status.model_copy(
                            update={"customer_id": queued.request.customer_id}
                        )
                    return status
                return queued.to_status()

        target = self._resolve_gateway(transaction_id, gateway)
        with traced("payment.status", transaction_id=transaction_id, gateway=target.name):
            return await self.executor.execute(
                breaker_name(target), lambda: target.get_payment_status(transaction_id)
            )

    async def payment_owner(
        self, transaction_id: str, gateway: Optional[str] = None
    ) -> Optional[str]:
        """Customer id the payment was made for, when the gateway recorded one."""
        status = await self.get_payment_status(transaction_id, gateway)
        return status.customer_id

    async def refund_payment(self, request: RefundRequest) -> RefundResponse:
        target = self._resolve_gateway(request.transaction_id, None)
        with traced("payment.refund", transaction_id=request.transaction_id, gateway=target.name):
            response = await self.executor.execute(
                breaker_name(target), lambda: target.refund_payment(request)
            )

        logger.info(
            "payment_refunded",
            transaction_id=request.transaction_id,
            refund_id=response.refund_id,
            gateway=target.name,
        )
        await self._publish(
            PAYMENT_REFUNDED,
            request.transaction_id,
            {
                "refund_id": response.refund_id,
                "transaction_id": request.transaction_id,
                "amount": str(request.amount),
                "currency": request.currency,
                "reason": self.sanitizer.sanitize_for_logging(request.reason),
                "gateway": target.name,
            },
        )
        return response

    async def capture_payment(
        self,
        transaction_id: str,
        amount: Optional[Union[Decimal, float]] = None,
        gateway: Optional[str] = None,
    ) -> CaptureResponse:
        """Capture an authorised payment, in full unless an amount is given."""
        target = self._resolve_gateway(transaction_id, gateway)
        capture_amount = Decimal(str(amount)) if amount is not None else None

        with traced("payment.capture", transaction_id=transaction_id, gateway=target.name):
            response = await self.executor.execute(
                breaker_name(target),
                lambda: target.capture_payment(transaction_id, capture_amount),
            )

        await self._publish(
            PAYMENT_CAPTURED,
            transaction_id,
            {
                "transaction_id": transaction_id,
                "status": response.status,
                "amount": str(response.amount),
                "currency": response.currency,
                "gateway": target.name,
            },
        )
        return response

    async def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        gateway = await self.router.route_payout(request.vendor_id, request.country_code)

        with traced("payout.initiate", vendor_id=request.vendor_id, gateway=gateway.name):
            response = await self.executor.execute(
                breaker_name(gateway), lambda: gateway.initiate_payout(request)
            )

        logger.info(
            "payout_initiated",
            vendor_id=request.vendor_id,
            payout_id=response.payout_id,
            gateway=gateway.name,
        )
        await self._publish(
            PAYOUT_INITIATED,
            request.vendor_id,
            {
                "payout_id": response.payout_id,
                "vendor_id": request.vendor_id,
                "amount": str(request.amount),
                "currency": request.currency,
                "gateway": gateway.name,
            },
        )
        return response

    async def handle_webhook(
        self, gateway: str, payload: WebhookPayload, signature: Optional[str]
    ) -> WebhookResponse:
        """
        Verify and process a provider webhook.

        Raises:
            UnsupportedGatewayError: If the gateway name is unknown
            WebhookError: If signature validation is enabled and fails
        """
        target = self.factory.registered(gateway)

        if self.settings.webhook_signature_validation and not target.verify_webhook_signature(
            payload, signature
        ):
            metrics.record_webhook_event(target.name, "unknown", "rejected")
            logger.warning("webhook_signature_rejected", gateway=target.name)
            raise WebhookError(f"Invalid webhook signature for {target.name}")

        try:
            response = await target.process_webhook(payload)
        except Exception:
            metrics.record_webhook_event(target.name, "unknown", "failed")
            raise

        metrics.record_webhook_event(target.name, response.event_type, "processed")
        await self._publish(
            WEBHOOK_RECEIVED,
            response.event_id,
            {
                "gateway": target.name,
                "event_id": response.event_id,
                "event_type": response.event_type,
            },
        )
        return response

    async def gateway_status(self) -> Dict[str, bool]:
        availability = await self.factory.get_available_gateways()
        return {gateway_type.name: available for gateway_type, available in availability.items()}

    def supported_methods(self, country_code: Optional[str]) -> SupportedMethods:
        """Payment methods and currencies offered to customers in a country."""
        return SupportedMethods(
            gateway=self.router.get_gateway_name(country_code),
            payment_methods=sorted(self.router.get_supported_payment_methods(country_code)),
            currencies=sorted(self.router.get_supported_currencies(country_code)),
        )

    async def close(self) -> None:
        await self.factory.close()
        sink = self.event_bus.sink
        if sink is not None and hasattr(sink, "close"):
            sink.close()
