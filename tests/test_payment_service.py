"""
Integration tests for the payment service: validation, routing, resilience,
fallback and events working together over stub gateways.
"""
import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from payment_gateway.core.exceptions import (
    GatewayErrorType,
    PaymentProcessingError,
    PaymentValidationError,
    UnsupportedGatewayError,
    WebhookError,
)
from payment_gateway.core.service import PaymentService
from payment_gateway.domain.models import PaymentState, PayoutRequest, RefundRequest
from payment_gateway.events.bus import (
    PAYMENT_CAPTURED,
    PAYMENT_PROCESSED,
    PAYMENT_REFUNDED,
    PAYOUT_INITIATED,
    WEBHOOK_RECEIVED,
    WILDCARD,
)
from payment_gateway.events.kafka import KafkaEventPublisher
from payment_gateway.resilience.circuit_breaker import CircuitState

from tests.conftest import VALID_SIGNATURE


def transient() -> PaymentProcessingError:
    return PaymentProcessingError("gateway timeout", error_type=GatewayErrorType.TRANSIENT)


@pytest.fixture
def published(event_bus):
    events = []
    event_bus.subscribe(WILDCARD, events.append)
    return events


class TestProcessPayment:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_african_payment_goes_to_paystack(
        self, payment_service, nigerian_payment, paystack_stub, stripe_stub, published
    ) -> None:
        response = await payment_service.process_payment(nigerian_payment)

        assert response.gateway == "PAYSTACK"
        assert response.transaction_id == "PAYSTACK_order-ng-1"
        assert paystack_stub.calls == ["process_payment"]
        assert stripe_stub.calls == []

        assert [e.event_type for e in published] == [PAYMENT_PROCESSED]
        assert published[0].key == "order-ng-1"
        assert published[0].payload["gateway"] == "PAYSTACK"
        assert published[0].payload["amount"] == "5000.00"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_other_payment_goes_to_stripe(self, payment_service, us_payment, stripe_stub) -> None:
        response = await payment_service.process_payment(us_payment)

        assert response.gateway == "STRIPE"
        assert stripe_stub.calls == ["process_payment"]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_request_rejected_before_routing(
        self, payment_service, us_payment, stripe_stub, published
    ) -> None:
        request = us_payment.model_copy(update={"currency": "usd", "customer_email": None})

        with pytest.raises(PaymentValidationError) as exc_info:
            await payment_service.process_payment(request)

        assert exc_info.value.errors == [
            "Currency must be uppercase ISO 4217 format",
            "Customer email is required",
        ]
        assert stripe_stub.calls == []
        assert published == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, payment_service, us_payment, stripe_stub) -> None:
        stripe_stub.errors = [transient(), transient()]

        response = await payment_service.process_payment(us_payment)

        assert response.status == PaymentState.COMPLETED
        assert stripe_stub.calls == ["process_payment"] * 3

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_exhausted_retries_queue_the_payment(
        self, payment_service, us_payment, stripe_stub, published
    ) -> None:
        stripe_stub.errors = [transient() for _ in range(3)]

        response = await payment_service.process_payment(us_payment)

        assert response.status == PaymentState.PENDING
        assert response.metadata == {"fallback": "true"}
        assert response.gateway == "STRIPE"
        assert payment_service.fallbacks.queued_payments() == 1
        assert published[0].payload["status"] == PaymentState.PENDING

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_declines_reach_the_caller(self, payment_service, us_payment, stripe_stub) -> None:
        stripe_stub.errors = [PaymentProcessingError("Your card was declined")]

        with pytest.raises(PaymentProcessingError, match="declined"):
            await payment_service.process_payment(us_payment)

        assert stripe_stub.calls == ["process_payment"]
        assert payment_service.fallbacks.queued_payments() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unavailable_gateway_queues_the_payment(
        self, payment_service, nigerian_payment, paystack_stub
    ) -> None:
        paystack_stub.available = False

        response = await payment_service.process_payment(nigerian_payment)

        assert response.status == PaymentState.PENDING
        assert response.gateway == "PAYSTACK"
        assert paystack_stub.calls == []
        assert payment_service.fallbacks.queued_payments() == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_open_circuit_queues_without_calling_gateway(
        self, payment_service, us_payment, stripe_stub
    ) -> None:
        payment_service.circuit_breakers.circuit_breaker("stripe-gateway").transition_to_forced_open()

        response = await payment_service.process_payment(us_payment)

        assert response.status == PaymentState.PENDING
        assert stripe_stub.calls == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_repeated_outages_open_the_circuit(
        self, payment_service, us_payment, stripe_stub
    ) -> None:
        # Ten failed attempts reach the minimum number of calls for payment breakers
        stripe_stub.errors = [transient() for _ in range(12)]

        for _ in range(4):
            await payment_service.process_payment(us_payment)

        breaker = payment_service.circuit_breakers.find("stripe-gateway")
        assert breaker.state == CircuitState.OPEN
        assert len(stripe_stub.calls) == 10

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_queued_payments_are_resubmitted(
        self, payment_service, nigerian_payment, paystack_stub
    ) -> None:
        paystack_stub.available = False
        queued = await payment_service.process_payment(nigerian_payment)

        paystack_stub.available = True
        result = await payment_service.process_queued_payments()

        assert [r.status for r in result.processed] == [PaymentState.COMPLETED]
        assert result.failed == []
        assert result.remaining == 0
        assert payment_service.fallbacks.queued_payments() == 0

        status = await payment_service.get_payment_status(queued.transaction_id)
        assert status.transaction_id == "PAYSTACK_order-ng-1"
        assert status.gateway == "PAYSTACK"
        assert status.customer_id == "cust-1"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_queued_payment_reports_pending(
        self, payment_service, nigerian_payment, paystack_stub
    ) -> None:
        paystack_stub.available = False
        queued = await payment_service.process_payment(nigerian_payment)

        status = await payment_service.get_payment_status(queued.transaction_id)

        assert status.transaction_id == queued.transaction_id
        assert status.status == PaymentState.PENDING
        assert paystack_stub.calls == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_one_failed_queued_payment_does_not_stop_the_drain(
        self, payment_service, nigerian_payment, paystack_stub
    ) -> None:
        paystack_stub.available = False
        queued = [
            await payment_service.process_payment(
                nigerian_payment.model_copy(update={"order_id": f"order-ng-{i}"})
            )
            for i in range(3)
        ]

        paystack_stub.available = True
        paystack_stub.errors = [
            PaymentProcessingError("Your card was declined", error_code="card_declined")
        ]
        result = await payment_service.process_queued_payments()

        assert [f.transaction_id for f in result.failed] == [queued[0].transaction_id]
        assert "declined" in result.failed[0].error
        assert [r.transaction_id for r in result.processed] == [
            "PAYSTACK_order-ng-1",
            "PAYSTACK_order-ng-2",
        ]
        assert payment_service.fallbacks.queued_payments() == 0

        failed = await payment_service.get_payment_status(queued[0].transaction_id)
        assert failed.status == PaymentState.FAILED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payments_stay_queued_while_the_outage_lasts(
        self, payment_service, nigerian_payment, paystack_stub
    ) -> None:
        paystack_stub.available = False
        queued = await payment_service.process_payment(nigerian_payment)

        result = await payment_service.process_queued_payments()

        assert [r.transaction_id for r in result.processed] == [queued.transaction_id]
        assert result.remaining == 1
        status = await payment_service.get_payment_status(queued.transaction_id)
        assert status.status == PaymentState.PENDING

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metadata_is_sanitized(self, payment_service, us_payment, stripe_stub) -> None:
        captured = []
        original = stripe_stub.process_payment

        async def spy(request):
            captured.append(request)
            return await original(request)

        stripe_stub.process_payment = spy
        await payment_service.process_payment(
            us_payment.model_copy(update={"metadata": {" channel ": "web\x01"}})
        )

        assert captured[0].metadata == {"channel": "web"}


class TestOtherOperations:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_inferred_from_transaction_id(
        self, payment_service, stripe_stub, paystack_stub
    ) -> None:
        status = await payment_service.get_payment_status("PAYSTACK_order_1")

        assert status.gateway == "PAYSTACK"
        assert paystack_stub.calls == ["get_payment_status"]
        assert stripe_stub.calls == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_with_explicit_gateway(self, payment_service, stripe_stub) -> None:
        status = await payment_service.get_payment_status("txn_123", gateway="stripe")

        assert status.gateway == "STRIPE"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_for_unknown_transaction(self, payment_service) -> None:
        with pytest.raises(PaymentProcessingError, match="Unable to determine gateway"):
            await payment_service.get_payment_status("txn_123")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_refund_publishes_event(self, payment_service, stripe_stub, published) -> None:
        request = RefundRequest(
            transaction_id="pi_123", amount=Decimal("5.00"), currency="USD", reason="Damaged\nitem"
        )

        response = await payment_service.refund_payment(request)

        assert response.refund_id == "re_1"
        assert stripe_stub.calls == ["refund_payment"]
        assert published[0].event_type == PAYMENT_REFUNDED
        assert published[0].payload["reason"] == "Damaged\\nitem"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture(self, payment_service, stripe_stub, published) -> None:
        response = await payment_service.capture_payment("pi_123", 20.5)

        assert response.amount == Decimal("20.5")
        assert published[0].event_type == PAYMENT_CAPTURED

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_errors_are_not_swallowed(self, payment_service, paystack_stub) -> None:
        paystack_stub.errors = [PaymentProcessingError("Payment not in capturable state: PENDING")]

        with pytest.raises(PaymentProcessingError, match="capturable"):
            await payment_service.capture_payment("PAYSTACK_ref")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payout_routing(self, payment_service, stripe_stub, paystack_stub, published) -> None:
        await payment_service.initiate_payout(
            PayoutRequest(vendor_id="vendor-1", amount=Decimal("10"), currency="USD")
        )
        await payment_service.initiate_payout(
            PayoutRequest(vendor_id="vendor-2", amount=Decimal("10"), currency="NGN", country_code="NG")
        )

        assert stripe_stub.calls == ["initiate_payout"]
        assert paystack_stub.calls == ["initiate_payout"]
        assert [e.event_type for e in published] == [PAYOUT_INITIATED, PAYOUT_INITIATED]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_gateway_status(self, payment_service, paystack_stub) -> None:
        paystack_stub.available = False

        assert await payment_service.gateway_status() == {"STRIPE": True, "PAYSTACK": False}

    @pytest.mark.integration
    def test_supported_methods(self, payment_service) -> None:
        methods = payment_service.supported_methods("gh")

        assert methods.gateway == "PAYSTACK"
        assert "mobile_money" in methods.payment_methods
        assert methods.currencies == sorted(methods.currencies)


class TestWebhooks:

    PAYLOAD = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded"}).encode("utf-8")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_valid_webhook(self, payment_service, stripe_stub, published) -> None:
        response = await payment_service.handle_webhook("stripe", self.PAYLOAD, VALID_SIGNATURE)

        assert response.event_id == "evt_1"
        assert stripe_stub.calls == ["process_webhook"]
        assert published[0].event_type == WEBHOOK_RECEIVED
        assert published[0].payload["event_type"] == "payment_intent.succeeded"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_signature(self, payment_service, stripe_stub, published) -> None:
        with pytest.raises(WebhookError, match="Invalid webhook signature"):
            await payment_service.handle_webhook("stripe", self.PAYLOAD, "forged")

        assert stripe_stub.calls == []
        assert published == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signature_validation_can_be_disabled(
        self, payment_service, test_settings, stripe_stub
    ) -> None:
        payment_service.settings = test_settings.model_copy(
            update={"webhook_signature_validation": False}
        )

        response = await payment_service.handle_webhook("stripe", self.PAYLOAD, None)

        assert response.processed

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_gateway(self, payment_service) -> None:
        with pytest.raises(UnsupportedGatewayError):
            await payment_service.handle_webhook("venmo", self.PAYLOAD, VALID_SIGNATURE)


class TestCreate:

    @pytest.mark.unit
    def test_create_without_kafka(self, test_settings, gateway_factory) -> None:
        service = PaymentService.create(test_settings, gateway_factory)

        assert service.event_bus.sink is None
        assert service.event_bus.circuit_breakers is service.circuit_breakers
        assert service.executor.default_timeout == 5.0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_with_kafka(self, test_settings, gateway_factory, monkeypatch) -> None:
        producer = MagicMock()
        producer.flush.return_value = 0
        monkeypatch.setattr("payment_gateway.events.kafka.Producer", lambda config: producer)
        settings = test_settings.model_copy(update={"kafka_bootstrap_servers": "localhost:9092"})

        service = PaymentService.create(settings, gateway_factory)

        assert isinstance(service.event_bus.sink, KafkaEventPublisher)
        await service.close()
        producer.flush.assert_called_once()
