"""
Unit tests for the Paystack gateway against a mocked HTTP transport.
"""
import hashlib
import hmac
import json
from decimal import Decimal
from typing import Any, Callable, Dict, List

import httpx
import pytest

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import (
    GatewayErrorType,
    PaymentProcessingError,
    UnsupportedOperationError,
)
from payment_gateway.domain.models import CardDetails, PaymentState, PayoutRequest, RefundRequest
from payment_gateway.gateways.paystack_gateway import (
    PaystackGateway,
    classify_status_code,
    generate_reference,
    map_paystack_status,
    payment_channels,
)


class PaystackAPI:
    """Records requests and answers them with a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)


def ok(data: Dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, json={"status": True, "message": "ok", "data": data})


def make_gateway(settings: Settings, api: PaystackAPI) -> PaystackGateway:
    client = httpx.AsyncClient(
        base_url=settings.paystack_base_url, transport=httpx.MockTransport(api)
    )
    return PaystackGateway(settings, client=client)


class TestHelpers:

    @pytest.mark.unit
    def test_status_mapping(self) -> None:
        assert map_paystack_status("success") == PaymentState.COMPLETED
        assert map_paystack_status("SUCCESS") == PaymentState.COMPLETED
        assert map_paystack_status("pending") == PaymentState.PENDING
        assert map_paystack_status("failed") == PaymentState.FAILED
        assert map_paystack_status("abandoned") == PaymentState.CANCELLED
        assert map_paystack_status("processing") == PaymentState.PROCESSING
        assert map_paystack_status("reversed") == PaymentState.UNKNOWN
        assert map_paystack_status(None) == PaymentState.UNKNOWN

    @pytest.mark.unit
    def test_payment_channels(self) -> None:
        assert payment_channels("mobile_money") == ["mobile_money"]
        assert payment_channels("BANK") == ["bank", "bank_transfer"]
        assert payment_channels("all") == ["card", "bank", "bank_transfer", "mobile_money", "ussd"]
        assert payment_channels("crypto") == ["card", "bank"]

    @pytest.mark.unit
    def test_reference_format(self) -> None:
        reference = generate_reference("order-1")

        assert reference.startswith("PAYSTACK_order-1_")
        assert reference.rsplit("_", 1)[1].isdigit()

    @pytest.mark.unit
    def test_classify_status_code(self) -> None:
        assert classify_status_code(429) == GatewayErrorType.RATE_LIMIT
        assert classify_status_code(502) == GatewayErrorType.TRANSIENT
        assert classify_status_code(400) == GatewayErrorType.PERMANENT


class TestProcessPayment:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_initializes_transaction(self, test_settings, nigerian_payment) -> None:
        api = PaystackAPI(
            lambda request: ok(
                {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "reference": json.loads(request.content)["reference"],
                }
            )
        )
        gateway = make_gateway(test_settings, api)

        response = await gateway.process_payment(nigerian_payment)

        request = api.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/transaction/initialize"
        assert request.headers["Authorization"] == "Bearer sk_test_paystack_fake_key"

        body = api.last_json
        assert body["amount"] == 500000
        assert body["currency"] == "NGN"
        assert body["email"] == "ada@example.com"
        assert body["channels"] == ["mobile_money"]
        assert body["metadata"]["region"] == "AFRICA"
        assert body["reference"].startswith("PAYSTACK_order-ng-1_")

        assert response.transaction_id == body["reference"]
        assert response.status == PaymentState.PENDING
        assert response.gateway_response == "https://checkout.paystack.com/abc"
        assert response.gateway == "PAYSTACK"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unsupported_currency(self, test_settings, us_payment) -> None:
        api = PaystackAPI(lambda request: ok({}))
        gateway = make_gateway(test_settings, api)

        with pytest.raises(PaymentProcessingError, match="Unsupported currency for Paystack"):
            await gateway.process_payment(us_payment.model_copy(update={"currency": "EUR"}))
        assert api.requests == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_api_error_is_permanent(self, test_settings, nigerian_payment) -> None:
        api = PaystackAPI(
            lambda request: httpx.Response(400, json={"status": False, "message": "Invalid key"})
        )
        gateway = make_gateway(test_settings, api)

        with pytest.raises(PaymentProcessingError, match="Invalid key") as exc_info:
            await gateway.process_payment(nigerian_payment)

        assert exc_info.value.error_type == GatewayErrorType.PERMANENT
        assert exc_info.value.error_code == "400"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, test_settings, nigerian_payment) -> None:
        api = PaystackAPI(lambda request: httpx.Response(503, text="Service Unavailable"))
        gateway = make_gateway(test_settings, api)

        with pytest.raises(PaymentProcessingError) as exc_info:
            await gateway.process_payment(nigerian_payment)

        assert exc_info.value.retryable

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_false_in_ok_response(self, test_settings, nigerian_payment) -> None:
        api = PaystackAPI(
            lambda request: httpx.Response(200, json={"status": False, "message": "Duplicate"})
        )
        gateway = make_gateway(test_settings, api)

        with pytest.raises(PaymentProcessingError, match="Duplicate") as exc_info:
            await gateway.process_payment(nigerian_payment)

        assert exc_info.value.error_type == GatewayErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, test_settings, nigerian_payment) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        gateway = make_gateway(test_settings, PaystackAPI(refuse))

        with pytest.raises(PaymentProcessingError) as exc_info:
            await gateway.process_payment(nigerian_payment)

        assert exc_info.value.error_type == GatewayErrorType.TRANSIENT


class TestOtherOperations:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund(self, test_settings) -> None:
        api = PaystackAPI(lambda request: ok({"id": 3018284, "status": "pending"}))
        gateway = make_gateway(test_settings, api)
        request = RefundRequest(
            transaction_id="PAYSTACK_order-ng-1_1", amount=Decimal("100.50"), currency="NGN",
            reason="Customer request",
        )

        response = await gateway.refund_payment(request)

        assert api.requests[0].url.path == "/refund"
        assert api.last_json == {
            "transaction": "PAYSTACK_order-ng-1_1",
            "amount": 10050,
            "currency": "NGN",
            "merchant_note": "Customer request",
        }
        assert response.refund_id == "3018284"
        assert response.status == "pending"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payment_status(self, test_settings) -> None:
        api = PaystackAPI(
            lambda request: ok(
                {
                    "status": "success",
                    "amount": 500000,
                    "currency": "NGN",
                    "channel": "card",
                    "metadata": {"customer_id": "cust-1"},
                }
            )
        )
        gateway = make_gateway(test_settings, api)

        status = await gateway.get_payment_status("PAYSTACK_ref_1")

        assert api.requests[0].method == "GET"
        assert api.requests[0].url.path == "/transaction/verify/PAYSTACK_ref_1"
        assert status.status == PaymentState.COMPLETED
        assert status.amount == Decimal("5000.00")
        assert status.payment_method == "card"
        assert status.customer_id == "cust-1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_capture_completed_payment(self, test_settings) -> None:
        api = PaystackAPI(lambda request: ok({"status": "success", "amount": 1000, "currency": "GHS"}))
        gateway = make_gateway(test_settings, api)

        response = await gateway.capture_payment("PAYSTACK_ref_1")

        assert response.status == PaymentState.CAPTURED
        assert response.message == "Payment already captured"
        assert response.amount == Decimal("10.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_capture_pending_payment_fails(self, test_settings) -> None:
        api = PaystackAPI(lambda request: ok({"status": "pending", "amount": 1000, "currency": "GHS"}))
        gateway = make_gateway(test_settings, api)

        with pytest.raises(PaymentProcessingError, match="not in capturable state: PENDING"):
            await gateway.capture_payment("PAYSTACK_ref_1")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_payout(self, test_settings) -> None:
        api = PaystackAPI(lambda request: ok({"transfer_code": "TRF_1", "status": "pending"}))
        gateway = make_gateway(test_settings, api)
        request = PayoutRequest(
            vendor_id="vendor-1",
            amount=Decimal("2500"),
            currency="NGN",
            description="Weekly settlement",
            account_number="0123456789",
            bank_code="058",
            account_name="Vendor Ltd",
        )

        response = await gateway.initiate_payout(request)

        body = api.last_json
        assert api.requests[0].url.path == "/transfer"
        assert body["amount"] == 250000
        assert body["recipient"]["bank_code"] == "058"
        assert response.payout_id == "TRF_1"
        assert response.gateway == "PAYSTACK"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_tokenization_not_supported(self, test_settings) -> None:
        gateway = make_gateway(test_settings, PaystackAPI(lambda request: ok({})))
        card = CardDetails(card_number="5060666666666666", expiry_month=1, expiry_year=2030, cvv="123")

        with pytest.raises(UnsupportedOperationError, match="Paystack.js"):
            await gateway.create_payment_token(card)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_availability(self, test_settings) -> None:
        up = make_gateway(test_settings, PaystackAPI(lambda request: ok([])))
        down = make_gateway(test_settings, PaystackAPI(lambda request: httpx.Response(500)))

        assert await up.is_available()
        assert not await down.is_available()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_close(self, test_settings) -> None:
        gateway = make_gateway(test_settings, PaystackAPI(lambda request: ok({})))

        await gateway.close()

        assert gateway.client.is_closed


class TestWebhooks:

    @staticmethod
    def sign(payload: bytes, secret: str) -> str:
        return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()

    @pytest.mark.unit
    def test_signature(self, test_settings) -> None:
        gateway = make_gateway(test_settings, PaystackAPI(lambda request: ok({})))
        payload = b'{"event":"charge.success","data":{"id":1}}'
        signature = self.sign(payload, test_settings.paystack_secret_key)

        assert gateway.compute_signature(payload) == signature
        assert gateway.verify_webhook_signature(payload, signature)
        assert gateway.verify_webhook_signature(payload.decode("utf-8"), signature.upper())
        assert not gateway.verify_webhook_signature(payload, self.sign(payload, "sk_other"))
        assert not gateway.verify_webhook_signature(payload, None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_webhook(self, test_settings) -> None:
        gateway = make_gateway(test_settings, PaystackAPI(lambda request: ok({})))
        received = []
        gateway.register_webhook_handler("charge.success", received.append)

        response = await gateway.process_webhook(
            json.dumps({"event": "charge.success", "data": {"id": 302961, "reference": "PAYSTACK_1"}})
        )

        assert response.event_id == "302961"
        assert response.event_type == "charge.success"
        assert received[0]["data"]["reference"] == "PAYSTACK_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_webhook_without_event(self, test_settings) -> None:
        gateway = make_gateway(test_settings, PaystackAPI(lambda request: ok({})))

        with pytest.raises(PaymentProcessingError, match="Webhook processing failed"):
            await gateway.process_webhook(json.dumps({"data": {}}))
