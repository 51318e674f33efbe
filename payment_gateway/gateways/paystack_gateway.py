"""
Paystack adapter for African markets.

Talks to the Paystack REST API over httpx with bearer authentication.
Supports mobile money, bank transfer and USSD in addition to cards, across
NGN, GHS, ZAR, KES, UGX and USD.
"""
import hashlib
import hmac
import json
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
import structlog

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import (
    GatewayErrorType,
    PaymentProcessingError,
    UnsupportedOperationError,
)
from payment_gateway.core.sanitizer import InputSanitizer
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
    utcnow,
)
from payment_gateway.domain.money import from_kobo, to_kobo
from payment_gateway.gateways.base import PaymentGateway, WebhookPayload

logger = structlog.get_logger(__name__)

INITIALIZE_TRANSACTION_PATH = "/transaction/initialize"
VERIFY_TRANSACTION_PATH = "/transaction/verify/"
REFUND_PATH = "/refund"
TRANSFER_PATH = "/transfer"
BANK_PATH = "/bank"

PAYSTACK_STATUS_MAP = {
    "success": PaymentState.COMPLETED,
    "pending": PaymentState.PENDING,
    "failed": PaymentState.FAILED,
    "abandoned": PaymentState.CANCELLED,
    "processing": PaymentState.PROCESSING,
}

PAYMENT_CHANNELS = {
    "card": ["card"],
    "bank": ["bank", "bank_transfer"],
    "mobile_money": ["mobile_money"],
    "ussd": ["ussd"],
    "all": ["card", "bank", "bank_transfer", "mobile_money", "ussd"],
}
DEFAULT_CHANNELS = ["card", "bank"]


def map_paystack_status(status: Optional[str]) -> str:
    return PAYSTACK_STATUS_MAP.get((status or "").lower(), PaymentState.UNKNOWN)


def payment_channels(payment_method: str) -> List[str]:
    """Paystack checkout channels to offer for a requested payment method."""
    return list(PAYMENT_CHANNELS.get(payment_method.lower(), DEFAULT_CHANNELS))


def generate_reference(order_id: Optional[str]) -> str:
    return f"PAYSTACK_{order_id}_{int(time.time() * 1000)}"


def classify_status_code(status_code: int) -> GatewayErrorType:
    if status_code == 429:
        return GatewayErrorType.RATE_LIMIT
    if status_code >= 500:
        return GatewayErrorType.TRANSIENT
    return GatewayErrorType.PERMANENT


class PaystackGateway(PaymentGateway):
    """Paystack payment gateway."""

    gateway_type = GatewayType.PAYSTACK

    supported_payment_methods = frozenset(
        {"card", "bank", "bank_transfer", "mobile_money", "ussd", "qr", "eft"}
    )
    supported_currencies = frozenset({"NGN", "GHS", "ZAR", "KES", "UGX", "USD"})

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize Paystack gateway.

        Args:
            settings: Application settings
            client: Optional preconfigured HTTP client (base URL must be set)
        """
        super().__init__(settings)
        self.client = client or httpx.AsyncClient(
            base_url=settings.paystack_base_url,
            timeout=settings.gateway_http_timeout,
        )
        self.sanitizer = InputSanitizer()

        self.register_webhook_handler("charge.success", self._on_charge_success)
        self.register_webhook_handler("charge.failed", self._on_charge_failed)
        self.register_webhook_handler("transfer.success", self._on_transfer_success)
        self.register_webhook_handler("transfer.failed", self._on_transfer_failed)
        self.register_webhook_handler("refund.processed", self._on_refund_processed)

        logger.info("paystack_gateway_initialized", base_url=settings.paystack_base_url)

    async def close(self) -> None:
        await self.client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call the Paystack API and return the `data` member of the response.

        Raises:
            PaymentProcessingError: Classified by HTTP status or transport failure
        """
        try:
            response = await self.client.request(method, path, json=payload, headers=self._headers())
        except httpx.TransportError as e:
            logger.error(
                "paystack_transport_error",
                operation=operation,
                error=self.sanitizer.sanitize_for_logging(str(e)),
            )
            raise PaymentProcessingError(
                f"Paystack {operation} failed: {e}",
                error_type=GatewayErrorType.TRANSIENT,
                gateway_name=self.name,
                original_error=e,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_error or body.get("status") is False:
            error_type = (
                classify_status_code(response.status_code)
                if response.is_error
                else GatewayErrorType.PERMANENT
            )
            message = body.get("message") or response.reason_phrase
            logger.error(
                "paystack_api_error",
                operation=operation,
                status_code=response.status_code,
                error_type=error_type.value,
                error_message=self.sanitizer.sanitize_for_logging(str(message)),
            )
            raise PaymentProcessingError(
                f"Paystack {operation} failed: {message}",
                error_type=error_type,
                error_code=str(response.status_code),
                gateway_name=self.name,
            )

        return body.get("data") or {}

    async def process_payment(self, request: PaymentRequest) -> PaymentResponse:
        """
        Initialize a transaction.

        Returns:
            PaymentResponse: PENDING, with the hosted checkout authorization URL
        """
        self.validate_payment_request(request)

        payload: Dict[str, Any] = {
            "amount": to_kobo(request.amount),
            "currency": request.currency,
            "email": request.customer_email,
            "reference": generate_reference(request.order_id),
            "metadata": {
                "order_id": request.order_id,
                "customer_id": request.customer_id,
                "region": "AFRICA",
                "description": request.description,
            },
        }
        if request.payment_method:
            payload["channels"] = payment_channels(request.payment_method)

        with self.observe("process_payment"):
            data = await self._request("POST", INITIALIZE_TRANSACTION_PATH, "payment", payload)

        reference = data.get("reference", payload["reference"])
        logger.info(
            "paystack_transaction_initialized",
            reference=self.sanitizer.sanitize_for_logging(reference),
        )

        return PaymentResponse(
            transaction_id=reference,
            status=PaymentState.PENDING,
            amount=request.amount,
            currency=request.currency,
            gateway_response=data.get("authorization_url"),
            message="Payment initialized successfully",
            payment_method=request.payment_method,
            gateway=self.name,
        )

    async def refund_payment(self, request: RefundRequest) -> RefundResponse:
        payload = {
            "transaction": request.transaction_id,
            "amount": to_kobo(request.amount),
            "currency": request.currency,
            "merchant_note": request.reason,
        }

        with self.observe("refund_payment"):
            data = await self._request("POST", REFUND_PATH, "refund", payload)

        refund_id = str(data.get("id"))
        logger.info("paystack_refund_initiated", refund_id=refund_id)

        return RefundResponse(
            refund_id=refund_id,
            transaction_id=request.transaction_id,
            amount=request.amount,
            currency=request.currency,
            status=data.get("status"),
            message="Refund initiated successfully",
            gateway=self.name,
        )

    async def capture_payment(
        self, transaction_id: str, amount: Optional[Decimal] = None
    ) -> CaptureResponse:
        """
        Paystack captures authorised payments automatically; this only
        confirms that the transaction completed.

        Raises:
            PaymentProcessingError: If the transaction is not complete
        """
        status = await self.get_payment_status(transaction_id)

        if status.status != PaymentState.COMPLETED:
            logger.warning(
                "paystack_capture_rejected",
                reference=self.sanitizer.sanitize_for_logging(transaction_id),
                status=status.status,
            )
            raise PaymentProcessingError(
                f"Payment not in capturable state: {status.status}",
                gateway_name=self.name,
            )

        return CaptureResponse(
            transaction_id=transaction_id,
            amount=status.amount,
            currency=status.currency,
            status=PaymentState.CAPTURED,
            message="Payment already captured",
            gateway=self.name,
        )

    def compute_signature(self, payload: WebhookPayload) -> str:
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        return hmac.new(
            self.settings.paystack_secret_key.encode("utf-8"), body, hashlib.sha512
        ).hexdigest()

    def verify_webhook_signature(self, payload: WebhookPayload, signature: Optional[str]) -> bool:
        """Compare the x-paystack-signature HMAC-SHA512 in constant time."""
        if not signature:
            return False
        return hmac.compare_digest(self.compute_signature(payload), signature.strip().lower())

    async def process_webhook(self, payload: WebhookPayload) -> WebhookResponse:
        try:
            event = json.loads(payload)
            event_type = event["event"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                "paystack_webhook_processing_error",
                error=self.sanitizer.sanitize_for_logging(str(e)),
            )
            raise PaymentProcessingError(
                "Webhook processing failed", gateway_name=self.name, original_error=e
            ) from e

        await self.dispatch_webhook_event(event_type, event)

        data = event.get("data") or {}
        return WebhookResponse(
            event_id=str(data.get("id", event.get("id"))),
            event_type=event_type,
            processed=True,
            message="Webhook processed successfully",
        )

    async def get_payment_status(self, transaction_id: str) -> PaymentStatus:
        with self.observe("get_payment_status"):
            data = await self._request(
                "GET", f"{VERIFY_TRANSACTION_PATH}{transaction_id}", "status check"
            )

        # Paystack echoes metadata back as an object, or as "" when none was sent
        metadata = data.get("metadata")
        customer_id = metadata.get("customer_id") if isinstance(metadata, dict) else None

        return PaymentStatus(
            transaction_id=transaction_id,
            status=map_paystack_status(data.get("status")),
            amount=from_kobo(int(data.get("amount") or 0)),
            currency=data.get("currency"),
            last_updated=utcnow(),
            gateway=self.name,
            payment_method=data.get("channel"),
            customer_id=customer_id,
        )

    async def create_payment_token(self, card: CardDetails) -> TokenResponse:
        raise UnsupportedOperationError(
            "Card tokenization must be performed on the client side using Paystack.js",
            gateway_name=self.name,
        )

    async def initiate_payout(self, request: PayoutRequest) -> PayoutResponse:
        payload = {
            "source": "balance",
            "amount": to_kobo(request.amount),
            "currency": request.currency,
            "reason": request.description,
            "recipient": {
                "type": "bank_account",
                "account_number": request.account_number,
                "bank_code": request.bank_code,
                "name": request.account_name,
            },
        }

        with self.observe("initiate_payout"):
            data = await self._request("POST", TRANSFER_PATH, "payout", payload)

        transfer_code = data.get("transfer_code")
        logger.info(
            "paystack_transfer_initiated",
            transfer_code=self.sanitizer.sanitize_for_logging(str(transfer_code)),
            vendor_id=request.vendor_id,
        )

        return PayoutResponse(
            payout_id=str(transfer_code),
            amount=request.amount,
            currency=request.currency,
            status=data.get("status"),
            estimated_arrival=utcnow(),
            message="Transfer initiated successfully",
            gateway=self.name,
        )

    async def is_available(self) -> bool:
        try:
            response = await self.client.get(BANK_PATH, headers=self._headers())
            return response.status_code == 200
        except Exception as e:
            logger.warning(
                "paystack_availability_check_failed",
                error=self.sanitizer.sanitize_for_logging(str(e)),
            )
            return False

    # Default webhook handlers

    def _on_charge_success(self, event: Dict[str, Any]) -> None:
        reference = (event.get("data") or {}).get("reference")
        logger.info(
            "paystack_charge_succeeded",
            reference=self.sanitizer.sanitize_for_logging(str(reference)),
        )

    def _on_charge_failed(self, event: Dict[str, Any]) -> None:
        reference = (event.get("data") or {}).get("reference")
        logger.warning(
            "paystack_charge_failed",
            reference=self.sanitizer.sanitize_for_logging(str(reference)),
        )

    def _on_transfer_success(self, event: Dict[str, Any]) -> None:
        transfer_code = (event.get("data") or {}).get("transfer_code")
        logger.info("paystack_transfer_succeeded", transfer_code=str(transfer_code))

    def _on_transfer_failed(self, event: Dict[str, Any]) -> None:
        transfer_code = (event.get("data") or {}).get("transfer_code")
        logger.warning("paystack_transfer_failed", transfer_code=str(transfer_code))

    def _on_refund_processed(self, event: Dict[str, Any]) -> None:
        refund_id = (event.get("data") or {}).get("id")
        logger.info("paystack_refund_processed", refund_id=str(refund_id))
