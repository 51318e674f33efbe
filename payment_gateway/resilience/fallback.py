"""
Fallback strategies used when a protected call cannot complete.

Payments are queued for later processing under a pending transaction id
that stays valid after the queue is drained; currency lookups fall back to the
last known rate, then to a neutral 1:1 rate.
"""
import asyncio
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import structlog

from payment_gateway.core.exceptions import GatewayUnavailableError, PaymentProcessingError
from payment_gateway.domain.models import (
    CurrencyRate,
    PaymentRequest,
    PaymentResponse,
    PaymentState,
    PaymentStatus,
    utcnow,
)
from payment_gateway.monitoring.metrics import metrics
from payment_gateway.resilience.bulkhead import BulkheadFullError
from payment_gateway.resilience.circuit_breaker import CallNotPermittedError

logger = structlog.get_logger(__name__)

PAYMENT_SERVICE = "payment-service"
CURRENCY_SERVICE = "currency-service"


class FallbackNotAvailableError(Exception):
    """Raised when no fallback strategy exists for a service."""

    def __init__(self, service_name: str, cause: Optional[BaseException] = None):
        super().__init__(f"No fallback available for service: {service_name}")
        self.service_name = service_name
        self.cause = cause


def is_fallback_eligible(error: Optional[BaseException]) -> bool:
    """
    Whether a failure should be absorbed by a fallback.

    Outages qualify: unavailable gateways, open circuits, full bulkheads,
    timeouts and retryable gateway errors. Declines and bad input must
    reach the caller.
    """
    if error is None:
        return True
    outage = (
        GatewayUnavailableError,
        CallNotPermittedError,
        BulkheadFullError,
        asyncio.TimeoutError,
        TimeoutError,
    )
    if isinstance(error, outage):
        return True
    if isinstance(error, PaymentProcessingError):
        return error.retryable
    return False


@dataclass
class QueuedPayment:
    """A payment accepted while its gateway was down."""

    transaction_id: str
    request: PaymentRequest
    queued_at: datetime = field(default_factory=utcnow)
    status: str = PaymentState.PENDING
    gateway: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    attempts: int = 0

    def to_status(self) -> PaymentStatus:
        return PaymentStatus(
            transaction_id=self.transaction_id,
            status=self.status,
            amount=self.request.amount,
            currency=self.request.currency,
            last_updated=self.queued_at,
            gateway=self.gateway,
            payment_method=self.request.payment_method,
            customer_id=self.request.customer_id,
        )


class FallbackStrategies:
    """In-memory fallback strategies for payment and currency services."""

    def __init__(self, max_resolved: int = 10000) -> None:
        self._payment_queue: "OrderedDict[str, QueuedPayment]" = OrderedDict()
        self._resolved: "OrderedDict[str, QueuedPayment]" = OrderedDict()
        self._max_resolved = max_resolved
        self._currency_rates: Dict[Tuple[str, str], CurrencyRate] = {}
        self._lock = threading.Lock()

    # Payments

    def payment_fallback(
        self,
        request: PaymentRequest,
        error: Optional[BaseException] = None,
        transaction_id: Optional[str] = None,
    ) -> PaymentResponse:
        """
        Queue the payment for later processing and report it as pending.

        Args:
            request: Payment that could not be processed
            error: Failure that triggered the fallback
            transaction_id: Id of an earlier queued attempt, kept when the
                payment is queued again

        Raises:
            The original error, when it is not an outage (see is_fallback_eligible)
        """
        if not is_fallback_eligible(error):
            raise error

        with self._lock:
            entry = self._resolved.pop(transaction_id, None) if transaction_id else None
            if entry is None:
                entry = QueuedPayment(
                    transaction_id=transaction_id or str(uuid.uuid4()), request=request
                )
            entry.status = PaymentState.PENDING
            self._payment_queue[entry.transaction_id] = entry
            queued = len(self._payment_queue)

        reason = type(error).__name__ if error else "manual"
        metrics.record_fallback(PAYMENT_SERVICE, reason)
        metrics.set_payment_queue_size(queued)
        logger.warning(
            "payment_queued_by_fallback",
            order_id=request.order_id,
            transaction_id=entry.transaction_id,
            reason=reason,
            queue_size=queued,
        )

        return PaymentResponse(
            transaction_id=entry.transaction_id,
            status=PaymentState.PENDING,
            amount=request.amount,
            currency=request.currency,
            message="Payment queued for processing",
            metadata={"fallback": "true"},
        )

    def queued_payments(self) -> int:
        return len(self._payment_queue)

    def drain_payment_queue(self) -> List[QueuedPayment]:
        """Take every queued payment off the queue, oldest first."""
        with self._lock:
            drained = list(self._payment_queue.values())
            self._payment_queue.clear()
            for entry in drained:
                entry.attempts += 1
                self._remember(entry)
        metrics.set_payment_queue_size(0)
        if drained:
            logger.info("payment_queue_drained", count=len(drained))
        return drained

    def resolve_queued_payment(
        self,
        transaction_id: str,
        status: str,
        gateway: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
    ) -> None:
        """Record the outcome of a drained payment under its queued id."""
        with self._lock:
            entry = self._resolved.get(transaction_id)
            if entry is None:
                return
            entry.status = status
            entry.gateway = gateway
            entry.gateway_transaction_id = gateway_transaction_id

    def find_queued_payment(self, transaction_id: str) -> Optional[QueuedPayment]:
        """A payment queued by the fallback, while queued or after it was drained."""
        with self._lock:
            return self._payment_queue.get(transaction_id) or self._resolved.get(transaction_id)

    def _remember(self, entry: QueuedPayment) -> None:
        # callers hold the lock
        self._resolved[entry.transaction_id] = entry
        self._resolved.move_to_end(entry.transaction_id)
        while len(self._resolved) > self._max_resolved:
            self._resolved.popitem(last=False)

    # Currency

    def cache_currency_rate(self, rate: CurrencyRate) -> None:
        key = (rate.from_currency.upper(), rate.to_currency.upper())
        with self._lock:
            self._currency_rates[key] = rate

    def currency_fallback(
        self,
        from_currency: str,
        to_currency: str,
        error: Optional[BaseException] = None,
    ) -> CurrencyRate:
        """Last cached rate marked CACHED, otherwise a 1:1 rate marked FALLBACK."""
        key = (from_currency.upper(), to_currency.upper())
        with self._lock:
            cached = self._currency_rates.get(key)

        if cached is not None:
            metrics.record_fallback(CURRENCY_SERVICE, "cached")
            return cached.model_copy(update={"source": "CACHED"})

        metrics.record_fallback(CURRENCY_SERVICE, "default")
        logger.warning(
            "currency_rate_defaulted",
            from_currency=key[0],
            to_currency=key[1],
            error=str(error) if error else None,
        )
        return CurrencyRate(
            from_currency=key[0],
            to_currency=key[1],
            rate=Decimal("1.0"),
            source="FALLBACK",
        )

    def get_fallback(self, service_name: str, error: Optional[BaseException], *args: Any) -> Any:
        """
        Dispatch to the strategy for a service.

        Args:
            service_name: payment-service or currency-service
            error: Failure that triggered the fallback
            *args: Strategy arguments (payment request, or from/to currencies)

        Raises:
            FallbackNotAvailableError: For services without a strategy
        """
        if service_name == PAYMENT_SERVICE:
            return self.payment_fallback(*args, error=error)
        if service_name == CURRENCY_SERVICE:
            return self.currency_fallback(*args, error=error)
        raise FallbackNotAvailableError(service_name, error)
