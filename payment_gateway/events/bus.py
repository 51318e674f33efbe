"""
In-process payment event bus.

Handlers subscribe to an event type (or "*" for every event). Publishing runs
all matching handlers, isolating their failures from each other, then hands
the event to an external sink such as Kafka through a circuit breaker.
"""
import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import structlog

from payment_gateway.domain.models import utcnow
from payment_gateway.monitoring.metrics import metrics
from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry

logger = structlog.get_logger(__name__)

WILDCARD = "*"
EVENT_SINK_BREAKER = "event-bus"

PAYMENT_PROCESSED = "payment.processed"
PAYMENT_REFUNDED = "payment.refunded"
PAYMENT_CAPTURED = "payment.captured"
PAYOUT_INITIATED = "payout.initiated"
WEBHOOK_RECEIVED = "webhook.received"

EventHandler = Callable[["PaymentEvent"], Any]


@dataclass
class PaymentEvent:
    """Event describing something that happened to a payment."""

    event_type: str
    payload: Dict[str, Any]
    key: Optional[str] = None
    source: str = "payment-gateway"
    trace_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "source": self.source,
            "key": self.key,
            "trace_id": self.trace_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }


@dataclass
class EventPublishResult:
    event_id: str
    handlers_run: int = 0
    failed_handlers: List[str] = field(default_factory=list)
    sink_published: Optional[bool] = None  # None when no sink is configured

    @property
    def success(self) -> bool:
        return not self.failed_handlers and self.sink_published is not False


class EventBus:
    """Publish/subscribe dispatch for payment events."""

    def __init__(
        self,
        sink: Optional[Any] = None,
        circuit_breakers: Optional[CircuitBreakerRegistry] = None,
    ):
        """
        Args:
            sink: Object with a publish(event) method, sync or async
            circuit_breakers: Registry providing the sink's breaker
        """
        self.sink = sink
        self.circuit_breakers = circuit_breakers or CircuitBreakerRegistry()
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.info("event_handler_subscribed", event_type=event_type)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_type, []):
            self._handlers[event_type].remove(handler)

    async def publish(self, event: PaymentEvent) -> EventPublishResult:
        """
        Deliver an event to subscribers and the external sink.

        Never raises for handler or sink failures; they are logged and
        reported in the result.
        """
        result = EventPublishResult(event_id=event.event_id)
        handlers = list(self._handlers.get(event.event_type, [])) + list(
            self._handlers.get(WILDCARD, [])
        )

        for handler in handlers:
            result.handlers_run += 1
            try:
                outcome = handler(event)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception as e:
                name = getattr(handler, "__name__", repr(handler))
                result.failed_handlers.append(name)
                logger.error(
                    "event_handler_failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    handler=name,
                    error=str(e),
                )

        if self.sink is not None:
            breaker = self.circuit_breakers.circuit_breaker(EVENT_SINK_BREAKER)
            try:
                await breaker.call(self.sink.publish, event)
                result.sink_published = True
            except Exception as e:
                result.sink_published = False
                logger.error(
                    "event_sink_publish_failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    error=str(e),
                )

        metrics.record_event_published(event.event_type, "success" if result.success else "failed")
        return result
