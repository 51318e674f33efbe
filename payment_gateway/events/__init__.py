"""Payment event bus and sinks."""
from .bus import EventBus, EventPublishResult, PaymentEvent
from .kafka import KafkaEventPublisher

__all__ = ["EventBus", "EventPublishResult", "KafkaEventPublisher", "PaymentEvent"]
