"""Kafka sink for payment events."""
import json
from typing import Any, Optional

import structlog
from confluent_kafka import Producer

from payment_gateway.events.bus import PaymentEvent

logger = structlog.get_logger(__name__)


class KafkaEventPublisher:
    """
    Publishes payment events as JSON, keyed by the event key so every event
    for one payment lands on the same partition.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        producer: Optional[Any] = None,
        compression_type: str = "snappy",
    ):
        self.topic = topic
        self.producer = producer or Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "compression.type": compression_type,
                "linger.ms": 10,
                "acks": "all",
                "enable.idempotence": True,
                "retries": 3,
            }
        )

    def publish(self, event: PaymentEvent) -> None:
        """
        Queue an event for delivery.

        Raises:
            BufferError: If the local producer queue is full
            KafkaException: If the message cannot be queued
        """
        value = json.dumps(event.to_dict(), default=str).encode("utf-8")
        key = (event.key or event.event_id).encode("utf-8")

        self.producer.produce(
            topic=self.topic,
            key=key,
            value=value,
            callback=self._delivery_callback,
        )
        # Serve delivery callbacks without blocking
        self.producer.poll(0)

    def _delivery_callback(self, err: Any, msg: Any) -> None:
        if err:
            logger.error("event_delivery_failed", topic=self.topic, error=str(err))
        else:
            logger.debug(
                "event_delivered",
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
            )

    def flush(self, timeout: float = 10.0) -> int:
        remaining = self.producer.flush(timeout)
        if remaining > 0:
            logger.warning("events_not_delivered", remaining=remaining)
        return remaining

    def close(self) -> None:
        self.flush()
        logger.info("kafka_event_publisher_closed")
