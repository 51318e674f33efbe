"""
Prometheus metrics for gateway routing and resiliency.

Tracks:
- Gateway requests by gateway, operation and outcome
- Gateway call duration
- Routing decisions
- Circuit breaker state and events
- Fallback invocations and the payment queue
- Webhook events
- Event bus publishing
"""
from prometheus_client import Counter, Gauge, Histogram

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total number of gateway requests",
    ["gateway", "operation", "status"],
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Gateway call duration in seconds",
    ["gateway", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total gateway errors",
    ["gateway", "error_type"],  # transient, permanent, rate_limit
)

# Routing metrics
routing_decisions_total = Counter(
    "routing_decisions_total",
    "Total routing decisions",
    ["gateway", "strategy"],  # strategy: country, currency, payout, transaction
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open, 3=forced_open)",
    ["circuit"],
)

circuit_breaker_events_total = Counter(
    "circuit_breaker_events_total",
    "Circuit breaker events",
    ["circuit", "type"],  # success, error, not_permitted, state_transition
)

circuit_breaker_failure_rate = Gauge(
    "circuit_breaker_failure_rate",
    "Failure rate percentage over the sliding window",
    ["circuit"],
)

# Bulkhead metrics
bulkhead_rejections_total = Counter(
    "bulkhead_rejections_total",
    "Calls rejected because the bulkhead was full",
    ["service"],
)

# Fallback metrics
fallback_invocations_total = Counter(
    "fallback_invocations_total",
    "Total fallback invocations",
    ["service", "reason"],
)

payment_queue_size = Gauge(
    "payment_queue_size",
    "Payments waiting in the fallback queue",
)

queued_payments_processed_total = Counter(
    "queued_payments_processed_total",
    "Queued payments re-submitted after an outage",
    ["outcome"],  # processed, requeued, failed
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total webhook events",
    ["gateway", "event_type", "status"],  # processed, rejected, failed
)

# Event bus metrics
events_published_total = Counter(
    "events_published_total",
    "Total events published on the bus",
    ["event_type", "status"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    STATE_MAP = {"CLOSED": 0, "OPEN": 1, "HALF_OPEN": 2, "FORCED_OPEN": 3}

    @staticmethod
    def record_gateway_call(
        gateway: str, operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a gateway call."""
        gateway_requests_total.labels(gateway=gateway, operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(gateway=gateway, operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_gateway_error(gateway: str, error_type: str) -> None:
        """Record a classified gateway error."""
        gateway_errors_total.labels(gateway=gateway, error_type=error_type).inc()

    @staticmethod
    def record_routing_decision(gateway: str, strategy: str) -> None:
        """Record which gateway a request was routed to."""
        routing_decisions_total.labels(gateway=gateway, strategy=strategy).inc()

    @classmethod
    def set_circuit_breaker_state(cls, circuit: str, state: str) -> None:
        """Set circuit breaker state."""
        circuit_breaker_state.labels(circuit=circuit).set(cls.STATE_MAP.get(state, 0))

    @staticmethod
    def record_circuit_breaker_event(circuit: str, event_type: str) -> None:
        """Record a circuit breaker event."""
        circuit_breaker_events_total.labels(circuit=circuit, type=event_type).inc()

    @staticmethod
    def set_circuit_breaker_failure_rate(circuit: str, failure_rate: float) -> None:
        circuit_breaker_failure_rate.labels(circuit=circuit).set(max(failure_rate, 0.0))

    @staticmethod
    def record_bulkhead_rejection(service: str) -> None:
        bulkhead_rejections_total.labels(service=service).inc()

    @staticmethod
    def record_fallback(service: str, reason: str) -> None:
        """Record a fallback invocation."""
        fallback_invocations_total.labels(service=service, reason=reason).inc()

    @staticmethod
    def set_payment_queue_size(size: int) -> None:
        payment_queue_size.set(size)

    @staticmethod
    def record_queued_payment(outcome: str) -> None:
        queued_payments_processed_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_webhook_event(gateway: str, event_type: str, status: str) -> None:
        """Record webhook event processing."""
        webhook_events_total.labels(gateway=gateway, event_type=event_type, status=status).inc()

    @staticmethod
    def record_event_published(event_type: str, status: str) -> None:
        events_published_total.labels(event_type=event_type, status=status).inc()


# Export singleton instance
metrics = MetricsCollector()
