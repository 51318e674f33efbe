"""
OpenTelemetry tracing.

Spans are exported over OTLP/gRPC when an endpoint is configured; otherwise
the global no-op tracer is used and `traced()` costs almost nothing.
"""
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from payment_gateway import __version__
from payment_gateway.config import Settings

logger = structlog.get_logger(__name__)

TRACER_NAME = "payment_gateway"


def setup_tracing(settings: Settings, app: Optional[FastAPI] = None) -> bool:
    """
    Install a TracerProvider exporting to the configured OTLP collector.

    Args:
        settings: Application settings
        app: FastAPI app to instrument for request spans

    Returns:
        bool: True if an exporter was installed
    """
    if not settings.otlp_endpoint:
        logger.info("tracing_disabled")
        return False

    resource = Resource(
        attributes={
            SERVICE_NAME: settings.app_name,
            SERVICE_VERSION: __version__,
            DEPLOYMENT_ENVIRONMENT: settings.app_env,
        }
    )
    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.trace_sample_rate)),
    )
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=True))
    )
    trace.set_tracer_provider(provider)

    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    logger.info(
        "tracing_initialized",
        endpoint=settings.otlp_endpoint,
        sample_rate=settings.trace_sample_rate,
    )
    return True


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)


@contextmanager
def traced(name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a span tagged with business attributes.

    Exceptions are recorded on the span, the status is set to ERROR and the
    exception is re-raised.

    Example:
        >>> with traced("payment.process", gateway="STRIPE", order_id="order-1"):
        ...     await gateway.process_payment(request)
    """
    with get_tracer().start_as_current_span(name, record_exception=False) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"payment.{key}", str(value))
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def current_trace_id() -> Optional[str]:
    """Hex trace id of the active span, if one is being recorded."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return None
    return format(context.trace_id, "032x")


def create_correlation_id() -> str:
    return str(uuid.uuid4())
