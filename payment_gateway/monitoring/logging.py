"""
Structured logging for the payment gateway.

Every event is rendered as one JSON line carrying the service name, version
and environment, the request id bound by the API middleware, and the
OpenTelemetry trace and span ids when a span is active. Card data and
credentials are masked before rendering.
"""
import logging
import sys
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry import trace
from pythonjsonlogger import jsonlogger

from payment_gateway import __version__
from payment_gateway.config import Settings, get_settings

EventDict = Dict[str, Any]
Processor = Callable[[Any, str, EventDict], EventDict]

REDACTED = "***REDACTED***"

# Masked down to the last four characters
CARD_FIELDS = frozenset({"card_number", "account_number"})
# Removed entirely
SECRET_FIELDS = frozenset({"cvv", "cvc", "signature", "password", "authorization", "client_secret"})
SECRET_SUFFIXES = ("_secret", "_key", "_token")


def service_context(settings: Settings) -> Processor:
    """Processor adding the service name, version and environment."""

    def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("version", __version__)
        event_dict.setdefault("env", settings.app_env)
        return event_dict

    return add_service_context


def add_trace_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add trace_id and span_id of the active span so logs link to traces."""
    context = trace.get_current_span().get_span_context()
    if context.is_valid:
        event_dict["trace_id"] = format(context.trace_id, "032x")
        event_dict["span_id"] = format(context.span_id, "016x")
    return event_dict


def _mask(key: str, value: Any) -> Any:
    name = key.lower()
    if name in SECRET_FIELDS or name.endswith(SECRET_SUFFIXES):
        return REDACTED
    if name in CARD_FIELDS:
        text = str(value)
        return f"***{text[-4:]}" if len(text) > 4 else REDACTED
    if isinstance(value, dict):
        return {k: _mask(str(k), v) for k, v in value.items()}
    return value


def redact_payment_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask card numbers and drop secrets, including inside nested dicts."""
    for key in list(event_dict):
        if key != "event":
            event_dict[key] = _mask(key, event_dict[key])
    return event_dict


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structlog and the stdlib root logger for JSON output.

    Library loggers (httpx, stripe, confluent_kafka) go through the root
    handler, formatted by python-json-logger.
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            service_context(settings),
            add_trace_context,
            redact_payment_data,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.INFO)

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, env=settings.app_env
    )
