"""
Main FastAPI application.

Regional payment gateway API with:
- CORS configuration
- Bearer token authentication and role-based authorization
- Error handling mapped from domain exceptions
- Request ID tracking
- Structured logging
- Prometheus metrics and OpenTelemetry tracing
"""
import asyncio
import time
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncGenerator

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payment_gateway import __version__
from payment_gateway.api.deps import get_payment_service
from payment_gateway.api.routes import monitoring_router, payment_router
from payment_gateway.config import get_settings
from payment_gateway.core.queue_worker import PaymentQueueWorker
from payment_gateway.core.exceptions import (
    GatewayUnavailableError,
    PaymentAuthorizationError,
    PaymentProcessingError,
    PaymentValidationError,
    UnsupportedGatewayError,
    WebhookError,
)
from payment_gateway.monitoring.logging import setup_logging
from payment_gateway.monitoring.tracing import create_correlation_id, setup_tracing
from payment_gateway.resilience.bulkhead import BulkheadFullError
from payment_gateway.resilience.circuit_breaker import CallNotPermittedError

# Setup logging first
setup_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Starts the payment queue worker and closes gateways and the event sink
    on shutdown.
    """
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        test_mode=settings.is_test_mode,
        kafka_enabled=settings.kafka_enabled,
    )

    worker = None
    worker_task = None
    if settings.queue_drain_interval > 0:
        # Resolved per pass so dependency overrides also reach the worker
        worker = PaymentQueueWorker(
            lambda: app.dependency_overrides.get(get_payment_service, get_payment_service)(),
            interval_seconds=settings.queue_drain_interval,
        )
        worker_task = asyncio.create_task(worker.start())

    yield

    logger.info("application_shutdown")
    if worker is not None:
        worker.stop()
        worker_task.cancel()
        with suppress(asyncio.CancelledError):
            await worker_task
    if get_payment_service.cache_info().currsize:
        try:
            await get_payment_service().close()
            logger.info("payment_service_closed")
        except Exception as e:
            logger.error("payment_service_shutdown_error", error=str(e))


app = FastAPI(
    title="Regional Payment Gateway",
    description=(
        "Routes payments to Paystack for African markets and Stripe elsewhere. "
        "Features: circuit breakers, retries, bulkheads, payment queueing during "
        "gateway outages, webhook verification and payment events."
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_allowed_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_tracing(settings, app)


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    A client-supplied X-Request-ID is kept so callers can correlate logs.
    """
    request_id = request.headers.get("X-Request-ID") or create_correlation_id()
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            request_id=request_id,
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


def error_response(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    content = {"error": error, "message": message}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(PaymentValidationError)
async def validation_exception_handler(
    request: Request, exc: PaymentValidationError
) -> JSONResponse:
    logger.warning("payment_validation_failed", path=request.url.path, errors=exc.errors)
    return error_response(
        status.HTTP_400_BAD_REQUEST, "Validation failed", str(exc), errors=exc.errors
    )


@app.exception_handler(PaymentProcessingError)
async def processing_exception_handler(
    request: Request, exc: PaymentProcessingError
) -> JSONResponse:
    logger.warning(
        "payment_processing_failed",
        path=request.url.path,
        error=str(exc),
        error_type=exc.error_type.value,
        gateway=exc.gateway_name,
    )
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Payment processing failed",
        str(exc),
        error_code=exc.error_code,
        gateway=exc.gateway_name,
    )


@app.exception_handler(WebhookError)
async def webhook_exception_handler(request: Request, exc: WebhookError) -> JSONResponse:
    logger.warning("webhook_rejected", path=request.url.path, error=str(exc))
    return error_response(status.HTTP_401_UNAUTHORIZED, "Webhook rejected", str(exc))


@app.exception_handler(PaymentAuthorizationError)
async def authorization_exception_handler(
    request: Request, exc: PaymentAuthorizationError
) -> JSONResponse:
    return error_response(status.HTTP_403_FORBIDDEN, "Forbidden", str(exc))


@app.exception_handler(GatewayUnavailableError)
async def unavailable_exception_handler(
    request: Request, exc: GatewayUnavailableError
) -> JSONResponse:
    logger.warning("gateway_unavailable", path=request.url.path, error=str(exc))
    return error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "Gateway unavailable", str(exc))


@app.exception_handler(UnsupportedGatewayError)
async def unsupported_gateway_exception_handler(
    request: Request, exc: UnsupportedGatewayError
) -> JSONResponse:
    return error_response(status.HTTP_404_NOT_FOUND, "Unsupported gateway", str(exc))


@app.exception_handler(CallNotPermittedError)
@app.exception_handler(BulkheadFullError)
async def overload_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(
        "downstream_call_rejected",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Service temporarily unavailable",
        str(exc),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "An unexpected error occurred. Please try again later.",
    )


app.include_router(payment_router)
app.include_router(monitoring_router)


@app.get("/", tags=["root"])
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": __version__,
        "status": "operational",
        "environment": settings.app_env,
        "test_mode": settings.is_test_mode,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
    }


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(
        "payment_gateway.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=settings.api_workers if not settings.debug else 1,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
