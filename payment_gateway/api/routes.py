"""
API routes for payment processing.

Payment routes need a bearer token; the caller's roles are checked by the
PaymentAuthorizer before the service is called. Domain exceptions are not
caught here; the handlers registered in payment_gateway.api.main turn them
into JSON error responses.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from payment_gateway.api.deps import (
    get_authorizer,
    get_current_principal,
    get_health_check,
    get_payment_service,
)
from payment_gateway.core.authorization import PaymentAuthorizer, Principal
from payment_gateway.core.service import PaymentService
from payment_gateway.domain.models import (
    CaptureResponse,
    PaymentRequest,
    PaymentResponse,
    PaymentStatus,
    PayoutRequest,
    PayoutResponse,
    QueueDrainResult,
    RefundRequest,
    RefundResponse,
    SupportedMethods,
    WebhookResponse,
)
from payment_gateway.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/api/v1/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

# Provider-specific headers accepted when X-Signature is absent
PROVIDER_SIGNATURE_HEADERS = ("stripe-signature", "x-paystack-signature")


@payment_router.post(
    "/process",
    response_model=PaymentResponse,
    summary="Process a payment",
    description="Route a payment to the regional gateway and process it",
)
async def process_payment(
    request: PaymentRequest,
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> PaymentResponse:
    start_time = time.time()
    authorizer.authorize_payment(principal, request)
    logger.info(
        "api_process_payment_request",
        order_id=request.order_id,
        currency=request.currency,
        country_code=request.country_code,
    )

    response = await service.process_payment(request)

    logger.info(
        "api_process_payment_success",
        transaction_id=response.transaction_id,
        status=response.status,
        duration_seconds=time.time() - start_time,
    )
    return response


@payment_router.get(
    "/status/{transaction_id}",
    response_model=PaymentStatus,
    summary="Get payment status",
)
async def get_payment_status(
    transaction_id: str,
    gateway: Optional[str] = Query(default=None, description="STRIPE or PAYSTACK"),
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> PaymentStatus:
    """Get payment status; the gateway is inferred from the id when not given."""
    payment_status = await service.get_payment_status(transaction_id, gateway)

    async def owner(_: str) -> Optional[str]:
        return payment_status.customer_id

    await authorizer.authorize_status(principal, transaction_id, owner)
    return payment_status


@payment_router.post(
    "/refund",
    response_model=RefundResponse,
    summary="Refund a payment",
    description="Create a full or partial refund for a payment",
)
async def refund_payment(
    request: RefundRequest,
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> RefundResponse:
    await authorizer.authorize_refund(principal, request.transaction_id, service.payment_owner)
    logger.info(
        "api_refund_payment_request",
        transaction_id=request.transaction_id,
        amount=str(request.amount),
    )
    return await service.refund_payment(request)


@payment_router.post(
    "/capture/{transaction_id}",
    response_model=CaptureResponse,
    summary="Capture an authorised payment",
)
async def capture_payment(
    transaction_id: str,
    amount: Optional[Decimal] = Query(default=None, gt=0),
    gateway: Optional[str] = Query(default=None),
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> CaptureResponse:
    await authorizer.authorize_capture(
        principal, transaction_id, lambda tid: service.payment_owner(tid, gateway)
    )
    return await service.capture_payment(transaction_id, amount, gateway)


@payment_router.post(
    "/payout",
    response_model=PayoutResponse,
    summary="Pay out funds to a vendor",
)
async def initiate_payout(
    request: PayoutRequest,
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> PayoutResponse:
    authorizer.authorize_payout(principal, request)
    logger.info("api_payout_request", vendor_id=request.vendor_id, currency=request.currency)
    return await service.initiate_payout(request)


@payment_router.get(
    "/queue",
    response_model=Dict[str, int],
    summary="Queued payments",
    description="Number of payments queued while their gateway was down",
)
async def payment_queue(
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> Dict[str, int]:
    authorizer.authorize_queue_management(principal)
    return {"queued_payments": service.fallbacks.queued_payments()}


@payment_router.post(
    "/queue/process",
    response_model=QueueDrainResult,
    summary="Re-submit queued payments",
    description="Drain the payment queue now instead of waiting for the background worker",
)
async def process_payment_queue(
    service: PaymentService = Depends(get_payment_service),
    principal: Principal = Depends(get_current_principal),
    authorizer: PaymentAuthorizer = Depends(get_authorizer),
) -> QueueDrainResult:
    authorizer.authorize_queue_management(principal)
    logger.info("api_process_payment_queue", queued=service.fallbacks.queued_payments())
    return await service.process_queued_payments()


@payment_router.post(
    "/webhook/{gateway}",
    response_model=WebhookResponse,
    summary="Gateway webhook endpoint",
    description="Verify and handle a Stripe or Paystack webhook event",
)
async def handle_webhook(
    gateway: str,
    request: Request,
    x_signature: Optional[str] = Header(default=None, alias="X-Signature"),
    service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    """
    Handle gateway webhook events.

    The raw body is passed through untouched since signatures are computed
    over the exact bytes the provider sent.
    """
    body = await request.body()
    signature = x_signature
    if signature is None:
        signature = next(
            (request.headers[h] for h in PROVIDER_SIGNATURE_HEADERS if h in request.headers),
            None,
        )

    logger.info("api_webhook_received", gateway=gateway, size=len(body))
    return await service.handle_webhook(gateway, body, signature)


@payment_router.get(
    "/gateways/status",
    response_model=Dict[str, bool],
    summary="Gateway availability",
)
async def gateway_status(
    service: PaymentService = Depends(get_payment_service),
) -> Dict[str, bool]:
    return await service.gateway_status()


@payment_router.get(
    "/methods/{country_code}",
    response_model=SupportedMethods,
    summary="Payment methods for a country",
)
async def supported_methods(
    country_code: str,
    service: PaymentService = Depends(get_payment_service),
) -> SupportedMethods:
    return service.supported_methods(country_code)


@monitoring_router.get(
    "/health",
    summary="Health check",
    description="Check gateway availability and circuit breaker state",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {"status": "unhealthy", "checks": {"error": str(e)}}


@monitoring_router.get("/health/live", summary="Liveness check")
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get("/health/ready", summary="Readiness check")
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Ready while at least one gateway is reachable."""
    result = await health_check.readiness()
    if result["status"] == "unhealthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/health/circuit-breakers",
    summary="Circuit breaker health",
    description="State and metrics of every circuit breaker",
)
async def circuit_breaker_health(
    health_check: HealthCheck = Depends(get_health_check),
) -> Dict[str, Any]:
    return health_check.check_circuit_breakers()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
