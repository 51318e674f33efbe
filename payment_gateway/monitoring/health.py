"""
Health checks for load balancer and Kubernetes liveness and readiness checks.

Checks:
- Gateway availability (Stripe, Paystack)
- Circuit breaker state
"""
from typing import Any, Dict

import structlog

from payment_gateway.gateways.factory import PaymentGatewayFactory
from payment_gateway.resilience.circuit_breaker import CircuitBreakerRegistry
from payment_gateway.resilience.health import check_circuit_breaker_health

logger = structlog.get_logger(__name__)


class HealthCheck:
    """
    Health check service for the gateways and breakers this service depends on.

    The service is healthy while at least one gateway is reachable and no
    breaker is OPEN; anything less is reported as degraded.
    """

    def __init__(self, factory: PaymentGatewayFactory, circuit_breakers: CircuitBreakerRegistry):
        self.factory = factory
        self.circuit_breakers = circuit_breakers

    async def check_gateways(self) -> Dict[str, Any]:
        """
        Check every registered gateway.

        Returns:
            Dict[str, Any]: Gateway name to health status
        """
        availability = await self.factory.get_available_gateways()
        checks = {}
        for gateway_type, available in availability.items():
            if not available:
                logger.warning("gateway_unavailable", gateway=gateway_type.name)
            checks[gateway_type.name] = {
                "status": "healthy" if available else "unhealthy",
                "region": gateway_type.region,
            }
        return checks

    def check_circuit_breakers(self) -> Dict[str, Any]:
        return check_circuit_breaker_health(self.circuit_breakers)

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        gateways = await self.check_gateways()
        breakers = self.check_circuit_breakers()

        any_gateway_up = any(check["status"] == "healthy" for check in gateways.values())
        all_breakers_ok = all(check["healthy"] for check in breakers.values())

        if not any_gateway_up:
            status = "unhealthy"
        elif all_breakers_ok and all(c["status"] == "healthy" for c in gateways.values()):
            status = "healthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "checks": {"gateways": gateways, "circuit_breakers": breakers},
        }

    async def liveness(self) -> Dict[str, Any]:
        """Application is running; does not touch dependencies."""
        return {"status": "alive", "message": "Application is running"}

    async def readiness(self) -> Dict[str, Any]:
        return await self.check_all()
