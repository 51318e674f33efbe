"""Registry of gateway implementations keyed by GatewayType."""
from typing import Dict, Optional, Union

import httpx
import structlog

from payment_gateway.config import Settings
from payment_gateway.core.exceptions import GatewayUnavailableError, UnsupportedGatewayError
from payment_gateway.domain.models import GatewayType
from payment_gateway.gateways.base import PaymentGateway
from payment_gateway.gateways.paystack_gateway import PaystackGateway
from payment_gateway.gateways.stripe_gateway import StripeGateway

logger = structlog.get_logger(__name__)


def parse_gateway_type(gateway: Union[GatewayType, str, None]) -> GatewayType:
    """
    Resolve a gateway type from an enum member or a case-insensitive name.

    Raises:
        ValueError: If gateway is None
        UnsupportedGatewayError: If the name is not a known gateway
    """
    if gateway is None:
        raise ValueError("Gateway type cannot be None")
    if isinstance(gateway, GatewayType):
        return gateway
    try:
        return GatewayType[gateway.strip().upper()]
    except KeyError:
        raise UnsupportedGatewayError(f"Invalid payment gateway name: {gateway}")


class PaymentGatewayFactory:
    """Holds the registered gateways and hands out available ones."""

    def __init__(self) -> None:
        self._gateways: Dict[GatewayType, PaymentGateway] = {}

    def register(self, gateway_type: GatewayType, gateway: PaymentGateway) -> None:
        self._gateways[gateway_type] = gateway
        logger.info("payment_gateway_registered", gateway=gateway_type.name)

    def registered(self, gateway: Union[GatewayType, str]) -> PaymentGateway:
        """
        Return a registered gateway without checking availability.

        Raises:
            UnsupportedGatewayError: If the gateway is unknown or unregistered
        """
        gateway_type = parse_gateway_type(gateway)
        instance = self._gateways.get(gateway_type)
        if instance is None:
            raise UnsupportedGatewayError(f"Payment gateway not supported: {gateway_type.name}")
        return instance

    async def get_gateway(self, gateway: Union[GatewayType, str, None]) -> PaymentGateway:
        """
        Return a registered gateway that is currently reachable.

        Args:
            gateway: GatewayType or gateway name (case-insensitive)

        Raises:
            ValueError: If gateway is None
            UnsupportedGatewayError: If unknown or unregistered
            GatewayUnavailableError: If the availability check fails
        """
        instance = self.registered(parse_gateway_type(gateway))

        if not await instance.is_available():
            logger.warning("payment_gateway_unavailable", gateway=instance.name)
            raise GatewayUnavailableError(
                f"Payment gateway is currently unavailable: {instance.name}"
            )

        return instance

    def is_gateway_supported(self, gateway_type: GatewayType) -> bool:
        return gateway_type in self._gateways

    async def get_available_gateways(self) -> Dict[GatewayType, bool]:
        """Availability of every registered gateway."""
        return {
            gateway_type: await gateway.is_available()
            for gateway_type, gateway in self._gateways.items()
        }

    async def close(self) -> None:
        for gateway in self._gateways.values():
            if isinstance(gateway, PaystackGateway):
                await gateway.close()


def create_default_factory(
    settings: Settings, paystack_client: Optional[httpx.AsyncClient] = None
) -> PaymentGatewayFactory:
    """Factory with Stripe and Paystack registered."""
    factory = PaymentGatewayFactory()
    factory.register(GatewayType.STRIPE, StripeGateway(settings))
    factory.register(GatewayType.PAYSTACK, PaystackGateway(settings, client=paystack_client))
    logger.info("payment_gateway_factory_initialized", gateways=2)
    return factory
