"""
Regional payment routing.

Routes payments to the gateway that serves the customer's region:
- Paystack: all 54 African countries, and the currencies it settles in
- Stripe: Europe, the Americas, Asia-Pacific and the Middle East
"""
from typing import FrozenSet, Optional

import structlog

from payment_gateway.core.exceptions import PaymentProcessingError
from payment_gateway.domain.models import GatewayType
from payment_gateway.gateways.base import PaymentGateway
from payment_gateway.gateways.factory import PaymentGatewayFactory
from payment_gateway.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# ISO 3166-1 alpha-2 codes
AFRICAN_COUNTRY_CODES: FrozenSet[str] = frozenset(
    {
        "DZ", "AO", "BJ", "BW", "BF", "BI", "CM", "CV", "CF", "TD",
        "KM", "CG", "CD", "CI", "DJ", "EG", "GQ", "ER", "ET", "GA",
        "GM", "GH", "GN", "GW", "KE", "LS", "LR", "LY", "MG", "MW",
        "ML", "MR", "MU", "MA", "MZ", "NA", "NE", "NG", "RW", "ST",
        "SN", "SC", "SL", "SO", "ZA", "SS", "SD", "SZ", "TZ", "TG",
        "TN", "UG", "ZM", "ZW",
    }
)

PAYSTACK_SUPPORTED_CURRENCIES: FrozenSet[str] = frozenset(
    {"NGN", "GHS", "ZAR", "KES", "UGX", "USD"}
)

STRIPE_TRANSACTION_PREFIXES = ("pi_", "ch_")
PAYSTACK_TRANSACTION_PREFIX = "PAYSTACK_"


def _normalize(code: Optional[str]) -> Optional[str]:
    if code is None or not code.strip():
        return None
    return code.strip().upper()


def is_african_country(country_code: Optional[str]) -> bool:
    return _normalize(country_code) in AFRICAN_COUNTRY_CODES


def is_paystack_supported_currency(currency: Optional[str]) -> bool:
    return _normalize(currency) in PAYSTACK_SUPPORTED_CURRENCIES


def gateway_type_for_country(country_code: Optional[str]) -> GatewayType:
    """Paystack for African countries, Stripe for everything else."""
    normalized = _normalize(country_code)
    if normalized is None:
        logger.warning("no_country_code_defaulting_to_stripe")
        return GatewayType.STRIPE
    return GatewayType.PAYSTACK if normalized in AFRICAN_COUNTRY_CODES else GatewayType.STRIPE


def gateway_type_for_currency(currency: Optional[str]) -> GatewayType:
    normalized = _normalize(currency)
    if normalized is None:
        logger.warning("no_currency_code_defaulting_to_stripe")
        return GatewayType.STRIPE
    return (
        GatewayType.PAYSTACK if normalized in PAYSTACK_SUPPORTED_CURRENCIES else GatewayType.STRIPE
    )


def gateway_type_for_transaction(transaction_id: Optional[str]) -> GatewayType:
    """
    Infer the gateway from a transaction id.

    Stripe ids start with pi_ or ch_; Paystack references start with PAYSTACK_.

    Raises:
        PaymentProcessingError: If the id matches neither gateway
    """
    if transaction_id:
        if transaction_id.startswith(STRIPE_TRANSACTION_PREFIXES):
            return GatewayType.STRIPE
        if transaction_id.startswith(PAYSTACK_TRANSACTION_PREFIX):
            return GatewayType.PAYSTACK
    raise PaymentProcessingError(f"Unable to determine gateway for transaction: {transaction_id}")


class RegionalPaymentRouter:
    """Selects registered gateways by country, currency or transaction id."""

    def __init__(self, factory: PaymentGatewayFactory):
        self.factory = factory

    async def select_gateway(self, country_code: Optional[str]) -> PaymentGateway:
        """
        Select payment gateway based on country code.

        Args:
            country_code: ISO 3166-1 alpha-2 country code; blank means Stripe

        Returns:
            PaymentGateway: Gateway serving the country's region
        """
        gateway_type = gateway_type_for_country(country_code)
        metrics.record_routing_decision(gateway_type.name, "country")
        logger.info(
            "payment_routed",
            gateway=gateway_type.name,
            country_code=_normalize(country_code),
        )
        return await self.factory.get_gateway(gateway_type)

    async def select_gateway_by_currency(self, currency: Optional[str]) -> PaymentGateway:
        gateway_type = gateway_type_for_currency(currency)
        metrics.record_routing_decision(gateway_type.name, "currency")
        logger.info("payment_routed", gateway=gateway_type.name, currency=_normalize(currency))
        return await self.factory.get_gateway(gateway_type)

    async def route_payment(self, country_code: Optional[str]) -> PaymentGateway:
        return await self.select_gateway(country_code)

    async def route_payout(
        self, vendor_id: str, country_code: Optional[str] = None
    ) -> PaymentGateway:
        """
        Select the gateway for a vendor payout.

        Payouts go through Stripe unless the vendor's country is known, in
        which case country routing applies.
        """
        if country_code is None or not country_code.strip():
            gateway_type = GatewayType.STRIPE
        else:
            gateway_type = gateway_type_for_country(country_code)

        metrics.record_routing_decision(gateway_type.name, "payout")
        logger.info("payout_routed", gateway=gateway_type.name, vendor_id=vendor_id)
        return await self.factory.get_gateway(gateway_type)

    def gateway_for_transaction(self, transaction_id: str) -> PaymentGateway:
        gateway_type = gateway_type_for_transaction(transaction_id)
        metrics.record_routing_decision(gateway_type.name, "transaction")
        return self.factory.registered(gateway_type)

    def is_african_country(self, country_code: Optional[str]) -> bool:
        return is_african_country(country_code)

    def is_paystack_supported_currency(self, currency: Optional[str]) -> bool:
        return is_paystack_supported_currency(currency)

    def get_supported_payment_methods(self, country_code: Optional[str]) -> FrozenSet[str]:
        return self.factory.registered(gateway_type_for_country(country_code)).supported_payment_methods

    def get_supported_currencies(self, country_code: Optional[str]) -> FrozenSet[str]:
        return self.factory.registered(gateway_type_for_country(country_code)).supported_currencies

    def get_gateway_name(self, country_code: Optional[str]) -> str:
        """STRIPE or PAYSTACK; the code is trimmed and upper-cased first."""
        return gateway_type_for_country(country_code).name
