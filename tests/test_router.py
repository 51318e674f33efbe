"""
Tests for regional payment routing.
"""
import pytest

from payment_gateway.core.exceptions import GatewayUnavailableError, PaymentProcessingError
from payment_gateway.core.router import (
    AFRICAN_COUNTRY_CODES,
    RegionalPaymentRouter,
    gateway_type_for_country,
    gateway_type_for_currency,
    gateway_type_for_transaction,
)
from payment_gateway.domain.models import GatewayType


class TestRoutingRules:
    """Pure routing functions."""

    @pytest.mark.unit
    def test_all_african_countries_are_known(self) -> None:
        assert len(AFRICAN_COUNTRY_CODES) == 54

    @pytest.mark.unit
    @pytest.mark.parametrize("country", ["NG", "gh", " ke ", "ZA", "EG", "MA"])
    def test_african_countries_route_to_paystack(self, country: str) -> None:
        assert gateway_type_for_country(country) == GatewayType.PAYSTACK

    @pytest.mark.unit
    @pytest.mark.parametrize("country", ["US", "GB", "de", "JP", "BR", "XX"])
    def test_other_countries_route_to_stripe(self, country: str) -> None:
        assert gateway_type_for_country(country) == GatewayType.STRIPE

    @pytest.mark.unit
    @pytest.mark.parametrize("country", [None, "", "   "])
    def test_missing_country_defaults_to_stripe(self, country: str) -> None:
        assert gateway_type_for_country(country) == GatewayType.STRIPE

    @pytest.mark.unit
    def test_currency_routing(self) -> None:
        assert gateway_type_for_currency("ngn") == GatewayType.PAYSTACK
        assert gateway_type_for_currency("USD") == GatewayType.PAYSTACK
        assert gateway_type_for_currency("EUR") == GatewayType.STRIPE
        assert gateway_type_for_currency(None) == GatewayType.STRIPE

    @pytest.mark.unit
    def test_transaction_prefix_routing(self) -> None:
        assert gateway_type_for_transaction("pi_123") == GatewayType.STRIPE
        assert gateway_type_for_transaction("ch_123") == GatewayType.STRIPE
        assert gateway_type_for_transaction("PAYSTACK_order_1") == GatewayType.PAYSTACK

    @pytest.mark.unit
    @pytest.mark.parametrize("transaction_id", ["txn_1", "", None])
    def test_unknown_transaction_prefix_raises(self, transaction_id: str) -> None:
        with pytest.raises(PaymentProcessingError, match="Unable to determine gateway"):
            gateway_type_for_transaction(transaction_id)


class TestRegionalPaymentRouter:
    """Router backed by a gateway factory."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_select_gateway_by_country(self, gateway_factory, stripe_stub, paystack_stub) -> None:
        router = RegionalPaymentRouter(gateway_factory)

        assert await router.select_gateway("NG") is paystack_stub
        assert await router.select_gateway("FR") is stripe_stub
        assert await router.route_payment(None) is stripe_stub

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_select_gateway_by_currency(self, gateway_factory, stripe_stub, paystack_stub) -> None:
        router = RegionalPaymentRouter(gateway_factory)

        assert await router.select_gateway_by_currency("GHS") is paystack_stub
        assert await router.select_gateway_by_currency("GBP") is stripe_stub

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_gateway_raises(self, gateway_factory, paystack_stub) -> None:
        paystack_stub.available = False
        router = RegionalPaymentRouter(gateway_factory)

        with pytest.raises(GatewayUnavailableError, match="PAYSTACK"):
            await router.select_gateway("KE")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_route_payout(self, gateway_factory, stripe_stub, paystack_stub) -> None:
        router = RegionalPaymentRouter(gateway_factory)

        assert await router.route_payout("vendor-1") is stripe_stub
        assert await router.route_payout("vendor-1", "NG") is paystack_stub
        assert await router.route_payout("vendor-1", "  ") is stripe_stub

    @pytest.mark.unit
    def test_gateway_for_transaction_skips_availability(self, gateway_factory, stripe_stub) -> None:
        stripe_stub.available = False
        router = RegionalPaymentRouter(gateway_factory)

        assert router.gateway_for_transaction("pi_abc") is stripe_stub

    @pytest.mark.unit
    def test_supported_methods_and_currencies(self, gateway_factory) -> None:
        router = RegionalPaymentRouter(gateway_factory)

        assert "mobile_money" in router.get_supported_payment_methods("NG")
        assert "mobile_money" not in router.get_supported_payment_methods("US")
        assert router.get_supported_currencies("GH") == frozenset(
            {"NGN", "GHS", "ZAR", "KES", "UGX", "USD"}
        )
        assert "EUR" in router.get_supported_currencies("DE")

    @pytest.mark.unit
    def test_gateway_name(self, gateway_factory) -> None:
        router = RegionalPaymentRouter(gateway_factory)

        assert router.get_gateway_name(" ng ") == "PAYSTACK"
        assert router.get_gateway_name("CA") == "STRIPE"
        assert router.get_gateway_name(None) == "STRIPE"
        assert router.is_african_country("tz")
        assert not router.is_african_country("IN")
        assert router.is_paystack_supported_currency("kes")
        assert not router.is_paystack_supported_currency("EUR")
