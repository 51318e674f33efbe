"""
Tests for the gateway factory.
"""
import httpx
import pytest

from payment_gateway.core.exceptions import GatewayUnavailableError, UnsupportedGatewayError
from payment_gateway.domain.models import GatewayType
from payment_gateway.gateways.factory import (
    PaymentGatewayFactory,
    create_default_factory,
    parse_gateway_type,
)
from payment_gateway.gateways.paystack_gateway import PaystackGateway
from payment_gateway.gateways.stripe_gateway import StripeGateway


class TestParseGatewayType:

    @pytest.mark.unit
    def test_names_are_case_insensitive(self) -> None:
        assert parse_gateway_type("stripe") == GatewayType.STRIPE
        assert parse_gateway_type(" Paystack ") == GatewayType.PAYSTACK
        assert parse_gateway_type(GatewayType.PAYPAL) == GatewayType.PAYPAL

    @pytest.mark.unit
    def test_none_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="cannot be None"):
            parse_gateway_type(None)

    @pytest.mark.unit
    def test_unknown_name_is_rejected(self) -> None:
        with pytest.raises(UnsupportedGatewayError, match="Invalid payment gateway name: venmo"):
            parse_gateway_type("venmo")


class TestPaymentGatewayFactory:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_gateway_returns_available_gateway(self, gateway_factory, stripe_stub) -> None:
        assert await gateway_factory.get_gateway("STRIPE") is stripe_stub
        assert await gateway_factory.get_gateway(GatewayType.STRIPE) is stripe_stub

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unregistered_gateway(self, gateway_factory) -> None:
        with pytest.raises(UnsupportedGatewayError, match="Payment gateway not supported: PAYPAL"):
            await gateway_factory.get_gateway("paypal")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unavailable_gateway(self, gateway_factory, stripe_stub) -> None:
        stripe_stub.available = False

        with pytest.raises(GatewayUnavailableError, match="currently unavailable: STRIPE"):
            await gateway_factory.get_gateway("stripe")

        # Lookup without the availability check still works
        assert gateway_factory.registered("stripe") is stripe_stub

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_gateway_none(self, gateway_factory) -> None:
        with pytest.raises(ValueError):
            await gateway_factory.get_gateway(None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_available_gateways(self, gateway_factory, paystack_stub) -> None:
        paystack_stub.available = False

        availability = await gateway_factory.get_available_gateways()

        assert availability == {GatewayType.STRIPE: True, GatewayType.PAYSTACK: False}

    @pytest.mark.unit
    def test_is_gateway_supported(self, gateway_factory) -> None:
        assert gateway_factory.is_gateway_supported(GatewayType.STRIPE)
        assert not gateway_factory.is_gateway_supported(GatewayType.SQUARE)

    @pytest.mark.unit
    def test_empty_factory(self) -> None:
        factory = PaymentGatewayFactory()
        with pytest.raises(UnsupportedGatewayError):
            factory.registered(GatewayType.STRIPE)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_default_factory_registers_both_gateways(self, test_settings) -> None:
        client = httpx.AsyncClient(
            base_url=test_settings.paystack_base_url,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})),
        )
        factory = create_default_factory(test_settings, paystack_client=client)

        assert isinstance(factory.registered("stripe"), StripeGateway)
        assert isinstance(factory.registered("paystack"), PaystackGateway)

        await factory.close()
        assert client.is_closed
