"""Payment provider adapters."""
from .base import PaymentGateway
from .factory import PaymentGatewayFactory, create_default_factory
from .paystack_gateway import PaystackGateway
from .stripe_gateway import StripeGateway

__all__ = [
    "PaymentGateway",
    "PaymentGatewayFactory",
    "PaystackGateway",
    "StripeGateway",
    "create_default_factory",
]
