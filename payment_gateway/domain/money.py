"""
Conversion between major currency units and the minor units gateways expect.

Most currencies use cents (amount x 100). Zero-decimal currencies such as
JPY are sent to gateways as whole amounts.
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import Union

ZERO_DECIMAL_CURRENCIES = frozenset({"JPY", "KRW", "VND", "CLP", "PYG", "UGX"})

Number = Union[Decimal, int, float, str]


def is_zero_decimal(currency: str) -> bool:
    return currency.upper() in ZERO_DECIMAL_CURRENCIES


def to_minor_units(amount: Number, currency: str) -> int:
    """
    Convert an amount in major units to the smallest currency unit.

    Args:
        amount: Amount in major units (e.g. 10.50)
        currency: ISO 4217 currency code

    Returns:
        int: Amount in minor units (e.g. 1050)
    """
    value = Decimal(str(amount))
    if is_zero_decimal(currency):
        # Whole amount, fractional part dropped
        return int(value)
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: int, currency: str) -> Decimal:
    """Convert an amount in minor units back to major units."""
    if is_zero_decimal(currency):
        return Decimal(value)
    return (Decimal(value) / 100).quantize(Decimal("0.01"))


def to_kobo(amount: Number) -> int:
    """Paystack always expects amounts x 100 (kobo, pesewas, cents)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_kobo(value: int) -> Decimal:
    return (Decimal(value) / 100).quantize(Decimal("0.01"))
