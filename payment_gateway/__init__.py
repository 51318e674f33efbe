"""
Regional payment gateway routing with a resiliency layer.

Routes payments to a regional gateway (Stripe for Europe and the rest of
the world, Paystack for Africa) and protects every gateway call with
circuit breakers, retries, bulkheads and fallbacks.
"""

__version__ = "1.0.0"
