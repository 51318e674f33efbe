"""
Role-based authorization for payment operations.

Every caller is described by a Principal decoded from its access token.
The PaymentAuthorizer then checks:
- payment and payout amounts against the highest limit of the caller's roles
- access to the business domain an order belongs to
- vendor access for payouts
- ownership of a transaction for refunds, captures and status lookups

Limits are in major units of the request currency.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Dict, FrozenSet, Iterable, Optional

import structlog

from payment_gateway.core.exceptions import PaymentAuthorizationError
from payment_gateway.domain.models import PaymentRequest, PayoutRequest

logger = structlog.get_logger(__name__)

ROLE_PREFIX = "ROLE_"

# None means no limit
PAYMENT_LIMITS: Dict[str, Optional[Decimal]] = {
    "VENDOR": Decimal("10000"),
    "CUSTOMER": Decimal("5000"),
    "WAREHOUSE_STAFF": Decimal("1000"),
    "DRIVER": Decimal("500"),
    "COMMERCE_MANAGER": Decimal("50000"),
    "WAREHOUSE_MANAGER": Decimal("25000"),
    "FLEET_MANAGER": Decimal("15000"),
    "COMMERCE_ADMIN": Decimal("100000"),
    "WAREHOUSE_ADMIN": Decimal("100000"),
    "COURIER_ADMIN": Decimal("100000"),
    "PLATFORM_ADMIN": None,
    "SUPER_ADMIN": None,
}

PAYOUT_LIMITS: Dict[str, Optional[Decimal]] = {
    "VENDOR_MANAGER": Decimal("25000"),
    "BILLING_MANAGER": Decimal("50000"),
    "PAYOUT_MANAGER": Decimal("75000"),
    "COMMERCE_ADMIN": Decimal("200000"),
    "WAREHOUSE_ADMIN": Decimal("200000"),
    "COURIER_ADMIN": Decimal("200000"),
    "PLATFORM_ADMIN": None,
    "SUPER_ADMIN": None,
}

SOCIAL_COMMERCE = "SOCIAL_COMMERCE"
WAREHOUSING = "WAREHOUSING"
COURIER_SERVICES = "COURIER_SERVICES"

DOMAIN_ORDER_PREFIXES = {
    WAREHOUSING: ("WAREHOUSE_", "SELF_STORAGE_"),
    COURIER_SERVICES: ("WALKIN_", "PICKUP_", "INTL_SHIPPING_", "FARE_"),
}

GLOBAL_ROLES = frozenset({"SUPER_ADMIN", "PLATFORM_ADMIN", "PLATFORM_ANALYST"})

DOMAIN_ROLES: Dict[str, FrozenSet[str]] = {
    SOCIAL_COMMERCE: frozenset(
        {"COMMERCE_ADMIN", "COMMERCE_MANAGER", "COMMERCE_ANALYST", "VENDOR", "CUSTOMER"}
    ),
    WAREHOUSING: frozenset(
        {
            "WAREHOUSE_ADMIN",
            "WAREHOUSE_MANAGER",
            "WAREHOUSE_ANALYST",
            "BILLING_MANAGER",
            "WAREHOUSE_OPERATOR",
            "WAREHOUSE_STAFF",
        }
    ),
    COURIER_SERVICES: frozenset(
        {
            "COURIER_ADMIN",
            "FLEET_MANAGER",
            "COURIER_ANALYST",
            "PAYOUT_MANAGER",
            "DRIVER_SUPERVISOR",
            "DRIVER",
        }
    ),
}

REFUND_ROLES = frozenset(
    {
        "SUPER_ADMIN",
        "PLATFORM_ADMIN",
        "COMMERCE_ADMIN",
        "COMMERCE_MANAGER",
        "WAREHOUSE_ADMIN",
        "WAREHOUSE_MANAGER",
        "BILLING_MANAGER",
        "COURIER_ADMIN",
        "FLEET_MANAGER",
        "PAYOUT_MANAGER",
    }
)

CAPTURE_ROLES = frozenset(
    {
        "SUPER_ADMIN",
        "PLATFORM_ADMIN",
        "COMMERCE_ADMIN",
        "COMMERCE_MANAGER",
        "WAREHOUSE_ADMIN",
        "WAREHOUSE_MANAGER",
        "COURIER_ADMIN",
        "FLEET_MANAGER",
    }
)

VIEW_ALL_ROLES = frozenset(
    {
        "SUPER_ADMIN",
        "PLATFORM_ADMIN",
        "PLATFORM_ANALYST",
        "COMMERCE_ADMIN",
        "COMMERCE_MANAGER",
        "COMMERCE_ANALYST",
        "WAREHOUSE_ADMIN",
        "WAREHOUSE_MANAGER",
        "WAREHOUSE_ANALYST",
        "COURIER_ADMIN",
        "FLEET_MANAGER",
        "COURIER_ANALYST",
    }
)

QUEUE_ADMIN_ROLES = frozenset({"SUPER_ADMIN", "PLATFORM_ADMIN"})

PAYOUT_PROCESS = "PAYOUT_PROCESS"

OwnerLookup = Callable[[str], Awaitable[Optional[str]]]


def _normalise_role(role: str) -> str:
    role = role.strip().upper()
    return role[len(ROLE_PREFIX):] if role.startswith(ROLE_PREFIX) else role


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    subject: str
    roles: FrozenSet[str] = field(default_factory=frozenset)
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    vendor_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_claims(cls, claims: Dict[str, object]) -> "Principal":
        """Build a principal from decoded token claims (sub, roles, permissions, vendor_ids)."""

        def strings(key: str) -> Iterable[str]:
            value = claims.get(key) or []
            if isinstance(value, str):
                value = [value]
            return [str(item) for item in value]

        return cls(
            subject=str(claims.get("sub") or ""),
            roles=frozenset(_normalise_role(role) for role in strings("roles")),
            permissions=frozenset(p.strip().upper() for p in strings("permissions")),
            vendor_ids=frozenset(strings("vendor_ids")),
        )

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return not self.roles.isdisjoint(roles)


def domain_for_order(order_id: Optional[str]) -> str:
    """Business domain of an order, from its id prefix."""
    if order_id is None:
        return "UNKNOWN"
    for domain, prefixes in DOMAIN_ORDER_PREFIXES.items():
        if order_id.startswith(prefixes):
            return domain
    return SOCIAL_COMMERCE


def highest_limit(
    principal: Principal, limits: Dict[str, Optional[Decimal]]
) -> Optional[Decimal]:
    """Largest limit among the principal's roles; None when unlimited, 0 when none apply."""
    highest = Decimal("0")
    for role in principal.roles:
        if role not in limits:
            continue
        limit = limits[role]
        if limit is None:
            return None
        highest = max(highest, limit)
    return highest


def within_limit(
    principal: Principal, amount: Optional[Decimal], limits: Dict[str, Optional[Decimal]]
) -> bool:
    if amount is None or amount <= 0:
        # Missing or non-positive amounts are rejected by request validation
        return True
    limit = highest_limit(principal, limits)
    return limit is None or amount <= limit


class PaymentAuthorizer:
    """
    Decides whether a principal may run a payment operation.

    The can_* methods answer yes or no; the authorize_* coroutines raise
    PaymentAuthorizationError and look up transaction owners when role
    checks alone are not enough.
    """

    def has_domain_access(self, principal: Principal, domain: str) -> bool:
        if principal.has_any_role(GLOBAL_ROLES):
            return True
        if f"DOMAIN_{domain.upper()}" in principal.permissions:
            return True
        return principal.has_any_role(DOMAIN_ROLES.get(domain, frozenset()))

    def can_process_payment(self, principal: Principal, request: PaymentRequest) -> bool:
        if not within_limit(principal, request.amount, PAYMENT_LIMITS):
            logger.warning(
                "payment_limit_exceeded",
                subject=principal.subject,
                order_id=request.order_id,
                amount=str(request.amount),
            )
            return False

        domain = domain_for_order(request.order_id)
        if not self.has_domain_access(principal, domain):
            logger.warning("payment_domain_denied", subject=principal.subject, domain=domain)
            return False
        return True

    def can_process_payout(self, principal: Principal, request: PayoutRequest) -> bool:
        if not within_limit(principal, request.amount, PAYOUT_LIMITS):
            logger.warning(
                "payout_limit_exceeded",
                subject=principal.subject,
                vendor_id=request.vendor_id,
                amount=str(request.amount),
            )
            return False

        if PAYOUT_PROCESS in principal.permissions or request.vendor_id in principal.vendor_ids:
            return True
        logger.warning(
            "payout_vendor_denied", subject=principal.subject, vendor_id=request.vendor_id
        )
        return False

    def can_refund_payment(
        self, principal: Principal, transaction_id: str, owner: Optional[str] = None
    ) -> bool:
        if principal.has_any_role(REFUND_ROLES):
            return True
        if owner is not None and owner == principal.subject:
            return True
        domain = domain_for_order(transaction_id)
        return self.has_domain_access(principal, domain) and principal.has_any_role(
            (f"{domain}_MANAGER", f"{domain}_ADMIN")
        )

    def can_capture_payment(self, principal: Principal, owner: Optional[str] = None) -> bool:
        if principal.has_any_role(CAPTURE_ROLES):
            return True
        return owner is not None and owner == principal.subject

    def can_view_all_payments(self, principal: Principal) -> bool:
        return principal.has_any_role(VIEW_ALL_ROLES)

    def can_view_payment(self, principal: Principal, owner: Optional[str] = None) -> bool:
        if self.can_view_all_payments(principal):
            return True
        return owner is not None and owner == principal.subject

    def can_manage_payment_queue(self, principal: Principal) -> bool:
        return principal.has_any_role(QUEUE_ADMIN_ROLES)

    # Raising variants used by the API

    def _deny(self, principal: Principal, message: str, **context: object) -> None:
        logger.warning("authorization_denied", subject=principal.subject, reason=message, **context)
        raise PaymentAuthorizationError(message, subject=principal.subject)

    def authorize_payment(self, principal: Principal, request: PaymentRequest) -> None:
        if not self.can_process_payment(principal, request):
            self._deny(principal, "Not allowed to process this payment", order_id=request.order_id)

    def authorize_payout(self, principal: Principal, request: PayoutRequest) -> None:
        if not self.can_process_payout(principal, request):
            self._deny(
                principal, "Not allowed to pay out to this vendor", vendor_id=request.vendor_id
            )

    def authorize_queue_management(self, principal: Principal) -> None:
        if not self.can_manage_payment_queue(principal):
            self._deny(principal, "Not allowed to manage the payment queue")

    async def authorize_refund(
        self, principal: Principal, transaction_id: str, owner_lookup: OwnerLookup
    ) -> None:
        if self.can_refund_payment(principal, transaction_id):
            return
        owner = await owner_lookup(transaction_id)
        if not self.can_refund_payment(principal, transaction_id, owner):
            self._deny(
                principal, "Not allowed to refund this payment", transaction_id=transaction_id
            )

    async def authorize_capture(
        self, principal: Principal, transaction_id: str, owner_lookup: OwnerLookup
    ) -> None:
        if self.can_capture_payment(principal):
            return
        if not self.can_capture_payment(principal, await owner_lookup(transaction_id)):
            self._deny(
                principal, "Not allowed to capture this payment", transaction_id=transaction_id
            )

    async def authorize_status(
        self, principal: Principal, transaction_id: str, owner_lookup: OwnerLookup
    ) -> None:
        if self.can_view_all_payments(principal):
            return
        if not self.can_view_payment(principal, await owner_lookup(transaction_id)):
            self._deny(principal, "Not allowed to view this payment", transaction_id=transaction_id)
