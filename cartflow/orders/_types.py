"""
Order types.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from kungfu import Result, Ok, Error

from cartflow.cart import LineItem
from cartflow.errors import InvalidAddress
from cartflow.pricing import Totals

# ═══════════════════════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════════════════════


class OrderStatus(Enum):
    """
    Order lifecycle.

        pending → processing → shipped → delivered
           └──────────┴──→ cancelled

    VOIDED is internal: the record was written but its placement rolled back.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    VOIDED = "voided"

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]

    def can_become(self, target: OrderStatus) -> bool:
        return target in TRANSITIONS[self]


TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.VOIDED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class StatusChange:
    status: OrderStatus
    at: datetime
    note: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Payment
# ═══════════════════════════════════════════════════════════════════════════════


class PaymentMethod(Enum):
    COD = "cod"
    CARD = "card"
    UPI = "upi"
    PREPAID = "prepaid"

    @property
    def captures_on_placement(self) -> bool:
        """
        Paid the moment the order exists.

        Card and UPI are confirmed later by the gateway (mark_order_paid).
        """
        return self is PaymentMethod.PREPAID


# ═══════════════════════════════════════════════════════════════════════════════
# Address
# ═══════════════════════════════════════════════════════════════════════════════

_POSTAL = re.compile(r"^\d{6}$")


@dataclass(frozen=True, slots=True)
class Address:
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "India"


def validate_address(address: Address) -> Result[Address, InvalidAddress]:
    """Street, city and state are required; postal code is six digits."""
    bad = [
        name
        for name in ("street", "city", "state")
        if not getattr(address, name).strip()
    ]
    if not _POSTAL.match(re.sub(r"\D", "", address.postal_code)):
        bad.append("postal_code")
    if bad:
        return Error(InvalidAddress(tuple(bad)))
    return Ok(address)


# ═══════════════════════════════════════════════════════════════════════════════
# Order
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Order:
    """
    Placed order.

    Note: items is a copy of the cart lines at placement time. Only status,
    is_paid, status_history and cancellation_reason ever change.
    """

    id: str
    order_number: str
    user_id: str
    items: tuple[LineItem, ...]
    shipping_address: Address
    billing_address: Address
    payment_method: PaymentMethod
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal
    promo_code: str | None
    is_paid: bool
    created_at: datetime
    status: OrderStatus
    status_history: tuple[StatusChange, ...]
    cancellation_reason: str | None = None

    @property
    def totals(self) -> Totals:
        return Totals(
            subtotal=self.subtotal,
            discount=self.discount,
            tax=self.tax,
            shipping_fee=self.shipping_fee,
            total=self.total,
        )

    def moved_to(self, status: OrderStatus, at: datetime, note: str | None = None) -> Order:
        return replace(
            self,
            status=status,
            status_history=(*self.status_history, StatusChange(status, at, note)),
        )


@dataclass(frozen=True, slots=True)
class PlacementResult:
    order_id: str
    order_number: str
    totals: Totals
    from_cache: bool = False


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex[:20]}"


def new_order_number(now: datetime) -> str:
    """ORD-<epoch ms>-<4 digits>"""
    return f"ORD-{int(now.timestamp() * 1000)}-{1000 + secrets.randbelow(9000)}"


__all__ = (
    "OrderStatus",
    "TRANSITIONS",
    "StatusChange",
    "PaymentMethod",
    "Address",
    "validate_address",
    "Order",
    "PlacementResult",
    "new_order_id",
    "new_order_number",
)
