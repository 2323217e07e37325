"""
Totals calculator.

All monetary intermediates round to two places, half-up, so the total shown
for a cart and the total persisted on its order never differ by a cent.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Protocol, TYPE_CHECKING
from collections.abc import Iterable

if TYPE_CHECKING:
    from cartflow.settings import Settings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value: Decimal | int | float | str) -> Decimal:
    """Coerce to a two-place Decimal. Floats go through str() first."""
    if isinstance(value, Decimal):
        return round2(value)
    return round2(Decimal(str(value)))


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class Priced(Protocol):
    @property
    def unit_price(self) -> Decimal: ...

    @property
    def quantity(self) -> int: ...


@dataclass(frozen=True, slots=True)
class PricingPolicy:
    """Tax rate plus shipping rule. Free shipping when subtotal > threshold."""

    tax_rate: Decimal = Decimal("0.18")
    free_shipping_threshold: Decimal = Decimal("1000")
    flat_shipping_fee: Decimal = Decimal("100")

    @classmethod
    def from_settings(cls, settings: Settings) -> PricingPolicy:
        return cls(
            tax_rate=settings.tax_rate,
            free_shipping_threshold=settings.free_shipping_threshold,
            flat_shipping_fee=settings.flat_shipping_fee,
        )


@dataclass(frozen=True, slots=True)
class Totals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal

    @classmethod
    def zero(cls) -> Totals:
        return cls(ZERO, ZERO, ZERO, ZERO, ZERO)


def compute_totals(
    items: Iterable[Priced],
    discount_percent: int,
    policy: PricingPolicy,
) -> Totals:
    """
    Compute cart totals.

        subtotal = Σ unit_price × quantity
        discount = subtotal × discount_percent / 100
        tax      = (subtotal − discount) × tax_rate
        shipping = 0 if subtotal > threshold else flat fee
        total    = subtotal − discount + tax + shipping

    An empty cart totals to zero, shipping included.
    """
    lines = list(items)
    if not lines:
        return Totals.zero()

    subtotal = round2(sum((i.unit_price * i.quantity for i in lines), Decimal(0)))
    discount = round2(subtotal * Decimal(discount_percent) / Decimal(100))
    tax = round2((subtotal - discount) * policy.tax_rate)
    shipping_fee = (
        ZERO if subtotal > policy.free_shipping_threshold else round2(policy.flat_shipping_fee)
    )
    total = round2(subtotal - discount + tax + shipping_fee)

    return Totals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        shipping_fee=shipping_fee,
        total=total,
    )


__all__ = (
    "Priced",
    "PricingPolicy",
    "Totals",
    "money",
    "round2",
    "compute_totals",
)
