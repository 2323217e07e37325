"""
Cart types.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from cartflow._types import Identity, StockKey


@dataclass(frozen=True, slots=True)
class LineItem:
    """
    One (product, variant) in a cart.

    unit_price is captured when the line is added; later catalog price
    changes do not touch it.
    """

    product_id: str
    variant_key: str
    quantity: int
    unit_price: Decimal
    unit_price_original: Decimal
    display_name: str
    image_ref: str | None = None

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.variant_key)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class Cart:
    """
    Immutable cart value. At most one line per (product, variant).

    Note: Every operation in cartflow.cart returns a new Cart.
    """

    owner: Identity
    items: tuple[LineItem, ...] = ()
    discount_percent: int = 0
    promo_code: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def empty(cls, owner: Identity) -> Cart:
        return cls(owner=owner)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def find(self, product_id: str, variant_key: str) -> LineItem | None:
        key = StockKey(product_id, variant_key)
        return next((i for i in self.items if i.key == key), None)

    def fingerprint(self) -> str:
        """Stable digest of lines and promo, independent of line order."""
        lines = sorted(
            f"{i.product_id}/{i.variant_key}:{i.quantity}@{i.unit_price}" for i in self.items
        )
        raw = "|".join(lines) + f"#{self.promo_code or ''}"
        return hashlib.sha256(raw.encode()).hexdigest()


__all__ = ("LineItem", "Cart")
