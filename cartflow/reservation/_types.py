"""
Reservation types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cartflow._types import StockKey


@dataclass(frozen=True, slots=True)
class Reservation:
    """
    A hold on `quantity` units of one variant.

    Lifecycle:
        created at checkout start
        → released explicitly (placed or failed)
        → or expired at expires_at (abandoned)
    """

    id: str
    product_id: str
    variant_key: str
    quantity: int
    owner_id: str
    created_at: datetime
    expires_at: datetime

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.variant_key)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


__all__ = ("Reservation",)
