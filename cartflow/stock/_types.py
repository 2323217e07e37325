"""
Stock ledger protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from kungfu import Result

from cartflow._types import StockKey
from cartflow.errors import InsufficientStock, NotFound


@dataclass(frozen=True, slots=True)
class StockLevel:
    key: StockKey
    available: int


class StockLedger(Protocol):
    """
    Stock ledger protocol.

    Business outcomes come back as Results. Infrastructure failures raise
    and are handled by the retry boundary (cartflow.retry).
    """

    async def get_available(
        self, product_id: str, variant_key: str
    ) -> Result[int, NotFound]:
        """Current available quantity. NotFound for an unknown variant."""
        ...

    async def try_decrement(
        self, product_id: str, variant_key: str, quantity: int
    ) -> Result[int, InsufficientStock | NotFound]:
        """
        Atomically decrement iff available >= quantity.

        Returns Ok(remaining). Must be safe under concurrent callers for the
        same key.
        """
        ...

    async def increment(self, product_id: str, variant_key: str, quantity: int) -> int:
        """Add stock back (release or restock). Creates unknown keys. Returns new level."""
        ...

    async def set_level(self, product_id: str, variant_key: str, quantity: int) -> None:
        """Overwrite the level. Seeding and admin restock only."""
        ...


__all__ = ("StockLedger", "StockLevel")
