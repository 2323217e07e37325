"""
In-memory stock ledger.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict

import structlog
from kungfu import Result, Ok, Error

from cartflow._types import StockKey
from cartflow.errors import InsufficientStock, NotFound
from cartflow.stock._types import StockLevel

logger = structlog.get_logger(__name__)


class MemoryLedger:
    """
    In-memory stock ledger with one lock per (product, variant).

    Note: Only for single-process use and tests. `latency` simulates a
    storage round trip inside the critical section so races are observable.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self._levels: dict[StockKey, int] = {}
        self._locks: defaultdict[StockKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._latency = latency

    async def _round_trip(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)

    async def get_available(
        self, product_id: str, variant_key: str
    ) -> Result[int, NotFound]:
        key = StockKey(product_id, variant_key)
        await self._round_trip()
        level = self._levels.get(key)
        if level is None:
            return Error(NotFound("variant", str(key)))
        return Ok(level)

    async def try_decrement(
        self, product_id: str, variant_key: str, quantity: int
    ) -> Result[int, InsufficientStock | NotFound]:
        if quantity < 1:
            raise ValueError(f"Decrement quantity must be positive, got {quantity}")

        key = StockKey(product_id, variant_key)
        async with self._locks[key]:
            await self._round_trip()
            level = self._levels.get(key)
            if level is None:
                return Error(NotFound("variant", str(key)))
            if level < quantity:
                return Error(InsufficientStock(product_id, variant_key, quantity, level))
            self._levels[key] = level - quantity

        logger.debug("stock_decremented", key=str(key), quantity=quantity, remaining=level - quantity)
        return Ok(level - quantity)

    async def increment(self, product_id: str, variant_key: str, quantity: int) -> int:
        if quantity < 0:
            raise ValueError(f"Increment quantity must not be negative, got {quantity}")

        key = StockKey(product_id, variant_key)
        async with self._locks[key]:
            await self._round_trip()
            level = self._levels.get(key, 0) + quantity
            self._levels[key] = level

        logger.debug("stock_incremented", key=str(key), quantity=quantity, level=level)
        return level

    async def set_level(self, product_id: str, variant_key: str, quantity: int) -> None:
        if quantity < 0:
            raise ValueError(f"Stock level must not be negative, got {quantity}")
        key = StockKey(product_id, variant_key)
        async with self._locks[key]:
            self._levels[key] = quantity

    def snapshot(self) -> list[StockLevel]:
        return [StockLevel(k, v) for k, v in self._levels.items()]


__all__ = ("MemoryLedger",)
