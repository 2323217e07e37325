"""
SQLAlchemy stock ledger.

Decrement is a single conditional statement:

    UPDATE stock_levels
       SET available = available - :q
     WHERE product_id = :p AND variant_key = :v AND available >= :q

The row count decides success, so two checkouts racing for the last unit
cannot both win and the level can never go below zero.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from kungfu import Result, Ok, Error
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cartflow.db import StockLevelTable
from cartflow.errors import InsufficientStock, NotFound

logger = structlog.get_logger(__name__)


class SQLAlchemyLedger:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session = session_factory

    async def get_available(
        self, product_id: str, variant_key: str
    ) -> Result[int, NotFound]:
        async with self._session() as session:
            level = await self._read(session, product_id, variant_key)
        if level is None:
            return Error(NotFound("variant", f"{product_id}/{variant_key}"))
        return Ok(level)

    async def try_decrement(
        self, product_id: str, variant_key: str, quantity: int
    ) -> Result[int, InsufficientStock | NotFound]:
        if quantity < 1:
            raise ValueError(f"Decrement quantity must be positive, got {quantity}")

        async with self._session() as session, session.begin():
            stmt = (
                update(StockLevelTable)
                .where(
                    StockLevelTable.product_id == product_id,
                    StockLevelTable.variant_key == variant_key,
                    StockLevelTable.available >= quantity,
                )
                .values(
                    available=StockLevelTable.available - quantity,
                    updated_at=datetime.now(),
                )
            )
            result = await session.execute(stmt)
            applied = result.rowcount == 1  # type: ignore[attr-defined]
            level = await self._read(session, product_id, variant_key)

        if level is None:
            return Error(NotFound("variant", f"{product_id}/{variant_key}"))
        if not applied:
            return Error(InsufficientStock(product_id, variant_key, quantity, level))

        logger.debug(
            "stock_decremented",
            key=f"{product_id}/{variant_key}",
            quantity=quantity,
            remaining=level,
        )
        return Ok(level)

    async def increment(self, product_id: str, variant_key: str, quantity: int) -> int:
        if quantity < 0:
            raise ValueError(f"Increment quantity must not be negative, got {quantity}")

        async with self._session() as session, session.begin():
            stmt = (
                update(StockLevelTable)
                .where(
                    StockLevelTable.product_id == product_id,
                    StockLevelTable.variant_key == variant_key,
                )
                .values(
                    available=StockLevelTable.available + quantity,
                    updated_at=datetime.now(),
                )
            )
            result = await session.execute(stmt)
            if result.rowcount != 1:  # type: ignore[attr-defined]
                session.add(
                    StockLevelTable(
                        product_id=product_id,
                        variant_key=variant_key,
                        available=quantity,
                        updated_at=datetime.now(),
                    )
                )
                await session.flush()
            level = await self._read(session, product_id, variant_key)

        logger.debug("stock_incremented", key=f"{product_id}/{variant_key}", level=level)
        return level or 0

    async def set_level(self, product_id: str, variant_key: str, quantity: int) -> None:
        if quantity < 0:
            raise ValueError(f"Stock level must not be negative, got {quantity}")

        async with self._session() as session, session.begin():
            row = await session.get(StockLevelTable, (product_id, variant_key))
            if row is None:
                session.add(
                    StockLevelTable(
                        product_id=product_id,
                        variant_key=variant_key,
                        available=quantity,
                        updated_at=datetime.now(),
                    )
                )
            else:
                row.available = quantity
                row.updated_at = datetime.now()

    @staticmethod
    async def _read(session: AsyncSession, product_id: str, variant_key: str) -> int | None:
        return (
            await session.execute(
                select(StockLevelTable.available).where(
                    StockLevelTable.product_id == product_id,
                    StockLevelTable.variant_key == variant_key,
                )
            )
        ).scalar_one_or_none()


__all__ = ("SQLAlchemyLedger",)
