"""
Cart storage tiers.

    LocalCartTier       in-process LRU, survives a durable outage
    SQLAlchemyCartTier  durable, one row per identity key, last writer wins

Tiers raise on infrastructure failure; CartStore decides what a failure
means.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cartflow.db import CartTable
from cartflow.cart._types import Cart
from cartflow.cart._codec import encode_cart, decode_cart


class CartTier(Protocol):
    """
    Cart storage tier protocol.

    Example — a key/value tier:

        class RedisCartTier:
            @property
            def name(self) -> str:
                return "redis"

            async def get(self, key: str) -> Cart | None:
                raw = await self.client.get(f"cart:{key}")
                return decode_cart(json.loads(raw)) if raw else None
            ...
    """

    @property
    def name(self) -> str: ...

    async def get(self, key: str) -> Cart | None:
        """Cart stored under the identity key, None when absent."""
        ...

    async def put(self, cart: Cart) -> None:
        """Store under cart.owner.key, replacing any previous value."""
        ...

    async def delete(self, key: str) -> bool: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Local Tier — In-Memory LRU
# ═══════════════════════════════════════════════════════════════════════════════

class LocalCartTier:
    """
    In-memory LRU cart tier.

    Example:
        tier = LocalCartTier(max_size=10_000)
    """

    def __init__(self, max_size: int = 1000) -> None:
        self._max_size = max_size
        self._carts: dict[str, Cart] = {}
        self._order: list[str] = []

    @property
    def name(self) -> str:
        return "local"

    async def get(self, key: str) -> Cart | None:
        if key in self._carts:
            # Move to end (most recent)
            self._order.remove(key)
            self._order.append(key)
            return self._carts[key]
        return None

    async def put(self, cart: Cart) -> None:
        key = cart.owner.key
        if key in self._carts:
            self._order.remove(key)
        elif len(self._carts) >= self._max_size:
            oldest = self._order.pop(0)
            del self._carts[oldest]

        self._carts[key] = cart
        self._order.append(key)

    async def delete(self, key: str) -> bool:
        if key in self._carts:
            del self._carts[key]
            self._order.remove(key)
            return True
        return False

    def __len__(self) -> int:
        return len(self._carts)


# ═══════════════════════════════════════════════════════════════════════════════
# Durable Tier — SQLAlchemy
# ═══════════════════════════════════════════════════════════════════════════════

class SQLAlchemyCartTier:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session = session_factory

    @property
    def name(self) -> str:
        return "sqlalchemy"

    async def get(self, key: str) -> Cart | None:
        async with self._session() as session:
            row = await session.get(CartTable, key)
            return decode_cart(row.payload) if row else None

    async def put(self, cart: Cart) -> None:
        async with self._session() as session, session.begin():
            await session.merge(
                CartTable(
                    identity_key=cart.owner.key,
                    payload=encode_cart(cart),
                    updated_at=cart.updated_at or datetime.now(),
                )
            )

    async def delete(self, key: str) -> bool:
        async with self._session() as session, session.begin():
            row = await session.get(CartTable, key)
            if row is None:
                return False
            await session.delete(row)
            return True


__all__ = ("CartTier", "LocalCartTier", "SQLAlchemyCartTier")
