"""
Order repositories.

Orders are written once by placement; afterwards only the lifecycle
fields change through update(). Infrastructure failures raise.

update() is a compare-and-set on (status, is_paid): of two writers that
read the same order, only the first one to write wins.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime
from typing import Any, Protocol

from kungfu import Result, Ok, Error
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cartflow.cart import encode_line, decode_line
from cartflow.db import OrderTable
from cartflow.errors import NotFound
from cartflow.orders._types import (
    Address,
    Order,
    OrderStatus,
    PaymentMethod,
    StatusChange,
)


class OrderRepository(Protocol):
    async def create(self, order: Order) -> None: ...

    async def get(self, order_id: str) -> Result[Order, NotFound]: ...

    async def list_for_user(self, user_id: str) -> list[Order]:
        """Newest first."""
        ...

    async def update(self, order: Order, previous: Order) -> bool:
        """
        Persist status, is_paid, status_history and cancellation_reason.

        Applies only while the stored order still has previous.status and
        previous.is_paid. False means another writer changed it first.
        """
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryOrderRepository:
    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()

    async def create(self, order: Order) -> None:
        async with self._lock:
            if order.id in self._orders:
                raise ValueError(f"Order {order.id} already exists")
            self._orders[order.id] = order

    async def get(self, order_id: str) -> Result[Order, NotFound]:
        order = self._orders.get(order_id)
        return Ok(order) if order else Error(NotFound("order", order_id))

    async def list_for_user(self, user_id: str) -> list[Order]:
        orders = [o for o in self._orders.values() if o.user_id == user_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def update(self, order: Order, previous: Order) -> bool:
        async with self._lock:
            current = self._orders.get(order.id)
            if current is None:
                raise KeyError(order.id)
            if (current.status, current.is_paid) != (previous.status, previous.is_paid):
                return False
            self._orders[order.id] = order
            return True

    def all(self) -> list[Order]:
        return list(self._orders.values())


# ═══════════════════════════════════════════════════════════════════════════════
# SQLAlchemy
# ═══════════════════════════════════════════════════════════════════════════════


class SQLAlchemyOrderRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session = session_factory

    async def create(self, order: Order) -> None:
        async with self._session() as session, session.begin():
            session.add(_to_row(order))

    async def get(self, order_id: str) -> Result[Order, NotFound]:
        async with self._session() as session:
            row = await session.get(OrderTable, order_id)
            return Ok(_from_row(row)) if row else Error(NotFound("order", order_id))

    async def list_for_user(self, user_id: str) -> list[Order]:
        async with self._session() as session:
            rows = (
                await session.execute(
                    select(OrderTable)
                    .where(OrderTable.user_id == user_id)
                    .order_by(OrderTable.created_at.desc())
                )
            ).scalars()
            return [_from_row(r) for r in rows]

    async def update(self, order: Order, previous: Order) -> bool:
        async with self._session() as session, session.begin():
            stmt = (
                update(OrderTable)
                .where(
                    OrderTable.id == order.id,
                    OrderTable.status == previous.status.value,
                    OrderTable.is_paid == previous.is_paid,
                )
                .values(
                    status=order.status.value,
                    is_paid=order.is_paid,
                    status_history=[_encode_change(c) for c in order.status_history],
                    cancellation_reason=order.cancellation_reason,
                )
            )
            result = await session.execute(stmt)
            return result.rowcount == 1  # type: ignore[attr-defined]


def _encode_change(change: StatusChange) -> dict[str, Any]:
    return {"status": change.status.value, "at": change.at.isoformat(), "note": change.note}


def _to_row(order: Order) -> OrderTable:
    return OrderTable(
        id=order.id,
        order_number=order.order_number,
        user_id=order.user_id,
        items=[encode_line(i) for i in order.items],
        shipping_address=asdict(order.shipping_address),
        billing_address=asdict(order.billing_address),
        payment_method=order.payment_method.value,
        promo_code=order.promo_code,
        subtotal=order.subtotal,
        discount=order.discount,
        tax=order.tax,
        shipping_fee=order.shipping_fee,
        total=order.total,
        is_paid=order.is_paid,
        status=order.status.value,
        status_history=[_encode_change(c) for c in order.status_history],
        cancellation_reason=order.cancellation_reason,
        created_at=order.created_at,
    )


def _from_row(row: OrderTable) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        user_id=row.user_id,
        items=tuple(decode_line(i) for i in row.items),
        shipping_address=Address(**row.shipping_address),
        billing_address=Address(**row.billing_address),
        payment_method=PaymentMethod(row.payment_method),
        subtotal=row.subtotal,
        discount=row.discount,
        tax=row.tax,
        shipping_fee=row.shipping_fee,
        total=row.total,
        promo_code=row.promo_code,
        is_paid=row.is_paid,
        created_at=row.created_at,
        status=OrderStatus(row.status),
        status_history=tuple(
            StatusChange(OrderStatus(c["status"]), datetime.fromisoformat(c["at"]), c.get("note"))
            for c in row.status_history
        ),
        cancellation_reason=row.cancellation_reason,
    )


__all__ = ("OrderRepository", "MemoryOrderRepository", "SQLAlchemyOrderRepository")
