"""
Orders — order model, repositories and status lifecycle.

    from cartflow import orders as O

    lifecycle = O.OrderLifecycle(O.MemoryOrderRepository(), ledger)

    await lifecycle.advance(order_id, O.OrderStatus.PROCESSING)
    await lifecycle.cancel(order_id, "changed my mind")   # restores stock
    await lifecycle.mark_paid(order_id)                   # idempotent
"""

from __future__ import annotations

from cartflow.orders._types import (
    OrderStatus,
    TRANSITIONS,
    StatusChange,
    PaymentMethod,
    Address,
    validate_address,
    Order,
    PlacementResult,
    new_order_id,
    new_order_number,
)
from cartflow.orders._repo import (
    OrderRepository,
    MemoryOrderRepository,
    SQLAlchemyOrderRepository,
)
from cartflow.orders._lifecycle import OrderLifecycle

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
    "OrderRepository",
    "MemoryOrderRepository",
    "SQLAlchemyOrderRepository",
    "OrderLifecycle",
)
