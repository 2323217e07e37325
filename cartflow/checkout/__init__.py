"""
Checkout — order placement orchestrator.

    from cartflow import checkout as Co

    placement = Co.OrderPlacement(
        ledger=ledger,
        reservations=reservations,
        carts=carts,
        orders=orders,
        lifecycle=lifecycle,
    )

    match await placement.place_order(Co.PlaceOrder(
        user_id="u1",
        cart=cart,
        shipping_address=address,
        idempotency_token="7c1f...",
    )):
        case Ok(placed):
            placed.order_number
        case Error(StockUnavailable(shortages=s)): ...
        case Error(RollbackIncomplete()): ...   # contact support
"""

from __future__ import annotations

from cartflow.checkout._types import PlaceOrder
from cartflow.checkout._placement import OrderPlacement

__all__ = ("PlaceOrder", "OrderPlacement")
