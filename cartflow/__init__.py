"""
cartflow — cart & order placement engine.

    from cartflow import cart as C          # Immutable carts, two-tier store
    from cartflow import stock as St        # Atomic stock ledger
    from cartflow import reservation as R   # TTL holds on stock
    from cartflow import checkout as Co     # Order placement saga
    from cartflow import orders as O        # Order lifecycle

    shop = await Storefront.in_memory(products)
"""

from cartflow import pricing
from cartflow import stock
from cartflow import reservation
from cartflow import cart
from cartflow import saga
from cartflow import idempotency
from cartflow import orders
from cartflow import checkout
from cartflow._types import (
    Lazy,
    Identity,
    StockKey,
)
from cartflow.settings import Settings
from cartflow.storefront import Storefront

__version__ = "0.1.0"

__all__ = (
    "pricing",
    "stock",
    "reservation",
    "cart",
    "saga",
    "idempotency",
    "orders",
    "checkout",
    "Lazy",
    "Identity",
    "StockKey",
    "Settings",
    "Storefront",
)
