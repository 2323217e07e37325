"""
Cart — immutable cart values, pure operations and two-tier storage.

    from cartflow import cart as C

    match C.add_item(cart, product, "M", 2):
        case Ok(cart): ...
        case Error(InvalidQuantity() as e): ...

    store = C.CartStore(C.SQLAlchemyCartTier(session_factory))
    await store.add_item(Identity.user("u1"), product, "M", 2)
    await store.merge_on_sign_in(Identity.anonymous(sid), Identity.user("u1"))
"""

from __future__ import annotations

from cartflow.cart._types import LineItem, Cart
from cartflow.cart._ops import (
    add_item,
    update_quantity,
    remove_item,
    clear,
    apply_promo_code,
    merge_into,
)
from cartflow.cart._codec import encode_line, decode_line, encode_cart, decode_cart
from cartflow.cart._tiers import CartTier, LocalCartTier, SQLAlchemyCartTier
from cartflow.cart._store import CartStore

__all__ = (
    "LineItem",
    "Cart",
    "add_item",
    "update_quantity",
    "remove_item",
    "clear",
    "apply_promo_code",
    "merge_into",
    "encode_line",
    "decode_line",
    "encode_cart",
    "decode_cart",
    "CartTier",
    "LocalCartTier",
    "SQLAlchemyCartTier",
    "CartStore",
)
