"""
JSON payload codec for carts and line items.

Money is stored as strings so Decimal values round-trip exactly.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from cartflow._types import Identity
from cartflow.cart._types import Cart, LineItem


def encode_line(line: LineItem) -> dict[str, Any]:
    return {
        "product_id": line.product_id,
        "variant_key": line.variant_key,
        "quantity": line.quantity,
        "unit_price": str(line.unit_price),
        "unit_price_original": str(line.unit_price_original),
        "display_name": line.display_name,
        "image_ref": line.image_ref,
    }


def decode_line(data: dict[str, Any]) -> LineItem:
    return LineItem(
        product_id=data["product_id"],
        variant_key=data["variant_key"],
        quantity=int(data["quantity"]),
        unit_price=Decimal(data["unit_price"]),
        unit_price_original=Decimal(data["unit_price_original"]),
        display_name=data["display_name"],
        image_ref=data.get("image_ref"),
    )


def encode_cart(cart: Cart) -> dict[str, Any]:
    return {
        "owner": cart.owner.key,
        "items": [encode_line(i) for i in cart.items],
        "discount_percent": cart.discount_percent,
        "promo_code": cart.promo_code,
        "updated_at": cart.updated_at.isoformat() if cart.updated_at else None,
    }


def decode_cart(payload: dict[str, Any]) -> Cart:
    updated_at = payload.get("updated_at")
    return Cart(
        owner=Identity.from_key(payload["owner"]),
        items=tuple(decode_line(i) for i in payload.get("items", ())),
        discount_percent=int(payload.get("discount_percent", 0)),
        promo_code=payload.get("promo_code"),
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
    )


__all__ = ("encode_line", "decode_line", "encode_cart", "decode_cart")
