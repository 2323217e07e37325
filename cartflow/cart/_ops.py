"""
Pure cart operations.

Each takes a Cart and returns a new one (or an Error with the input cart
left untouched). No I/O.
"""

from __future__ import annotations

from dataclasses import replace

from kungfu import Result, Ok, Error

from cartflow.catalog import Product
from cartflow.errors import InvalidQuantity, InvalidPromoCode, NotFound
from cartflow.pricing import PromoRules, lookup_promo, normalise
from cartflow.cart._types import Cart, LineItem


def add_item(
    cart: Cart,
    product: Product,
    variant_key: str,
    quantity: int,
) -> Result[Cart, InvalidQuantity | NotFound]:
    """
    Add quantity of a variant. An existing line is incremented, otherwise a
    new line snapshots the product's current price, name and image.
    """
    if quantity < 1:
        return Error(InvalidQuantity(quantity))
    if not product.has_variant(variant_key):
        return Error(NotFound("variant", f"{product.id}/{variant_key}"))

    existing = cart.find(product.id, variant_key)
    if existing is not None:
        return Ok(_replace_line(cart, replace(existing, quantity=existing.quantity + quantity)))

    line = LineItem(
        product_id=product.id,
        variant_key=variant_key,
        quantity=quantity,
        unit_price=product.current_price,
        unit_price_original=product.price,
        display_name=product.name,
        image_ref=product.image_ref,
    )
    return Ok(replace(cart, items=(*cart.items, line)))


def update_quantity(
    cart: Cart,
    product_id: str,
    variant_key: str,
    new_quantity: int,
) -> Result[Cart, InvalidQuantity | NotFound]:
    if new_quantity < 1:
        return Error(InvalidQuantity(new_quantity))
    existing = cart.find(product_id, variant_key)
    if existing is None:
        return Error(NotFound("cart_item", f"{product_id}/{variant_key}"))
    return Ok(_replace_line(cart, replace(existing, quantity=new_quantity)))


def remove_item(cart: Cart, product_id: str, variant_key: str) -> Cart:
    """Drop the line. Absent lines are a no-op."""
    items = tuple(
        i for i in cart.items if not (i.product_id == product_id and i.variant_key == variant_key)
    )
    return replace(cart, items=items)


def clear(cart: Cart) -> Cart:
    """Empty the cart and reset any promo."""
    return replace(cart, items=(), discount_percent=0, promo_code=None)


def apply_promo_code(
    cart: Cart,
    code: str,
    rules: PromoRules,
) -> Result[Cart, InvalidPromoCode]:
    percent = lookup_promo(rules, code)
    if percent is None:
        return Error(InvalidPromoCode(code))
    return Ok(replace(cart, discount_percent=percent, promo_code=normalise(code)))


def merge_into(target: Cart, source: Cart) -> Cart:
    """
    Fold source's lines into target.

    Matching keys sum quantities (target's price snapshot is kept); others
    are appended. The higher discount wins, together with its promo code.
    """
    merged = target
    for line in source.items:
        existing = merged.find(line.product_id, line.variant_key)
        if existing is None:
            merged = replace(merged, items=(*merged.items, line))
        else:
            merged = _replace_line(
                merged, replace(existing, quantity=existing.quantity + line.quantity)
            )

    if source.discount_percent > target.discount_percent:
        merged = replace(
            merged,
            discount_percent=source.discount_percent,
            promo_code=source.promo_code,
        )
    return merged


def _replace_line(cart: Cart, line: LineItem) -> Cart:
    return replace(cart, items=tuple(line if i.key == line.key else i for i in cart.items))


__all__ = (
    "add_item",
    "update_quantity",
    "remove_item",
    "clear",
    "apply_promo_code",
    "merge_into",
)
