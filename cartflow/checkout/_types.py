"""
Checkout request type.
"""

from __future__ import annotations

from dataclasses import dataclass

from cartflow.cart import Cart
from cartflow.orders import Address, PaymentMethod


@dataclass(frozen=True, slots=True)
class PlaceOrder:
    """
    One placement attempt.

    billing_address defaults to the shipping address. With an
    idempotency_token, repeats inside the dedupe window return the first
    outcome instead of placing again.
    """

    user_id: str
    cart: Cart
    shipping_address: Address
    payment_method: PaymentMethod = PaymentMethod.COD
    billing_address: Address | None = None
    idempotency_token: str | None = None

    @property
    def idempotency_key(self) -> str | None:
        if self.idempotency_token is None:
            return None
        return f"order:{self.user_id}:{self.idempotency_token}"


__all__ = ("PlaceOrder",)
