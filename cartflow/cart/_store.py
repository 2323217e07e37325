"""
Cart store — two-tier persistence with identity passed explicitly.

    load:  durable tier → (only if it raised) local tier → empty cart
    save:  local tier, then durable tier behind the retry boundary

Every mutation is load → pure op → save. Concurrent writers on the same
identity are last-writer-wins.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

import structlog
from kungfu import Result, Ok, Error

from cartflow._types import Clock, Identity
from cartflow.catalog import Product
from cartflow.errors import (
    InvalidQuantity,
    InvalidPromoCode,
    NotFound,
    StorageUnavailable,
)
from cartflow.pricing import PricingPolicy, PromoRules, Totals, compute_totals
from cartflow.retry import Backoff, TRANSIENT, retrying
from cartflow.settings import DEFAULT_PROMO_CODES
from cartflow.cart import _ops as ops
from cartflow.cart._types import Cart
from cartflow.cart._tiers import CartTier, LocalCartTier

logger = structlog.get_logger(__name__)


class CartStore:
    def __init__(
        self,
        durable: CartTier,
        local: CartTier | None = None,
        *,
        promo_rules: PromoRules = DEFAULT_PROMO_CODES,
        pricing: PricingPolicy = PricingPolicy(),
        backoff: Backoff = Backoff(),
        clock: Clock = datetime.now,
    ) -> None:
        self._durable = durable
        self._local = local if local is not None else LocalCartTier()
        self._promo_rules = promo_rules
        self._pricing = pricing
        self._backoff = backoff
        self._clock = clock

    # ── persistence ──────────────────────────────────────────────────────────

    async def load(self, identity: Identity) -> Result[Cart, StorageUnavailable]:
        """
        Current cart for identity.

        Note: The local tier is consulted only when the durable tier is
        unreachable. A cart the durable tier does not know is empty, even
        if a stale local copy exists.
        """
        key = identity.key
        try:
            cart = await retrying(
                lambda: self._durable.get(key),
                self._backoff,
                operation="cart.load",
            )
        except TRANSIENT as e:
            local = await self._local.get(key)
            if local is None:
                return Error(StorageUnavailable("cart.load", str(e) or type(e).__name__))
            logger.warning("cart_loaded_from_local", identity=key, error=str(e))
            return Ok(local)

        if cart is None:
            return Ok(Cart.empty(identity))
        await self._local.put(cart)
        return Ok(cart)

    async def save(self, cart: Cart) -> Result[Cart, StorageUnavailable]:
        stamped = replace(cart, updated_at=self._clock())
        await self._local.put(stamped)
        try:
            await retrying(
                lambda: self._durable.put(stamped),
                self._backoff,
                operation="cart.save",
            )
        except TRANSIENT as e:
            logger.warning("cart_save_failed", identity=cart.owner.key, error=str(e))
            return Error(StorageUnavailable("cart.save", str(e) or type(e).__name__))
        return Ok(stamped)

    async def _mutate[E](
        self,
        identity: Identity,
        op: Callable[[Cart], Result[Cart, E]],
    ) -> Result[Cart, E | StorageUnavailable]:
        match await self.load(identity):
            case Error(e):
                return Error(e)
            case Ok(cart):
                pass
        match op(cart):
            case Error(e):
                return Error(e)
            case Ok(updated):
                return await self.save(updated)

    # ── mutations ────────────────────────────────────────────────────────────

    async def add_item(
        self,
        identity: Identity,
        product: Product,
        variant_key: str,
        quantity: int = 1,
    ) -> Result[Cart, InvalidQuantity | NotFound | StorageUnavailable]:
        return await self._mutate(
            identity, lambda cart: ops.add_item(cart, product, variant_key, quantity)
        )

    async def update_quantity(
        self,
        identity: Identity,
        product_id: str,
        variant_key: str,
        new_quantity: int,
    ) -> Result[Cart, InvalidQuantity | NotFound | StorageUnavailable]:
        return await self._mutate(
            identity,
            lambda cart: ops.update_quantity(cart, product_id, variant_key, new_quantity),
        )

    async def remove_item(
        self, identity: Identity, product_id: str, variant_key: str
    ) -> Result[Cart, StorageUnavailable]:
        return await self._mutate(
            identity, lambda cart: Ok(ops.remove_item(cart, product_id, variant_key))
        )

    async def clear(self, identity: Identity) -> Result[Cart, StorageUnavailable]:
        return await self._mutate(identity, lambda cart: Ok(ops.clear(cart)))

    async def apply_promo_code(
        self, identity: Identity, code: str
    ) -> Result[Cart, InvalidPromoCode | StorageUnavailable]:
        return await self._mutate(
            identity, lambda cart: ops.apply_promo_code(cart, code, self._promo_rules)
        )

    async def restore(self, cart: Cart) -> None:
        """Write back a previous cart value. Raises when storage stays down."""
        match await self.save(cart):
            case Error(e):
                raise RuntimeError(f"cart restore failed: {e}")
            case Ok(_):
                pass

    # ── sign-in ──────────────────────────────────────────────────────────────

    async def merge_on_sign_in(
        self,
        session_identity: Identity,
        user_identity: Identity,
    ) -> Result[Cart, StorageUnavailable]:
        """Fold the anonymous cart into the user's cart and empty the anonymous one."""
        match await self.load(session_identity):
            case Error(e):
                return Error(e)
            case Ok(anonymous):
                pass
        match await self.load(user_identity):
            case Error(e):
                return Error(e)
            case Ok(user_cart):
                pass

        if anonymous.is_empty and anonymous.discount_percent == 0:
            return Ok(user_cart)

        match await self.save(ops.merge_into(user_cart, anonymous)):
            case Error(e):
                return Error(e)
            case Ok(merged):
                pass
        match await self.save(ops.clear(anonymous)):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        logger.info(
            "cart_merged",
            session=session_identity.key,
            user=user_identity.key,
            lines=len(merged.items),
        )
        return Ok(merged)

    # ── totals ───────────────────────────────────────────────────────────────

    def price(self, cart: Cart) -> Totals:
        return compute_totals(cart.items, cart.discount_percent, self._pricing)

    async def totals(self, identity: Identity) -> Result[Totals, StorageUnavailable]:
        match await self.load(identity):
            case Error(e):
                return Error(e)
            case Ok(cart):
                return Ok(self.price(cart))


__all__ = ("CartStore",)
