"""
Storefront — one facade over carts, checkout and orders.

    shop = await Storefront.in_memory(products=[tee])

    guest = Identity.anonymous()
    await shop.add_to_cart(guest, "tee", "M", 2)
    await shop.sign_in(guest, "u1")                    # merges the guest cart

    match await shop.place_order("u1", shipping_address=address):
        case Ok(placed):
            placed.order_number
        case Error(e):
            e.code, e.message

Every mutation also pushes a human-readable notification to the sink.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime

import structlog
from kungfu import Result, Ok, Error
from sqlalchemy.ext.asyncio import AsyncEngine

from cartflow._types import Clock, Identity
from cartflow.cart import Cart, CartStore, LocalCartTier, SQLAlchemyCartTier
from cartflow.catalog import MemoryCatalog, Product, ProductCatalog, seed_ledger
from cartflow.checkout import OrderPlacement, PlaceOrder
from cartflow.db import create_database
from cartflow.errors import (
    CartError,
    CartflowError,
    LifecycleError,
    NotFound,
    PlacementError,
    StorageUnavailable,
)
from cartflow.notify import Level, NotificationSink, NullSink, notify
from cartflow.orders import (
    Address,
    MemoryOrderRepository,
    Order,
    OrderLifecycle,
    OrderRepository,
    OrderStatus,
    PaymentMethod,
    PlacementResult,
    SQLAlchemyOrderRepository,
)
from cartflow.pricing import PricingPolicy, Totals
from cartflow.reservation import ReservationManager
from cartflow.settings import Settings
from cartflow.stock import MemoryLedger, SQLAlchemyLedger, StockLedger

logger = structlog.get_logger(__name__)


class Storefront:
    def __init__(
        self,
        *,
        catalog: ProductCatalog,
        ledger: StockLedger,
        carts: CartStore,
        reservations: ReservationManager,
        orders: OrderRepository,
        sink: NotificationSink | None = None,
        settings: Settings | None = None,
        clock: Clock = datetime.now,
        engine: AsyncEngine | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.catalog = catalog
        self.ledger = ledger
        self.carts = carts
        self.reservations = reservations
        self.orders = orders
        self.sink = sink or NullSink()
        self.pricing = PricingPolicy.from_settings(self.settings)
        self.lifecycle = OrderLifecycle(
            orders, ledger, backoff=self.settings.backoff, clock=clock
        )
        self.placement = OrderPlacement(
            ledger=ledger,
            reservations=reservations,
            carts=carts,
            orders=orders,
            lifecycle=self.lifecycle,
            sink=self.sink,
            settings=self.settings,
            clock=clock,
        )
        self._engine = engine

    # ═══════════════════════════════════════════════════════════════════════════
    # Wiring
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    async def in_memory(
        cls,
        products: Iterable[Product] = (),
        *,
        settings: Settings | None = None,
        sink: NotificationSink | None = None,
        ledger: StockLedger | None = None,
        clock: Clock = datetime.now,
    ) -> Storefront:
        """Everything in process. Carts use an LRU tier as their durable tier."""
        settings = settings or Settings()
        catalog = MemoryCatalog(products)
        ledger = ledger or MemoryLedger()
        await seed_ledger(catalog.all(), ledger)
        return cls(
            catalog=catalog,
            ledger=ledger,
            carts=_cart_store(LocalCartTier(max_size=100_000), settings, clock),
            reservations=ReservationManager(ledger, settings.reservation_ttl, clock),
            orders=MemoryOrderRepository(),
            sink=sink,
            settings=settings,
            clock=clock,
        )

    @classmethod
    async def from_database(
        cls,
        settings: Settings | None = None,
        products: Iterable[Product] = (),
        *,
        sink: NotificationSink | None = None,
        clock: Clock = datetime.now,
    ) -> Storefront:
        """Stock, carts and orders in SQL; reservations and dedupe records in memory."""
        settings = settings or Settings()
        session_factory, engine = await create_database(settings.database_url)
        catalog = MemoryCatalog(products)
        ledger = SQLAlchemyLedger(session_factory)
        await seed_ledger(catalog.all(), ledger)
        logger.info("storefront_started", database=engine.url.render_as_string(hide_password=True))
        return cls(
            catalog=catalog,
            ledger=ledger,
            carts=_cart_store(SQLAlchemyCartTier(session_factory), settings, clock),
            reservations=ReservationManager(ledger, settings.reservation_ttl, clock),
            orders=SQLAlchemyOrderRepository(session_factory),
            sink=sink,
            settings=settings,
            clock=clock,
            engine=engine,
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    # ── housekeeping ─────────────────────────────────────────────────────────

    async def maintain(self) -> None:
        """Drop expired reservations and expired idempotency records."""
        expired = self.reservations.sweep()
        purged = await self.placement.purge_expired()
        if expired or purged:
            logger.info("maintenance", reservations_expired=expired, idempotency_purged=purged)

    async def run_maintenance(self, interval: float | None = None) -> None:
        """
        Call maintain() every interval seconds until cancelled.

        Defaults to settings.maintenance_interval.
        """
        seconds = interval if interval is not None else self.settings.maintenance_interval.total_seconds()
        while True:
            await asyncio.sleep(seconds)
            await self.maintain()

    # ═══════════════════════════════════════════════════════════════════════════
    # Cart
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_cart(self, identity: Identity) -> Result[Cart, StorageUnavailable]:
        return await self.carts.load(identity)

    async def add_to_cart(
        self,
        identity: Identity,
        product_id: str,
        variant_key: str,
        quantity: int = 1,
    ) -> Result[Cart, CartError]:
        match await self.catalog.get(product_id):
            case Error(e):
                await self._failed(e)
                return Error(e)
            case Ok(product):
                pass
        result = await self.carts.add_item(identity, product, variant_key, quantity)
        await self._report(result, f"Added {product.name} ({variant_key}) to cart")
        return result

    async def update_quantity(
        self,
        identity: Identity,
        product_id: str,
        variant_key: str,
        quantity: int,
    ) -> Result[Cart, CartError]:
        result = await self.carts.update_quantity(identity, product_id, variant_key, quantity)
        await self._report(result, "Cart updated")
        return result

    async def remove_item(
        self, identity: Identity, product_id: str, variant_key: str
    ) -> Result[Cart, StorageUnavailable]:
        result = await self.carts.remove_item(identity, product_id, variant_key)
        await self._report(result, "Item removed from cart")
        return result

    async def clear_cart(self, identity: Identity) -> Result[Cart, StorageUnavailable]:
        result = await self.carts.clear(identity)
        await self._report(result, "Cart cleared")
        return result

    async def apply_promo_code(self, identity: Identity, code: str) -> Result[Cart, CartError]:
        result = await self.carts.apply_promo_code(identity, code)
        match result:
            case Ok(cart):
                await notify(
                    self.sink,
                    Level.SUCCESS,
                    f"Promo code applied! {cart.discount_percent}% discount",
                    promo_code=cart.promo_code,
                )
            case Error(e):
                await self._failed(e)
        return result

    async def sign_in(
        self, session: Identity, user_id: str
    ) -> Result[Cart, StorageUnavailable]:
        """Merge the anonymous session cart into the user's cart."""
        return await self.carts.merge_on_sign_in(session, Identity.user(user_id))

    async def cart_totals(self, identity: Identity) -> Result[Totals, StorageUnavailable]:
        return await self.carts.totals(identity)

    # ═══════════════════════════════════════════════════════════════════════════
    # Orders
    # ═══════════════════════════════════════════════════════════════════════════

    async def place_order(
        self,
        user_id: str,
        shipping_address: Address,
        payment_method: PaymentMethod = PaymentMethod.COD,
        *,
        billing_address: Address | None = None,
        idempotency_token: str | None = None,
        cart: Cart | None = None,
    ) -> Result[PlacementResult, PlacementError]:
        """Place the user's stored cart, or the given cart snapshot."""
        if cart is None:
            match await self.carts.load(Identity.user(user_id)):
                case Error(e):
                    await self._failed(e)
                    return Error(e)
                case Ok(cart):
                    pass

        result = await self.placement.place_order(PlaceOrder(
            user_id=user_id,
            cart=cart,
            shipping_address=shipping_address,
            payment_method=payment_method,
            billing_address=billing_address,
            idempotency_token=idempotency_token,
        ))
        match result:
            case Ok(placed) if not placed.from_cache:
                await notify(
                    self.sink,
                    Level.SUCCESS,
                    f"Order {placed.order_number} placed successfully",
                    order_id=placed.order_id,
                )
            case Error(e):
                await self._failed(e)
        return result

    async def cancel_order(
        self, user_id: str, order_id: str, reason: str | None = None
    ) -> Result[Order, LifecycleError]:
        result = await self.lifecycle.cancel(order_id, reason, user_id=user_id)
        match result:
            case Ok(order):
                await notify(self.sink, Level.INFO, f"Order {order.order_number} cancelled")
            case Error(e):
                await self._failed(e)
        return result

    async def advance_order(
        self, order_id: str, status: OrderStatus, note: str | None = None
    ) -> Result[Order, LifecycleError]:
        return await self.lifecycle.advance(order_id, status, note=note)

    async def mark_order_paid(self, order_id: str) -> Result[Order, LifecycleError]:
        return await self.lifecycle.mark_paid(order_id)

    async def get_order(
        self, user_id: str, order_id: str
    ) -> Result[Order, NotFound | StorageUnavailable]:
        return await self.lifecycle.get(order_id, user_id)

    async def list_orders(self, user_id: str) -> Result[list[Order], StorageUnavailable]:
        return await self.lifecycle.list_for_user(user_id)

    # ── notifications ────────────────────────────────────────────────────────

    async def _report[T](self, result: Result[T, CartflowError], success: str) -> None:
        match result:
            case Ok(_):
                await notify(self.sink, Level.SUCCESS, success)
            case Error(e):
                await self._failed(e)

    async def _failed(self, error: CartflowError) -> None:
        await notify(self.sink, Level.ERROR, error.message, code=error.code)


def _cart_store(durable: LocalCartTier | SQLAlchemyCartTier, settings: Settings, clock: Clock) -> CartStore:
    return CartStore(
        durable,
        LocalCartTier(),
        promo_rules=settings.promo_codes,
        pricing=PricingPolicy.from_settings(settings),
        backoff=settings.backoff,
        clock=clock,
    )


__all__ = ("Storefront",)
