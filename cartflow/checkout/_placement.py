"""
Order placement orchestrator.

    validate → reserve every line → price
        → saga[ create order → decrement each line → clear cart ]
        → release reservations (always)

Failures inside the saga run compensators in reverse: re-increment applied
decrements, void the order record, restore the cart. A compensator that
fails turns the outcome into RollbackIncomplete. Everything up to the saga
commit runs under placement_timeout; expiry takes the same rollback path.
Low-stock notifications go out after the commit and outside the timeout.

StockChanged (the ledger disagreed with a successful reservation) retries
the whole placement stock_changed_retries times.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

import structlog
from kungfu import Result, Ok, Error, LazyCoroResult

from cartflow._types import Clock, Identity
from cartflow import saga as S
from cartflow import idempotency as I
from cartflow.cart import Cart, CartStore, LineItem, clear
from cartflow.errors import (
    CartflowError,
    EmptyCart,
    IdempotencyConflict,
    InsufficientStock,
    InvalidAddress,
    NotFound,
    PlacementError,
    PlacementTimedOut,
    RollbackIncomplete,
    Shortage,
    StockChanged,
    StockUnavailable,
    StorageUnavailable,
)
from cartflow.notify import Level, NotificationSink, NullSink, notify
from cartflow.orders import (
    Order,
    OrderLifecycle,
    OrderRepository,
    OrderStatus,
    PlacementResult,
    StatusChange,
    new_order_id,
    new_order_number,
    validate_address,
)
from cartflow.pricing import PricingPolicy, Totals, compute_totals
from cartflow.reservation import Reservation, ReservationManager
from cartflow.retry import call_storage, guarded, retrying
from cartflow.settings import Settings
from cartflow.stock import StockLedger
from cartflow.checkout._types import PlaceOrder

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _Committed:
    order: Order
    totals: Totals
    remaining: dict[LineItem, int]


class OrderPlacement:
    def __init__(
        self,
        *,
        ledger: StockLedger,
        reservations: ReservationManager,
        carts: CartStore,
        orders: OrderRepository,
        lifecycle: OrderLifecycle,
        sink: NotificationSink = NullSink(),
        settings: Settings = Settings(),
        idempotency_store: I.Store[PlacementResult] | None = None,
        clock: Clock = datetime.now,
    ) -> None:
        self._ledger = ledger
        self._reservations = reservations
        self._carts = carts
        self._orders = orders
        self._lifecycle = lifecycle
        self._sink = sink
        self._settings = settings
        self._pricing = PricingPolicy.from_settings(settings)
        self._clock = clock

        attempts = settings.stock_changed_retries + 1
        self._dedupe = (
            I.idempotent(self._placement)
            .key(lambda req: req.idempotency_key)
            # Empty carts carry no fingerprint: a retry after success sees the cleared cart.
            .fingerprint(lambda req: None if req.cart.is_empty else req.cart.fingerprint())
            .store(idempotency_store if idempotency_store is not None else I.MemoryStore(clock))
            .policy(
                I.Policy()
                .with_window(delta=settings.idempotency_window)
                .with_wait_timeout(delta=settings.placement_timeout * attempts + timedelta(seconds=5))
            )
            .build()
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Entry Point
    # ═══════════════════════════════════════════════════════════════════════════

    async def place_order(self, request: PlaceOrder) -> Result[PlacementResult, PlacementError]:
        if request.idempotency_key is None:
            return await self._place_with_retry(request)

        match await self._dedupe.run(request):
            case Ok(r):
                return Ok(replace(r.value, from_cache=r.from_cache))
            case Error(e):
                return Error(_from_idempotency(request.idempotency_key, e))

    async def purge_expired(self) -> int:
        """Forget idempotency keys whose window has passed."""
        return await self._dedupe.purge()

    def _placement(self, request: PlaceOrder) -> LazyCoroResult[PlacementResult, PlacementError]:
        async def execute() -> Result[PlacementResult, PlacementError]:
            return await self._place_with_retry(request)

        return LazyCoroResult(execute)

    async def _place_with_retry(
        self, request: PlaceOrder
    ) -> Result[PlacementResult, PlacementError]:
        retries = self._settings.stock_changed_retries
        attempt = 0
        while True:
            attempt += 1
            result = await self._attempt(request)
            match result:
                case Error(StockChanged() as e) if attempt <= retries:
                    logger.info(
                        "placement_retry",
                        user_id=request.user_id,
                        attempt=attempt,
                        key=f"{e.product_id}/{e.variant_key}",
                    )
                case _:
                    return result

    # ═══════════════════════════════════════════════════════════════════════════
    # One Attempt
    # ═══════════════════════════════════════════════════════════════════════════

    async def _attempt(self, request: PlaceOrder) -> Result[PlacementResult, PlacementError]:
        seconds = self._settings.placement_timeout.total_seconds()
        tx = S.Transaction(f"place_order:{request.user_id}")
        held: list[Reservation] = []
        timeout = asyncio.timeout(seconds)

        try:
            async with timeout:
                outcome = await self._run(request, tx, held)
        except TimeoutError:
            if not timeout.expired():
                raise
            logger.warning("placement_timed_out", user_id=request.user_id, seconds=seconds)
            rollback = await tx.rollback()
            if not rollback.complete:
                return Error(RollbackIncomplete(f"timed out after {seconds:g}s", len(rollback.failed)))
            return Error(PlacementTimedOut(seconds))
        except Exception:
            await tx.rollback()
            raise
        finally:
            await self._reservations.release_all([r.id for r in held])

        match outcome:
            case Error(e):
                return Error(e)
            case Ok(committed):
                pass

        order = committed.order
        logger.info(
            "order_placed",
            order_id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            total=str(order.total),
            lines=len(order.items),
        )
        await self._after_placement(order, committed.remaining)
        return Ok(PlacementResult(order.id, order.order_number, committed.totals))

    async def _run(
        self,
        request: PlaceOrder,
        tx: S.Transaction,
        held: list[Reservation],
    ) -> Result[_Committed, PlacementError]:
        cart = request.cart
        backoff = self._settings.backoff

        # 1. validate
        if cart.is_empty:
            return Error(EmptyCart())
        match _validate_addresses(request):
            case Error(e):
                return Error(e)
            case Ok(_):
                pass

        # 2. reserve every line, collecting every shortage
        shortages: list[Shortage] = []
        for line in cart.items:
            reserved = await call_storage(
                lambda line=line: self._reservations.reserve(
                    line.product_id, line.variant_key, line.quantity, owner_id=request.user_id
                ),
                backoff,
                operation="reservation.reserve",
            )
            match reserved:
                case Ok(reservation):
                    held.append(reservation)
                case Error(StorageUnavailable() as e):
                    return Error(e)
                case Error(InsufficientStock() | NotFound() as e):
                    shortages.append(e)
        if shortages:
            logger.info(
                "placement_stock_unavailable",
                user_id=request.user_id,
                shortages=[str(s) for s in shortages],
            )
            return Error(StockUnavailable(tuple(shortages)))

        # 3. price
        totals = compute_totals(cart.items, cart.discount_percent, self._pricing)

        # 4. create the order record
        order = self._new_order(request, totals)
        match await tx.step(S.from_async(
            lambda: self._create(order),
            on_error=lambda e: StorageUnavailable("orders.create", str(e) or type(e).__name__),
            compensate=self._lifecycle.void,
            name="create_order",
        )):
            case Error(e):
                return await self._abort(tx, e)
            case Ok(_):
                pass

        # 5. commit stock
        remaining: dict[LineItem, int] = {}
        for line in cart.items:
            decremented = await tx.step(S.step(
                guarded(
                    lambda line=line: self._ledger.try_decrement(
                        line.product_id, line.variant_key, line.quantity
                    ),
                    backoff,
                    operation="stock.decrement",
                ),
                compensate=lambda _, line=line: self._restore_stock(line),
                name=f"decrement:{line.key}",
            ))
            match decremented:
                case Ok(level):
                    remaining[line] = level
                case Error(StorageUnavailable() as e):
                    return await self._abort(tx, e)
                case Error(_):
                    return await self._abort(tx, StockChanged(line.product_id, line.variant_key))

        # 6. stock is committed, holds are no longer needed
        await self._reservations.release_all([r.id for r in held])

        # 7. clear the user's stored cart
        match await tx.step(S.step(
            LazyCoroResult(lambda: self._clear_cart(Identity.user(request.user_id))),
            compensate=self._carts.restore,
            name="clear_cart",
        )):
            case Error(e):
                return await self._abort(tx, e)
            case Ok(_):
                pass

        tx.commit(order)
        return Ok(_Committed(order, totals, remaining))

    # ═══════════════════════════════════════════════════════════════════════════
    # Steps & Compensators
    # ═══════════════════════════════════════════════════════════════════════════

    def _new_order(self, request: PlaceOrder, totals: Totals) -> Order:
        now = self._clock()
        return Order(
            id=new_order_id(),
            order_number=new_order_number(now),
            user_id=request.user_id,
            items=tuple(request.cart.items),
            shipping_address=request.shipping_address,
            billing_address=request.billing_address or request.shipping_address,
            payment_method=request.payment_method,
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            shipping_fee=totals.shipping_fee,
            total=totals.total,
            promo_code=request.cart.promo_code,
            is_paid=request.payment_method.captures_on_placement,
            created_at=now,
            status=OrderStatus.PENDING,
            status_history=(StatusChange(OrderStatus.PENDING, now, "order placed"),),
        )

    async def _create(self, order: Order) -> Order:
        await retrying(
            lambda: self._orders.create(order), self._settings.backoff, operation="orders.create"
        )
        return order

    async def _restore_stock(self, line: LineItem) -> None:
        level = await retrying(
            lambda: self._ledger.increment(line.product_id, line.variant_key, line.quantity),
            self._settings.backoff,
            operation="stock.restore",
        )
        logger.info("stock_restored", key=str(line.key), quantity=line.quantity, level=level)

    async def _clear_cart(self, identity: Identity) -> Result[Cart, StorageUnavailable]:
        """Empty the stored cart. Ok carries the previous value for restore."""
        match await self._carts.load(identity):
            case Error(e):
                return Error(e)
            case Ok(previous):
                pass
        match await self._carts.save(clear(previous)):
            case Error(e):
                return Error(e)
            case Ok(_):
                return Ok(previous)

    async def _abort(
        self, tx: S.Transaction, error: PlacementError
    ) -> Result[_Committed, PlacementError]:
        failure = await tx.abort(error)
        logger.warning(
            "placement_failed",
            saga=tx.name,
            code=error.code,
            step=failure.failed_step,
            undone=list(failure.rollback.undone),
            not_undone=list(failure.rollback.failed),
        )
        if not failure.rollback_complete:
            return Error(RollbackIncomplete(str(error), failure.compensators_failed))
        return Error(error)

    async def _after_placement(self, order: Order, remaining: dict[LineItem, int]) -> None:
        threshold = self._settings.low_stock_threshold
        for line, level in remaining.items():
            if level < threshold:
                await notify(
                    self._sink,
                    Level.WARNING,
                    f"Low stock: {line.display_name} ({line.variant_key}) has {level} left",
                    product_id=line.product_id,
                    variant_key=line.variant_key,
                    available=level,
                )


# ═══════════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════════


def _validate_addresses(request: PlaceOrder) -> Result[None, InvalidAddress]:
    bad: list[str] = []
    match validate_address(request.shipping_address):
        case Error(e):
            bad.extend(f"shipping_address.{f}" for f in e.fields)
    if request.billing_address is not None:
        match validate_address(request.billing_address):
            case Error(e):
                bad.extend(f"billing_address.{f}" for f in e.fields)
    return Error(InvalidAddress(tuple(bad))) if bad else Ok(None)


def _from_idempotency(key: str, error: I.IdempotencyError[PlacementError]) -> PlacementError:
    match error.kind:
        case I.IdempotencyErrorKind.EXECUTION:
            original = error.original_error
            if isinstance(original, CartflowError):
                return original  # type: ignore[return-value]
            if isinstance(original, Exception):
                raise original
            return StorageUnavailable("orders.place", error.message)
        case I.IdempotencyErrorKind.STORE_ERROR:
            return StorageUnavailable("idempotency", error.message)
        case _:
            return IdempotencyConflict(key, error.message)


__all__ = ("OrderPlacement",)
