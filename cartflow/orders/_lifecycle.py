"""
Order lifecycle — status transitions after placement.

    advance      pending → processing → shipped → delivered
    cancel       from pending/processing, puts each line's stock back once
    mark_paid    idempotent, refused for cancelled/voided orders
    void         placement rollback only

Illegal transitions come back as InvalidTransition and are never retried.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime

import structlog
from kungfu import Result, Ok, Error

from cartflow._types import Clock
from cartflow.errors import (
    InvalidTransition,
    LifecycleError,
    NotFound,
    RollbackIncomplete,
    StorageUnavailable,
)
from cartflow.retry import Backoff, TRANSIENT, retrying
from cartflow.stock import StockLedger
from cartflow.orders._types import Order, OrderStatus
from cartflow.orders._repo import OrderRepository

logger = structlog.get_logger(__name__)

PAID = "paid"


class OrderLifecycle:
    def __init__(
        self,
        orders: OrderRepository,
        ledger: StockLedger,
        *,
        backoff: Backoff = Backoff(),
        clock: Clock = datetime.now,
    ) -> None:
        self._orders = orders
        self._ledger = ledger
        self._backoff = backoff
        self._clock = clock

    async def _storage[T](
        self, fn: Callable[[], Awaitable[T]], operation: str
    ) -> Result[T, StorageUnavailable]:
        try:
            return Ok(await retrying(fn, self._backoff, operation=operation))
        except TRANSIENT as e:
            return Error(StorageUnavailable(operation, str(e) or type(e).__name__))

    async def get(
        self, order_id: str, user_id: str | None = None
    ) -> Result[Order, NotFound | StorageUnavailable]:
        """Order by id. With user_id, someone else's order is NotFound."""
        match await self._storage(lambda: self._orders.get(order_id), "orders.get"):
            case Error(e):
                return Error(e)
            case Ok(Error(e)):
                return Error(e)
            case Ok(Ok(order)):
                if user_id is not None and order.user_id != user_id:
                    return Error(NotFound("order", order_id))
                return Ok(order)

    async def list_for_user(self, user_id: str) -> Result[list[Order], StorageUnavailable]:
        return await self._storage(lambda: self._orders.list_for_user(user_id), "orders.list")

    async def _save(self, order: Order, previous: Order) -> Result[bool, StorageUnavailable]:
        return await self._storage(lambda: self._orders.update(order, previous), "orders.update")

    async def _transition(
        self,
        order_id: str,
        user_id: str | None,
        change: Callable[[Order], Result[Order, InvalidTransition]],
    ) -> Result[tuple[Order, Order], LifecycleError]:
        """
        Read, change and write back until the write applies.

        Returns (before, after). A change that returns its input unchanged
        is not written. A lost write means another writer moved the order
        first; the change is re-checked against what that writer left.
        """
        while True:
            match await self.get(order_id, user_id):
                case Error(e):
                    return Error(e)
                case Ok(order):
                    pass

            match change(order):
                case Error(e):
                    return Error(e)
                case Ok(updated) if updated is order:
                    return Ok((order, order))
                case Ok(updated):
                    pass

            match await self._save(updated, order):
                case Error(e):
                    return Error(e)
                case Ok(True):
                    return Ok((order, updated))
                case Ok(False):
                    logger.info("order_write_conflict", order_id=order_id, status=order.status.value)

    # ── transitions ──────────────────────────────────────────────────────────

    async def advance(
        self,
        order_id: str,
        target: OrderStatus,
        *,
        user_id: str | None = None,
        note: str | None = None,
    ) -> Result[Order, LifecycleError]:
        if target is OrderStatus.CANCELLED:
            return await self.cancel(order_id, note, user_id=user_id)

        def move(order: Order) -> Result[Order, InvalidTransition]:
            if not order.status.can_become(target):
                return Error(self._refuse(order, target.value))
            return Ok(order.moved_to(target, self._clock(), note))

        match await self._transition(order_id, user_id, move):
            case Error(e):
                return Error(e)
            case Ok((before, updated)):
                logger.info(
                    "order_status_changed",
                    order_id=order_id,
                    previous=before.status.value,
                    status=target.value,
                )
                return Ok(updated)

    async def cancel(
        self,
        order_id: str,
        reason: str | None = None,
        *,
        user_id: str | None = None,
    ) -> Result[Order, LifecycleError]:
        """
        Cancel and return every line's quantity to the ledger.

        Note: Only the caller whose cancelled status lands restores stock;
        a concurrent or retried cancel is refused. Every line is attempted
        even when one fails, and any failure is RollbackIncomplete.
        """

        def move(order: Order) -> Result[Order, InvalidTransition]:
            if not order.status.can_become(OrderStatus.CANCELLED):
                return Error(self._refuse(order, OrderStatus.CANCELLED.value))
            return Ok(
                replace(
                    order.moved_to(OrderStatus.CANCELLED, self._clock(), reason),
                    cancellation_reason=reason,
                )
            )

        match await self._transition(order_id, user_id, move):
            case Error(e):
                return Error(e)
            case Ok((_, cancelled)):
                pass

        failed: list[str] = []
        for line in cancelled.items:
            restored = await self._storage(
                lambda line=line: self._ledger.increment(
                    line.product_id, line.variant_key, line.quantity
                ),
                "stock.restore",
            )
            match restored:
                case Error(e):
                    logger.error(
                        "stock_restore_failed",
                        order_id=order_id,
                        key=str(line.key),
                        quantity=line.quantity,
                        reason=e.reason,
                    )
                    failed.append(str(line.key))
                case Ok(level):
                    logger.info(
                        "stock_restored",
                        order_id=order_id,
                        key=str(line.key),
                        quantity=line.quantity,
                        level=level,
                    )

        if failed:
            logger.error("stock_restore_incomplete", order_id=order_id, failed=failed)
            return Error(
                RollbackIncomplete(f"stock not restored for {', '.join(failed)}", len(failed))
            )

        logger.info("order_cancelled", order_id=order_id, reason=reason)
        return Ok(cancelled)

    async def mark_paid(
        self, order_id: str, *, user_id: str | None = None
    ) -> Result[Order, LifecycleError]:
        def pay(order: Order) -> Result[Order, InvalidTransition]:
            if order.status in (OrderStatus.CANCELLED, OrderStatus.VOIDED):
                return Error(self._refuse(order, PAID))
            if order.is_paid:
                return Ok(order)
            return Ok(replace(order, is_paid=True))

        match await self._transition(order_id, user_id, pay):
            case Error(e):
                return Error(e)
            case Ok((before, paid)):
                if before is not paid:
                    logger.info("order_paid", order_id=order_id)
                return Ok(paid)

    async def void(self, order: Order) -> None:
        """
        Mark a just-written order as rolled back.

        Used as a saga compensator, so it raises when storage stays down or
        the order has already moved on.
        """
        voided = order.moved_to(OrderStatus.VOIDED, self._clock(), "placement rolled back")
        applied = await retrying(
            lambda: self._orders.update(voided, order), self._backoff, operation="orders.void"
        )
        if not applied:
            raise RuntimeError(f"order {order.id} changed before it could be voided")
        logger.info("order_voided", order_id=order.id, order_number=order.order_number)

    def _refuse(self, order: Order, target: str) -> InvalidTransition:
        logger.warning(
            "order_transition_refused",
            order_id=order.id,
            current=order.status.value,
            target=target,
        )
        return InvalidTransition(order.id, order.status.value, target)


__all__ = ("OrderLifecycle",)
