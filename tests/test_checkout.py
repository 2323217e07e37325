"""Tests for order placement: reservation, stock commit, rollback and dedupe."""

import asyncio
from decimal import Decimal

import pytest
from kungfu import Ok, Error

from cartflow import Identity, Storefront
from cartflow.cart import CartStore, LocalCartTier
from cartflow.catalog import MemoryCatalog
from cartflow.errors import (
    EmptyCart,
    IdempotencyConflict,
    InsufficientStock,
    InvalidAddress,
    PlacementTimedOut,
    RollbackIncomplete,
    StockChanged,
    StockUnavailable,
    StorageUnavailable,
)
from cartflow.notify import Level, MemorySink
from cartflow.orders import Address, MemoryOrderRepository, OrderStatus
from cartflow.reservation import ReservationManager
from cartflow.stock import MemoryLedger

from helpers import ok, err


# ═══════════════════════════════════════════════════════════════════════════════
# Doubles
# ═══════════════════════════════════════════════════════════════════════════════


class DriftingLedger(MemoryLedger):
    """Refuses the first `drift` decrements as if stock moved under a reservation."""

    def __init__(self, drift: int = 1, refuse: set[str] | None = None) -> None:
        super().__init__()
        self.drift = drift
        self.refuse = refuse or set()
        self.restore_down = False

    async def try_decrement(self, product_id, variant_key, quantity):
        if product_id in self.refuse or self.drift > 0:
            self.drift -= 1
            return Error(InsufficientStock(product_id, variant_key, quantity, 0))
        return await super().try_decrement(product_id, variant_key, quantity)

    async def increment(self, product_id, variant_key, quantity):
        if self.restore_down:
            raise ConnectionError("ledger unreachable")
        return await super().increment(product_id, variant_key, quantity)


class SlowDecrementLedger(MemoryLedger):
    async def try_decrement(self, product_id, variant_key, quantity):
        await asyncio.sleep(0.5)
        return await super().try_decrement(product_id, variant_key, quantity)


class SlowSink(MemorySink):
    async def push(self, notification):
        await asyncio.sleep(0.2)
        await super().push(notification)


class WriteOnceTier(LocalCartTier):
    """Cart tier whose writes fail while `read_only` is set."""

    read_only = False

    async def put(self, cart):
        if self.read_only:
            raise ConnectionError("cart store is read-only")
        await super().put(cart)


async def fill(shop, user_id="u1", *lines):
    for product_id, variant_key, quantity in lines or [("p1", "M", 2)]:
        ok(await shop.add_to_cart(Identity.user(user_id), product_id, variant_key, quantity))


def level(shop, variant_key="M", product_id="p1"):
    return shop.ledger.get_available(product_id, variant_key)


# ═══════════════════════════════════════════════════════════════════════════════
# Happy path
# ═══════════════════════════════════════════════════════════════════════════════


class TestPlaceOrder:
    async def test_places_and_decrements(self, shop, user, address):
        await fill(shop)

        placed = ok(await shop.place_order("u1", address))

        assert placed.from_cache is False
        assert placed.totals.subtotal == Decimal("1000.00")
        assert placed.totals.shipping_fee == Decimal("100.00")
        assert placed.totals.total == Decimal("1280.00")
        assert ok(await level(shop)) == 8

    async def test_cart_is_cleared_and_holds_released(self, shop, user, address):
        await fill(shop)

        ok(await shop.place_order("u1", address))

        assert ok(await shop.get_cart(user)).is_empty
        assert shop.reservations.active() == []

    async def test_order_record(self, shop, address):
        await fill(shop)
        billing = Address("1 Park St", "Kolkata", "West Bengal", "700016")

        placed = ok(await shop.place_order("u1", address, billing_address=billing))
        order = ok(await shop.get_order("u1", placed.order_id))

        assert order.order_number == placed.order_number
        assert order.status is OrderStatus.PENDING
        assert order.billing_address == billing
        assert order.shipping_address == address
        assert order.total == placed.totals.total

    async def test_billing_defaults_to_shipping(self, shop, address):
        await fill(shop)

        placed = ok(await shop.place_order("u1", address))

        assert ok(await shop.get_order("u1", placed.order_id)).billing_address == address

    async def test_promo_discount(self, shop, user, address):
        await fill(shop)
        ok(await shop.apply_promo_code(user, "WELCOME10"))

        placed = ok(await shop.place_order("u1", address))

        assert placed.totals.discount == Decimal("100.00")
        assert placed.totals.total == Decimal("1162.00")
        assert ok(await shop.get_order("u1", placed.order_id)).promo_code == "WELCOME10"

    async def test_sale_price_is_charged(self, shop, address):
        await fill(shop, "u1", ("p2", "std", 1))

        placed = ok(await shop.place_order("u1", address))

        assert placed.totals.subtotal == Decimal("199.00")

    async def test_success_notification(self, shop, sink, address):
        await fill(shop)

        placed = ok(await shop.place_order("u1", address))

        assert f"Order {placed.order_number} placed successfully" in sink.messages(Level.SUCCESS)

    async def test_low_stock_warning(self, shop, sink, address):
        await fill(shop, "u1", ("p2", "std", 1))

        ok(await shop.place_order("u1", address))

        assert sink.messages(Level.WARNING) == ["Low stock: Coffee Mug (std) has 2 left"]

    async def test_no_warning_above_threshold(self, shop, sink, address):
        await fill(shop)

        ok(await shop.place_order("u1", address))

        assert sink.messages(Level.WARNING) == []


# ═══════════════════════════════════════════════════════════════════════════════
# Refusals
# ═══════════════════════════════════════════════════════════════════════════════


class TestRefusals:
    async def test_empty_cart(self, shop, address):
        assert isinstance(err(await shop.place_order("u1", address)), EmptyCart)

    async def test_invalid_shipping_address(self, shop, address):
        await fill(shop)
        bad = Address("", "Bengaluru", "Karnataka", "5600")

        e = err(await shop.place_order("u1", bad))

        assert isinstance(e, InvalidAddress)
        assert e.fields == ("shipping_address.street", "shipping_address.postal_code")
        assert ok(await level(shop)) == 10

    async def test_invalid_billing_address(self, shop, address):
        await fill(shop)

        e = err(await shop.place_order("u1", address, billing_address=Address("x", "y", "", "1")))

        assert e.fields == ("billing_address.state", "billing_address.postal_code")

    async def test_insufficient_stock(self, shop, user, address):
        await fill(shop, "u1", ("p1", "M", 11))

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, StockUnavailable)
        [shortage] = e.shortages
        assert (shortage.requested, shortage.available, shortage.shortfall) == (11, 10, 1)
        assert ok(await level(shop)) == 10
        assert ok(await shop.get_cart(user)).item_count == 11
        assert shop.reservations.active() == []

    async def test_every_shortage_is_reported(self, shop, address):
        await fill(shop, "u1", ("p1", "M", 11), ("p1", "L", 2), ("p2", "std", 1))

        e = err(await shop.place_order("u1", address))

        assert [(s.variant_key, s.shortfall) for s in e.shortages] == [("M", 1), ("L", 1)]
        assert shop.reservations.active() == []
        assert ok(await level(shop, "std", "p2")) == 3

    async def test_held_stock_counts_against_checkout(self, shop, address):
        ok(await shop.reservations.reserve("p1", "M", 9, owner_id="someone"))
        await fill(shop)

        e = err(await shop.place_order("u1", address))

        assert e.shortages[0].available == 1

    async def test_failure_notification(self, shop, sink, address):
        err(await shop.place_order("u1", address))

        assert sink.messages(Level.ERROR) == ["Cart is empty"]


# ═══════════════════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════════════════


class TestLastUnit:
    async def test_exactly_one_winner(self, shop, address):
        users = [f"u{i}" for i in range(5)]
        for u in users:
            await fill(shop, u, ("p1", "L", 1))

        results = await asyncio.gather(*[shop.place_order(u, address) for u in users])

        winners = [r for r in results if isinstance(r, Ok)]
        losers = [r.value for r in results if isinstance(r, Error)]
        assert len(winners) == 1
        assert all(isinstance(e, StockUnavailable) for e in losers)
        assert ok(await level(shop, "L")) == 0

    async def test_never_oversells_with_slow_storage(self, tee, settings, address):
        shop = await Storefront.in_memory([tee], settings=settings, ledger=MemoryLedger(latency=0.01))
        for u in ("a", "b", "c"):
            await fill(shop, u, ("p1", "M", 4))

        results = await asyncio.gather(*[shop.place_order(u, address) for u in ("a", "b", "c")])

        assert sum(isinstance(r, Ok) for r in results) == 2
        assert ok(await level(shop)) == 2

    async def test_last_unit_on_database(self, tee, settings, address, tmp_path):
        settings = settings.with_database(f"sqlite+aiosqlite:///{tmp_path / 'shop.db'}")
        shop = await Storefront.from_database(settings, [tee])
        try:
            users = [f"u{i}" for i in range(4)]
            for u in users:
                await fill(shop, u, ("p1", "L", 1))

            results = await asyncio.gather(*[shop.place_order(u, address) for u in users])

            assert sum(isinstance(r, Ok) for r in results) == 1
            assert ok(await level(shop, "L")) == 0
        finally:
            await shop.close()


# ═══════════════════════════════════════════════════════════════════════════════
# Rollback
# ═══════════════════════════════════════════════════════════════════════════════


class TestRollback:
    async def test_stock_changed_is_retried_once(self, tee, settings, address):
        ledger = DriftingLedger(drift=1)
        shop = await Storefront.in_memory([tee], settings=settings, ledger=ledger)
        await fill(shop)

        placed = ok(await shop.place_order("u1", address))

        statuses = sorted(o.status.value for o in shop.orders.all())
        assert statuses == ["pending", "voided"]
        assert ok(await shop.get_order("u1", placed.order_id)).status is OrderStatus.PENDING
        assert ok(await level(shop)) == 8

    async def test_persistent_drift_rolls_everything_back(self, tee, mug, settings, user, address):
        ledger = DriftingLedger(drift=0, refuse={"p2"})
        shop = await Storefront.in_memory([tee, mug], settings=settings, ledger=ledger)
        await fill(shop, "u1", ("p1", "M", 2), ("p2", "std", 1))

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, StockChanged)
        assert (e.product_id, e.variant_key) == ("p2", "std")
        assert ok(await level(shop)) == 10
        assert ok(await shop.get_cart(user)).item_count == 3
        assert {o.status for o in shop.orders.all()} == {OrderStatus.VOIDED}
        assert shop.reservations.active() == []

    async def test_failed_compensator_reports_rollback_incomplete(self, tee, mug, settings, address):
        ledger = DriftingLedger(drift=0, refuse={"p2"})
        ledger.restore_down = True
        shop = await Storefront.in_memory([tee, mug], settings=settings, ledger=ledger)
        await fill(shop, "u1", ("p1", "M", 2), ("p2", "std", 1))

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, RollbackIncomplete)
        assert e.compensators_failed == 1
        assert e.code == "ROLLBACK_INCOMPLETE"

    async def test_cart_write_failure_undoes_stock(self, tee, settings, address, clock):
        ledger = MemoryLedger()
        tier = WriteOnceTier()
        shop = Storefront(
            catalog=MemoryCatalog([tee]),
            ledger=ledger,
            carts=CartStore(tier, backoff=settings.backoff, clock=clock),
            reservations=ReservationManager(ledger, clock=clock),
            orders=MemoryOrderRepository(),
            settings=settings,
            clock=clock,
        )
        await ledger.set_level("p1", "M", 10)
        await fill(shop)
        tier.read_only = True

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, StorageUnavailable)
        assert e.operation == "cart.save"
        assert ok(await level(shop)) == 10
        assert [o.status for o in shop.orders.all()] == [OrderStatus.VOIDED]

    async def test_unreachable_ledger(self, tee, settings, address, monkeypatch):
        shop = await Storefront.in_memory([tee], settings=settings)
        await fill(shop)

        async def down(*args):
            raise ConnectionError("ledger down")

        monkeypatch.setattr(shop.ledger, "get_available", down)

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, StorageUnavailable)
        assert e.operation == "reservation.reserve"


class TestTimeout:
    async def test_timeout_rolls_back(self, tee, settings, address):
        settings = settings.with_placement_timeout(seconds=0.05)
        shop = await Storefront.in_memory([tee], settings=settings, ledger=SlowDecrementLedger())
        await fill(shop)

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, PlacementTimedOut)
        assert e.seconds == pytest.approx(0.05)
        assert ok(await level(shop)) == 10
        assert [o.status for o in shop.orders.all()] == [OrderStatus.VOIDED]
        assert shop.reservations.active() == []

    async def test_timeout_before_any_write(self, tee, settings, address):
        settings = settings.with_placement_timeout(seconds=0.05)
        shop = await Storefront.in_memory([tee], settings=settings, ledger=MemoryLedger(latency=0.2))
        await fill(shop)

        e = err(await shop.place_order("u1", address))

        assert isinstance(e, PlacementTimedOut)
        assert shop.orders.all() == []

    async def test_slow_notification_does_not_fail_a_committed_order(self, tee, settings, address):
        settings = settings.with_placement_timeout(seconds=0.05)
        sink = SlowSink()
        shop = await Storefront.in_memory([tee], settings=settings, sink=sink)
        await fill(shop, "u1", ("p1", "L", 1))

        placed = ok(await shop.place_order("u1", address))

        assert ok(await shop.get_order("u1", placed.order_id)).status is OrderStatus.PENDING
        assert ok(await level(shop, "L")) == 0
        assert any("Low stock" in m for m in sink.messages(Level.WARNING))


# ═══════════════════════════════════════════════════════════════════════════════
# Idempotency
# ═══════════════════════════════════════════════════════════════════════════════


class TestDuplicateSubmission:
    async def test_repeat_returns_first_order(self, shop, address):
        await fill(shop)

        first = ok(await shop.place_order("u1", address, idempotency_token="t1"))
        again = ok(await shop.place_order("u1", address, idempotency_token="t1"))

        assert again.order_id == first.order_id
        assert again.from_cache is True
        assert ok(await level(shop)) == 8
        assert len(shop.orders.all()) == 1

    async def test_concurrent_duplicates_place_once(self, shop, address):
        await fill(shop)

        results = await asyncio.gather(
            *[shop.place_order("u1", address, idempotency_token="t1") for _ in range(3)]
        )

        placed = [ok(r) for r in results]
        assert len({p.order_id for p in placed}) == 1
        assert sum(not p.from_cache for p in placed) == 1
        assert ok(await level(shop)) == 8

    async def test_tokens_are_scoped_per_user(self, shop, address):
        await fill(shop, "u1")
        await fill(shop, "u2")

        a = ok(await shop.place_order("u1", address, idempotency_token="t1"))
        b = ok(await shop.place_order("u2", address, idempotency_token="t1"))

        assert a.order_id != b.order_id

    async def test_token_reused_for_another_cart(self, shop, address):
        await fill(shop)
        ok(await shop.place_order("u1", address, idempotency_token="t1"))
        await fill(shop, "u1", ("p1", "M", 5))

        e = err(await shop.place_order("u1", address, idempotency_token="t1"))

        assert isinstance(e, IdempotencyConflict)

    async def test_failure_is_not_cached(self, shop, address):
        await fill(shop, "u1", ("p1", "M", 11))
        err(await shop.place_order("u1", address, idempotency_token="t1"))

        ok(await shop.update_quantity(Identity.user("u1"), "p1", "M", 1))
        placed = ok(await shop.place_order("u1", address, idempotency_token="t1"))

        assert placed.from_cache is False

    async def test_without_token_every_call_places(self, shop, address):
        await fill(shop)
        ok(await shop.place_order("u1", address))
        await fill(shop)
        ok(await shop.place_order("u1", address))

        assert len(shop.orders.all()) == 2



# ═══════════════════════════════════════════════════════════════════════════════
# Maintenance
# ═══════════════════════════════════════════════════════════════════════════════


class TestMaintenance:
    async def test_maintain_drops_expired_holds_and_keys(self, tee, settings, clock, address):
        shop = await Storefront.in_memory([tee], settings=settings, clock=clock)
        await fill(shop)
        ok(await shop.place_order("u1", address, idempotency_token="t1"))
        ok(await shop.reservations.reserve("p1", "M", 1, owner_id="u2"))
        store = shop.placement._dedupe.store
        assert len(store) == 1

        clock.advance(minutes=20)
        await shop.maintain()

        assert len(store) == 0
        assert shop.reservations._by_id == {}

    async def test_run_maintenance_until_cancelled(self, tee, settings, clock):
        shop = await Storefront.in_memory([tee], settings=settings, clock=clock)
        ok(await shop.reservations.reserve("p1", "M", 2, owner_id="u1"))
        clock.advance(minutes=20)

        task = asyncio.create_task(shop.run_maintenance(interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert shop.reservations._by_id == {}
