"""
Reservation manager — in-memory hold store with TTL.

Indexes holds by id and by (product, variant). One lock per key makes the
"available − held ≥ quantity" check and the insert a single step, so two
concurrent checkouts cannot both claim the same unit. A key's lock lives
only while some caller holds or waits on it.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter, defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

import structlog
from kungfu import Result, Ok, Error

from cartflow._types import Clock, StockKey
from cartflow.errors import InsufficientStock, NotFound
from cartflow.reservation._types import Reservation
from cartflow.stock import StockLedger

logger = structlog.get_logger(__name__)


class ReservationManager:
    def __init__(
        self,
        ledger: StockLedger,
        ttl: timedelta = timedelta(minutes=15),
        clock: Clock = datetime.now,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Reservation TTL must be positive")
        self._ledger = ledger
        self._ttl = ttl
        self._clock = clock
        self._by_id: dict[str, Reservation] = {}
        self._by_key: defaultdict[StockKey, set[str]] = defaultdict(set)
        self._locks: dict[StockKey, asyncio.Lock] = {}
        self._waiters: Counter[StockKey] = Counter()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    # ── reads ────────────────────────────────────────────────────────────────

    def held(self, product_id: str, variant_key: str) -> int:
        """Units held by live reservations for one variant."""
        key = StockKey(product_id, variant_key)
        self._sweep_key(key, self._clock())
        return sum(self._by_id[rid].quantity for rid in self._by_key.get(key, ()))

    async def available(
        self, product_id: str, variant_key: str
    ) -> Result[int, NotFound]:
        """Ledger level minus live holds."""
        match await self._ledger.get_available(product_id, variant_key):
            case Ok(level):
                return Ok(max(level - self.held(product_id, variant_key), 0))
            case Error(e):
                return Error(e)

    def get(self, reservation_id: str) -> Reservation | None:
        reservation = self._by_id.get(reservation_id)
        if reservation is None or reservation.is_expired(self._clock()):
            return None
        return reservation

    def active(self) -> list[Reservation]:
        self.sweep()
        return list(self._by_id.values())

    # ── writes ───────────────────────────────────────────────────────────────

    async def reserve(
        self,
        product_id: str,
        variant_key: str,
        quantity: int,
        owner_id: str,
    ) -> Result[Reservation, InsufficientStock | NotFound]:
        if quantity < 1:
            raise ValueError(f"Reservation quantity must be positive, got {quantity}")

        key = StockKey(product_id, variant_key)
        async with self._locked(key):
            match await self._ledger.get_available(product_id, variant_key):
                case Error(e):
                    return Error(e)
                case Ok(level):
                    pass

            held = self.held(product_id, variant_key)
            free = level - held
            if free < quantity:
                logger.info(
                    "reservation_refused",
                    key=str(key),
                    requested=quantity,
                    level=level,
                    held=held,
                )
                return Error(InsufficientStock(product_id, variant_key, quantity, max(free, 0)))

            now = self._clock()
            reservation = Reservation(
                id=f"rsv_{uuid.uuid4().hex[:16]}",
                product_id=product_id,
                variant_key=variant_key,
                quantity=quantity,
                owner_id=owner_id,
                created_at=now,
                expires_at=now + self._ttl,
            )
            self._by_id[reservation.id] = reservation
            self._by_key[key].add(reservation.id)

        logger.info(
            "reservation_created",
            reservation_id=reservation.id,
            key=str(key),
            quantity=quantity,
            owner_id=owner_id,
            expires_at=reservation.expires_at.isoformat(),
        )
        return Ok(reservation)

    async def release(self, reservation_id: str) -> bool:
        """Drop a hold. Unknown, released or expired ids are a no-op (False)."""
        reservation = self._by_id.get(reservation_id)
        if reservation is None:
            return False
        async with self._locked(reservation.key):
            if self._drop(reservation_id) is None:
                return False
        logger.info("reservation_released", reservation_id=reservation_id, key=str(reservation.key))
        return True

    async def release_all(self, reservation_ids: list[str]) -> int:
        released = 0
        for rid in reservation_ids:
            if await self.release(rid):
                released += 1
        return released

    @asynccontextmanager
    async def _locked(self, key: StockKey) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                del self._locks[key]

    # ── expiry ───────────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Drop every expired hold. Returns how many were dropped."""
        now = self._clock()
        dropped = 0
        for key in list(self._by_key):
            dropped += self._sweep_key(key, now)
        return dropped

    def _sweep_key(self, key: StockKey, now: datetime) -> int:
        expired = [
            rid for rid in self._by_key.get(key, ()) if self._by_id[rid].is_expired(now)
        ]
        for rid in expired:
            reservation = self._drop(rid)
            if reservation is not None:
                logger.info(
                    "reservation_expired",
                    reservation_id=rid,
                    key=str(key),
                    quantity=reservation.quantity,
                    owner_id=reservation.owner_id,
                )
        return len(expired)

    def _drop(self, reservation_id: str) -> Reservation | None:
        reservation = self._by_id.pop(reservation_id, None)
        if reservation is None:
            return None
        ids = self._by_key.get(reservation.key)
        if ids is not None:
            ids.discard(reservation_id)
            if not ids:
                del self._by_key[reservation.key]
        return reservation


__all__ = ("ReservationManager",)
