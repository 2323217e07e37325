"""
Reservation — short-lived holds against the stock ledger.

    from cartflow import reservation as R

    manager = R.ReservationManager(ledger, ttl=timedelta(minutes=15))

    match await manager.reserve("p1", "M", 2, owner_id="user:42"):
        case Ok(hold): ...
        case Error(InsufficientStock() as e): ...

    await manager.release(hold.id)   # idempotent

A hold earmarks stock without touching the ledger's durable level. Expired
holds are swept lazily on every read and never count as held.
"""

from __future__ import annotations

from cartflow.reservation._types import Reservation
from cartflow.reservation._manager import ReservationManager

__all__ = ("Reservation", "ReservationManager")
