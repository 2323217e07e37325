"""
Stock — authoritative per-variant available quantity.

    from cartflow import stock as St

    ledger = St.MemoryLedger()
    await ledger.set_level("p1", "M", 10)

    match await ledger.try_decrement("p1", "M", 2):
        case Ok(remaining): ...
        case Error(InsufficientStock() as e): ...

Every decrement is one conditional operation per key, never a read
followed by a separate write.
"""

from __future__ import annotations

from cartflow.stock._types import StockLedger, StockLevel
from cartflow.stock._memory import MemoryLedger
from cartflow.stock._sqlalchemy import SQLAlchemyLedger

__all__ = (
    "StockLedger",
    "StockLevel",
    "MemoryLedger",
    "SQLAlchemyLedger",
)
