"""
Idempotency record stores.

    claim     PENDING record for a free key (compare-and-swap)
    complete  PENDING → COMPLETED with the value
    release   forget the key so the next call executes
    purge     drop every expired record

Every keyed method returns a Result; a StoreError means the store itself
is unreachable, never that a key is busy.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from kungfu import Result, Ok, Error

from cartflow._types import Clock
from cartflow.idempotency._types import IdempotencyRecord, RecordState


@dataclass(frozen=True, slots=True)
class StoreError:
    message: str
    cause: Exception | None = None


class Store[T](Protocol):
    async def get(self, key: str) -> Result[IdempotencyRecord[T] | None, StoreError]:
        """Live record for key; expired records read as None."""
        ...

    async def claim(
        self,
        key: str,
        ttl: timedelta | None,
        fingerprint: str | None = None,
    ) -> Result[bool, StoreError]:
        """
        Ok(True) when this caller now owns key.

        Note: Must be atomic. Of several concurrent claims for one key,
        exactly one wins.
        """
        ...

    async def complete(self, key: str, value: T, ttl: timedelta | None) -> Result[None, StoreError]: ...

    async def release(self, key: str) -> Result[bool, StoreError]:
        """Forget key. Ok(True) if a record was there."""
        ...

    async def purge(self) -> int:
        """Drop every expired record. Returns how many went."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Memory
# ═══════════════════════════════════════════════════════════════════════════════


class MemoryStore[T]:
    """
    Process-local record store.

    Records are immutable and swapped whole under a single lock. Expired
    records are dropped when their key is read; purge() drops the rest.
    """

    def __init__(self, clock: Clock = datetime.now) -> None:
        self._clock = clock
        self._records: dict[str, IdempotencyRecord[T]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _live(self, key: str, now: datetime) -> IdempotencyRecord[T] | None:
        record = self._records.get(key)
        if record is not None and record.is_expired(now):
            del self._records[key]
            return None
        return record

    async def get(self, key: str) -> Result[IdempotencyRecord[T] | None, StoreError]:
        async with self._lock:
            return Ok(self._live(key, self._clock()))

    async def claim(
        self,
        key: str,
        ttl: timedelta | None,
        fingerprint: str | None = None,
    ) -> Result[bool, StoreError]:
        async with self._lock:
            now = self._clock()
            if self._live(key, now) is not None:
                return Ok(False)
            self._records[key] = IdempotencyRecord.claim(
                key, now, now + ttl if ttl else None, fingerprint
            )
            return Ok(True)

    async def complete(self, key: str, value: T, ttl: timedelta | None) -> Result[None, StoreError]:
        async with self._lock:
            record = self._records.get(key)
            if record is None or record.state is not RecordState.PENDING:
                return Error(StoreError(f"{key} has no pending claim"))
            expires_at = self._clock() + ttl if ttl else None
            self._records[key] = record.completed(value, expires_at)
            return Ok(None)

    async def release(self, key: str) -> Result[bool, StoreError]:
        async with self._lock:
            return Ok(self._records.pop(key, None) is not None)

    async def purge(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
            return len(expired)


__all__ = ("StoreError", "Store", "MemoryStore")
