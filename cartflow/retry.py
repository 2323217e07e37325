"""
Retry boundary — bounded exponential backoff for transient storage failures.

Storage calls return kungfu Results for business outcomes and raise for
infrastructure trouble. `call_storage` retries the transient exceptions and
turns an exhausted budget into Error(StorageUnavailable). Anything else
propagates.

    result = await call_storage(
        lambda: ledger.try_decrement("p1", "M", 2),
        backoff=settings.backoff,
        operation="stock.decrement",
    )
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from collections.abc import Callable, Awaitable

import structlog
from kungfu import Result, Error, LazyCoroResult
from sqlalchemy.exc import OperationalError, InterfaceError

from cartflow._types import Lazy
from cartflow.errors import StorageUnavailable

logger = structlog.get_logger(__name__)

TRANSIENT: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
    OperationalError,
    InterfaceError,
)


@dataclass(frozen=True, slots=True)
class Backoff:
    """Retry budget: attempts in total, delay doubling up to max_delay."""

    attempts: int = 3
    initial: float = 0.1
    factor: float = 2.0
    max_delay: float = 2.0

    def delays(self) -> list[float]:
        """Sleep before each retry (attempts - 1 entries)."""
        out: list[float] = []
        delay = self.initial
        for _ in range(max(self.attempts - 1, 0)):
            out.append(min(delay, self.max_delay))
            delay *= self.factor
        return out


async def retrying[T](
    fn: Callable[[], Awaitable[T]],
    backoff: Backoff,
    *,
    operation: str,
) -> T:
    """Await fn, retrying transient failures. Re-raises the last one."""
    delays = backoff.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except TRANSIENT as e:
            if attempt > len(delays):
                logger.warning(
                    "storage_retries_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            delay = delays[attempt - 1]
            logger.info(
                "storage_retry",
                operation=operation,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)


async def call_storage[T, E](
    fn: Callable[[], Awaitable[Result[T, E]]],
    backoff: Backoff,
    *,
    operation: str,
) -> Result[T, E | StorageUnavailable]:
    """Run a Result-returning storage call behind the retry boundary."""
    try:
        return await retrying(fn, backoff, operation=operation)
    except TRANSIENT as e:
        return Error(StorageUnavailable(operation, str(e) or type(e).__name__))


def guarded[T, E](
    fn: Callable[[], Awaitable[Result[T, E]]],
    backoff: Backoff,
    *,
    operation: str,
) -> Lazy[T, E | StorageUnavailable]:
    """Lazy form of call_storage, for saga steps."""

    async def execute() -> Result[T, E | StorageUnavailable]:
        return await call_storage(fn, backoff, operation=operation)

    return LazyCoroResult(execute)


__all__ = (
    "Backoff",
    "TRANSIENT",
    "retrying",
    "call_storage",
    "guarded",
)
