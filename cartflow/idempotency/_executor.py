"""
Idempotent execution.

One pass reads the key's record and decides:

    store unreachable    → STORE_ERROR
    no record            → claim, execute, settle
    COMPLETED            → replay the value, or INPUT_MISMATCH
    PENDING              → wait for the owner to settle, or TIMEOUT

A pass that loses a claim race, or waits on a record that disappears
(its owner failed, which frees the key), yields nothing and the next pass
starts over from the read.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from collections.abc import Callable

import structlog
from kungfu import Result, Ok, Error, LazyCoroResult

from cartflow.idempotency._types import (
    IdempotencyRecord,
    IdempotencyResult,
    IdempotencyError,
    IdempotencyErrorKind,
)
from cartflow.idempotency._store import Store, StoreError
from cartflow.idempotency._policy import Policy

logger = structlog.get_logger(__name__)

type Outcome = Result[IdempotencyResult[Any], IdempotencyError[Any]]


@dataclass(frozen=True, slots=True)
class IdempotentCall:
    """One keyed invocation of an operation."""

    key: str
    argument: Any
    operation: Callable[[Any], LazyCoroResult[Any, Any]]
    store: Store[Any]
    policy: Policy
    fingerprint: str | None = None

    def replay(self, record: IdempotencyRecord[Any]) -> Outcome:
        return Ok(IdempotencyResult(value=record.value, from_cache=True, key=self.key))


def _unreachable(err: StoreError) -> Outcome:
    return Error(IdempotencyError(IdempotencyErrorKind.STORE_ERROR, err.message, err.cause))


# ═══════════════════════════════════════════════════════════════════════════════
# Entry
# ═══════════════════════════════════════════════════════════════════════════════


async def run_idempotent(call: IdempotentCall) -> Outcome:
    while True:
        outcome = await _pass(call)
        if outcome is not None:
            return outcome


async def _pass(call: IdempotentCall) -> Outcome | None:
    match await call.store.get(call.key):
        case Error(err):
            return _unreachable(err)
        case Ok(None):
            return await _claim_and_execute(call)
        case Ok(record):
            pass

    if record.conflicts_with(call.fingerprint):
        logger.warning("idempotency_input_mismatch", key=call.key)
        return Error(IdempotencyError.mismatch(call.key))

    if record.settled:
        logger.info("idempotency_replay", key=call.key)
        return call.replay(record)

    return await _await_settled(call)


# ═══════════════════════════════════════════════════════════════════════════════
# Waiting on a twin
# ═══════════════════════════════════════════════════════════════════════════════


async def _await_settled(call: IdempotentCall) -> Outcome | None:
    """Poll the record until it settles or the wait budget runs out."""
    budget = call.policy.wait_timeout.total_seconds()
    step = call.policy.poll_interval.total_seconds()
    waited = 0.0

    logger.info("idempotency_waiting", key=call.key, budget=budget)
    while waited < budget:
        await asyncio.sleep(step)
        waited += step

        match await call.store.get(call.key):
            case Error(err):
                return _unreachable(err)
            case Ok(None):
                return None
            case Ok(record) if record.settled:
                return call.replay(record)

    return Error(IdempotencyError.timed_out(call.key, budget))


# ═══════════════════════════════════════════════════════════════════════════════
# Owning the key
# ═══════════════════════════════════════════════════════════════════════════════


async def _claim_and_execute(call: IdempotentCall) -> Outcome | None:
    match await call.store.claim(call.key, call.policy.window, call.fingerprint):
        case Error(err):
            return _unreachable(err)
        case Ok(False):
            return None

    try:
        result: Result[Any, Any] = await call.operation(call.argument)
    except asyncio.CancelledError:
        await call.store.release(call.key)
        raise
    except Exception as exc:
        await call.store.release(call.key)
        return Error(IdempotencyError.execution(exc, str(exc)))

    match result:
        case Ok(value):
            match await call.store.complete(call.key, value, call.policy.window):
                case Error(err):
                    return _unreachable(err)
            return Ok(IdempotencyResult(value=value, from_cache=False, key=call.key))
        case Error(failure):
            await call.store.release(call.key)
            return Error(IdempotencyError.execution(failure))


__all__ = ("IdempotentCall", "run_idempotent")
