"""
Saga execution.

The caller runs steps one at a time through a Transaction, decides what to
do with each Result, and either commits or aborts.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from kungfu import Result, Ok, Error

from cartflow.saga._types import (
    Compensator,
    Rollback,
    SagaError,
    SagaResult,
    SagaStep,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Recorded:
    """Compensator bound to the value its step produced."""

    step: str
    value: object
    compensate: Compensator[object]


# ═══════════════════════════════════════════════════════════════════════════════
# Single step / rollback
# ═══════════════════════════════════════════════════════════════════════════════


async def run_step[T, E](step: SagaStep[T, E], journal: list[Recorded]) -> Result[T, E]:
    """Await the action; on Ok, append its compensator to journal."""
    match await step.action:
        case Ok(value):
            if step.compensate is not None:
                journal.append(Recorded(step.name, value, step.compensate))  # type: ignore[arg-type]
            return Ok(value)
        case Error(e):
            return Error(e)


async def run_compensators(journal: list[Recorded]) -> Rollback:
    """
    Undo journal newest-first and empty it.

    A compensator that raises is logged and skipped; the rest still run.
    """
    undone: list[str] = []
    failed: list[str] = []

    while journal:
        entry = journal.pop()
        try:
            await entry.compensate(entry.value)
        except Exception as e:
            failed.append(entry.step)
            logger.error("compensator_failed", step=entry.step, error=repr(e))
        else:
            undone.append(entry.step)

    return Rollback(undone=tuple(undone), failed=tuple(failed))


# ═══════════════════════════════════════════════════════════════════════════════
# Transaction
# ═══════════════════════════════════════════════════════════════════════════════


class Transaction:
    """
    Step-at-a-time saga.

        tx = Transaction("place_order:u1")
        match await tx.step(create):
            case Error(e):
                return Error(await tx.abort(e))
        ...
        tx.commit(order)

    Note: The journal lives on the transaction, so a caller interrupted
    between steps (cancellation, timeout) can still rollback() afterwards.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._steps: list[str] = []
        self._journal: list[Recorded] = []

    @property
    def steps_executed(self) -> int:
        return len(self._steps)

    @property
    def compensators_recorded(self) -> int:
        return len(self._journal)

    async def step[T, E](self, step: SagaStep[T, E]) -> Result[T, E]:
        self._steps.append(step.name)
        return await run_step(step, self._journal)

    async def rollback(self) -> Rollback:
        if not self._journal:
            return Rollback()
        rollback = await run_compensators(self._journal)
        logger.info(
            "saga_rolled_back",
            saga=self.name,
            undone=list(rollback.undone),
            failed=list(rollback.failed),
        )
        return rollback

    async def abort[E](self, error: E) -> SagaError[E]:
        """Roll back and describe the failure at the latest step."""
        return SagaError(
            error=error,
            step_failed=len(self._steps),
            failed_step=self._steps[-1] if self._steps else "",
            rollback=await self.rollback(),
        )

    def commit[T](self, value: T) -> SagaResult[T]:
        """Forget the journal; nothing done so far will be undone."""
        result = SagaResult(
            value=value,
            steps=tuple(self._steps),
            compensators_recorded=len(self._journal),
        )
        self._journal.clear()
        return result


__all__ = (
    "Recorded",
    "Transaction",
    "run_step",
    "run_compensators",
)
