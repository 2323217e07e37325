"""
Saga types.

A step pairs a lazy action with the compensator that undoes it. Outcomes
name the steps involved so a failed checkout can say exactly what was and
was not put back.
"""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Callable, Awaitable
from kungfu import LazyCoroResult

type Compensator[T] = Callable[[T], Awaitable[None]]
"""Receives the step's value and undoes it. Raises when it cannot."""

# ═══════════════════════════════════════════════════════════════════════════════
# Steps
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    Named action + compensator.

    The compensator is recorded only once the action returns Ok.
    """

    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None
    name: str = "step"


# ═══════════════════════════════════════════════════════════════════════════════
# Outcomes
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Rollback:
    """Compensators run for a failed saga, newest first."""

    undone: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps: tuple[str, ...]
    compensators_recorded: int

    @property
    def steps_executed(self) -> int:
        return len(self.steps)


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """
    Failed saga.

    step_failed is 1-based; failed_step is that step's name.
    """

    error: E
    step_failed: int
    failed_step: str
    rollback: Rollback

    @property
    def compensators_run(self) -> int:
        return len(self.rollback.undone)

    @property
    def compensators_failed(self) -> int:
        return len(self.rollback.failed)

    @property
    def rollback_complete(self) -> bool:
        return self.rollback.complete


__all__ = (
    "Compensator",
    "SagaStep",
    "Rollback",
    "SagaResult",
    "SagaError",
)
