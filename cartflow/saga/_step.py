"""
Building saga steps.

    S.step(create_order(draft), void_order, name="create_order")
    S.from_async(lambda: carts.clear(owner), on_error=storage_error, name="clear_cart")
"""

from __future__ import annotations

from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult
from combinators import lift as L

from cartflow.saga._types import SagaStep, Compensator


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
    *,
    name: str = "step",
) -> SagaStep[T, E]:
    """Without compensate the step is final: nothing undoes it."""
    return SagaStep(action, compensate, name)


def from_async[T, E](
    action: Callable[[], Awaitable[T]],
    on_error: Callable[[Exception], E],
    compensate: Compensator[T] | None = None,
    *,
    name: str = "step",
) -> SagaStep[T, E]:
    """
    Step over a coroutine function that raises instead of returning Result.

    on_error maps the exception into the saga's error type.
    """
    guarded = L.catching_async(action, on_error=on_error)
    return step(guarded, compensate, name=name)


__all__ = ("step", "from_async")
