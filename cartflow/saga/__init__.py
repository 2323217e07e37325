"""
Saga — sequential steps with compensation.

    from cartflow import saga as S

    tx = S.Transaction("place_order")

    match await tx.step(S.step(create_order(...), compensate=void_order, name="create")):
        case Error(e):
            failure = await tx.abort(e)     # compensators run in reverse
        case Ok(order): ...

    tx.commit(order)

A compensator that raises is logged and named in SagaError.rollback.failed;
the remaining compensators still run.
"""

from __future__ import annotations

from cartflow.saga._types import (
    Compensator,
    SagaStep,
    Rollback,
    SagaResult,
    SagaError,
)
from cartflow.saga._step import step, from_async
from cartflow.saga._run import (
    Recorded,
    Transaction,
    run_step,
    run_compensators,
)

__all__ = (
    "Compensator",
    "SagaStep",
    "Rollback",
    "SagaResult",
    "SagaError",
    "step",
    "from_async",
    "Recorded",
    "Transaction",
    "run_step",
    "run_compensators",
)
