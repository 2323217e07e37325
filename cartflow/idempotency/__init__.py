"""
Idempotency: one outcome per key inside a replay window.

    from cartflow import idempotency as I

    place_once = (
        I.idempotent(place)
        .key(lambda req: f"order:{req.user_id}:{req.idempotency_token}")
        .fingerprint(lambda req: cart_fingerprint(req.cart))
        .store(I.MemoryStore())
        .policy(I.Policy().with_window(minutes=10))
        .build()
    )

    match await place_once.run(request):
        case Ok(r):
            r.value, r.from_cache
        case Error(e):
            e.kind  # EXECUTION carries the operation's own error

A key first seen runs the operation. A later call with the same key gets
the stored value back, unless its input fingerprints differently
(INPUT_MISMATCH). Failures free the key. A call that finds the key
PENDING waits for the owner to settle.
"""

from __future__ import annotations

from cartflow.idempotency._types import (
    RecordState,
    IdempotencyRecord,
    IdempotencyResult,
    IdempotencyError,
    IdempotencyErrorKind,
)
from cartflow.idempotency._store import Store, StoreError, MemoryStore
from cartflow.idempotency._policy import Policy
from cartflow.idempotency._executor import IdempotentCall, run_idempotent
from cartflow.idempotency._builder import Idempotent, IdempotentExecutor, idempotent

__all__ = (
    "RecordState",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyError",
    "IdempotencyErrorKind",
    "Store",
    "StoreError",
    "MemoryStore",
    "Policy",
    "IdempotentCall",
    "run_idempotent",
    "Idempotent",
    "IdempotentExecutor",
    "idempotent",
)
