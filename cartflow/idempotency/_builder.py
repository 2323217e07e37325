"""
Fluent construction of idempotent operations.

    place_once = (
        I.idempotent(place)
        .key(lambda req: req.idempotency_key)
        .fingerprint(lambda req: cart_fingerprint(req.cart))
        .policy(I.Policy().with_window(minutes=10))
        .build()
    )

    await place_once.run(request)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from collections.abc import Callable

from kungfu import LazyCoroResult, Result

from cartflow.idempotency._types import IdempotencyResult, IdempotencyError
from cartflow.idempotency._store import Store, MemoryStore
from cartflow.idempotency._policy import Policy
from cartflow.idempotency._executor import IdempotentCall, run_idempotent

type KeyOf[K] = Callable[[K], str]
type FingerprintOf[K] = Callable[[K], str | None]


@dataclass(frozen=True, slots=True)
class IdempotentExecutor[K, T, E]:
    operation: Callable[[K], LazyCoroResult[T, E]]
    key_of: KeyOf[K]
    fingerprint_of: FingerprintOf[K] | None
    store: Store[T]
    policy: Policy

    def call(self, argument: K) -> IdempotentCall:
        return IdempotentCall(
            key=self.key_of(argument),
            argument=argument,
            operation=self.operation,
            store=self.store,
            policy=self.policy,
            fingerprint=self.fingerprint_of(argument) if self.fingerprint_of else None,
        )

    def run(self, argument: K) -> LazyCoroResult[IdempotencyResult[T], IdempotencyError[E]]:
        call = self.call(argument)

        async def go() -> Result[IdempotencyResult[T], IdempotencyError[E]]:
            return await run_idempotent(call)

        return LazyCoroResult(go)

    async def purge(self) -> int:
        """Drop expired records from the store."""
        return await self.store.purge()


@dataclass(frozen=True, slots=True)
class Idempotent[K, T, E]:
    operation: Callable[[K], LazyCoroResult[T, E]]
    key_of: KeyOf[K] | None = None
    fingerprint_of: FingerprintOf[K] | None = None
    record_store: Store[T] | None = None
    settings: Policy = Policy()

    def key(self, fn: KeyOf[K]) -> Idempotent[K, T, E]:
        return replace(self, key_of=fn)

    def fingerprint(self, fn: FingerprintOf[K]) -> Idempotent[K, T, E]:
        """Reject a reused key whose input fingerprints differently."""
        return replace(self, fingerprint_of=fn)

    def store(self, store: Store[T]) -> Idempotent[K, T, E]:
        return replace(self, record_store=store)

    def policy(self, policy: Policy) -> Idempotent[K, T, E]:
        return replace(self, settings=policy)

    def build(self) -> IdempotentExecutor[K, T, E]:
        if self.key_of is None:
            raise ValueError("idempotent operation needs key()")
        return IdempotentExecutor(
            operation=self.operation,
            key_of=self.key_of,
            fingerprint_of=self.fingerprint_of,
            store=self.record_store if self.record_store is not None else MemoryStore(),
            policy=self.settings,
        )


def idempotent[K, T, E](operation: Callable[[K], LazyCoroResult[T, E]]) -> Idempotent[K, T, E]:
    return Idempotent(operation)


__all__ = ("Idempotent", "IdempotentExecutor", "idempotent")
