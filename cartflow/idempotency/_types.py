"""
Idempotency records and outcomes.

A record is immutable: claim() creates it PENDING and completed() returns
the settled copy the store swaps in.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class RecordState(Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class IdempotencyRecord[T]:
    """
    What the store remembers about one key.

    fingerprint identifies the input that claimed the key; None opts out of
    the same-input check for that call.
    """

    key: str
    state: RecordState
    claimed_at: datetime
    expires_at: datetime | None
    fingerprint: str | None = None
    value: T | None = None

    @classmethod
    def claim(
        cls,
        key: str,
        now: datetime,
        expires_at: datetime | None,
        fingerprint: str | None = None,
    ) -> IdempotencyRecord[T]:
        return cls(key, RecordState.PENDING, now, expires_at, fingerprint)

    @property
    def settled(self) -> bool:
        return self.state is RecordState.COMPLETED

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def conflicts_with(self, fingerprint: str | None) -> bool:
        """Both sides fingerprinted, and the fingerprints differ."""
        return (
            fingerprint is not None
            and self.fingerprint is not None
            and self.fingerprint != fingerprint
        )

    def completed(self, value: T, expires_at: datetime | None) -> IdempotencyRecord[T]:
        return replace(self, state=RecordState.COMPLETED, value=value, expires_at=expires_at)


@dataclass(frozen=True, slots=True)
class IdempotencyResult[T]:
    """Value for a key; from_cache when an earlier call produced it."""

    value: T
    from_cache: bool
    key: str


class IdempotencyErrorKind(Enum):
    TIMEOUT = "timeout"
    STORE_ERROR = "store_error"
    EXECUTION = "execution"
    INPUT_MISMATCH = "input_mismatch"


@dataclass(frozen=True, slots=True)
class IdempotencyError[E]:
    """
    Why no value came back for a key.

    EXECUTION carries the wrapped operation's own error (or exception) in
    original_error; the other kinds are about the key itself.
    """

    kind: IdempotencyErrorKind
    message: str
    original_error: E | None = None

    @classmethod
    def execution(cls, error: E, message: str = "Operation returned Error") -> IdempotencyError[E]:
        return cls(IdempotencyErrorKind.EXECUTION, message, error)

    @classmethod
    def timed_out(cls, key: str, waited: float) -> IdempotencyError[E]:
        return cls(IdempotencyErrorKind.TIMEOUT, f"{key} still pending after {waited:g}s")

    @classmethod
    def mismatch(cls, key: str) -> IdempotencyError[E]:
        return cls(IdempotencyErrorKind.INPUT_MISMATCH, f"{key} was first used with different input")


__all__ = (
    "RecordState",
    "IdempotencyRecord",
    "IdempotencyResult",
    "IdempotencyErrorKind",
    "IdempotencyError",
)
