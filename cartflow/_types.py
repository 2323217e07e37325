"""
Core types for cartflow.

Re-exports from kungfu + identity types shared by every component.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

# Re-export from kungfu
from kungfu import Result, Ok, Error, LazyCoroResult

# ═══════════════════════════════════════════════════════════════════════════════
# Lazy Computation Aliases
# ═══════════════════════════════════════════════════════════════════════════════

type Lazy[T, E] = LazyCoroResult[T, E]
"""Lazy async computation that may fail."""

type Clock = Callable[[], datetime]
"""Source of "now". Injected so TTL logic can be driven by tests."""

# ═══════════════════════════════════════════════════════════════════════════════
# Identity — who owns a cart
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Identity:
    """
    Owner of a cart: an authenticated user or an anonymous browser session.

    Exactly one of user_id / session_id is set.
    """

    user_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        if (self.user_id is None) == (self.session_id is None):
            raise ValueError("Identity needs exactly one of user_id or session_id")

    @classmethod
    def user(cls, user_id: str) -> Identity:
        return cls(user_id=user_id)

    @classmethod
    def anonymous(cls, session_id: str | None = None) -> Identity:
        """Anonymous session; a fresh session id is generated when absent."""
        return cls(session_id=session_id or uuid.uuid4().hex)

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def key(self) -> str:
        if self.user_id is not None:
            return f"user:{self.user_id}"
        return f"session:{self.session_id}"

    @classmethod
    def from_key(cls, key: str) -> Identity:
        kind, _, value = key.partition(":")
        if kind == "user":
            return cls.user(value)
        if kind == "session":
            return cls.anonymous(value)
        raise ValueError(f"Malformed identity key: {key!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# Stock Key — unit at which stock is tracked
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class StockKey:
    product_id: str
    variant_key: str

    def __str__(self) -> str:
        return f"{self.product_id}/{self.variant_key}"


# ═══════════════════════════════════════════════════════════════════════════════
# Exports
# ═══════════════════════════════════════════════════════════════════════════════

__all__ = (
    # Re-exports from kungfu
    "Result",
    "Ok",
    "Error",
    "LazyCoroResult",
    # Type aliases
    "Lazy",
    "Clock",
    # Identity
    "Identity",
    "StockKey",
)
