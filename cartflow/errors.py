"""
Error taxonomy.

Errors are values: components return them on the Error side of a
kungfu Result. Each carries a stable `code` the HTTP layer maps to a status.

    InvalidQuantity, InvalidPromoCode, EmptyCart, InvalidAddress   → caller input
    InsufficientStock, StockUnavailable                            → business rule
    StockChanged                                                   → race, retry once
    NotFound, InvalidTransition                                    → rejected outright
    StorageUnavailable, PlacementTimedOut                          → infrastructure
    RollbackIncomplete                                             → contact support
    IdempotencyConflict                                            → duplicate token misuse
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, ClassVar


class CartflowError(Exception):
    """Base for all cartflow errors."""

    code: ClassVar[str] = "ERROR"

    @property
    def message(self) -> str:
        return str(self)

    def detail(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


# ═══════════════════════════════════════════════════════════════════════════════
# Caller Input
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class InvalidQuantity(CartflowError):
    code: ClassVar[str] = "INVALID_QUANTITY"

    quantity: int

    def __str__(self) -> str:
        return f"Quantity must be at least 1, got {self.quantity}"


@dataclass(frozen=True, slots=True)
class InvalidPromoCode(CartflowError):
    code: ClassVar[str] = "INVALID_PROMO_CODE"

    promo_code: str

    def __str__(self) -> str:
        return f"Invalid promo code: {self.promo_code}"


@dataclass(frozen=True, slots=True)
class EmptyCart(CartflowError):
    code: ClassVar[str] = "EMPTY_CART"

    def __str__(self) -> str:
        return "Cart is empty"


@dataclass(frozen=True, slots=True)
class InvalidAddress(CartflowError):
    code: ClassVar[str] = "INVALID_ADDRESS"

    fields: tuple[str, ...]

    def __str__(self) -> str:
        return f"Invalid address fields: {', '.join(self.fields)}"


# ═══════════════════════════════════════════════════════════════════════════════
# Lookup
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class NotFound(CartflowError):
    code: ClassVar[str] = "NOT_FOUND"

    entity: str
    id: str

    def __str__(self) -> str:
        return f"{self.entity}:{self.id} not found"


# ═══════════════════════════════════════════════════════════════════════════════
# Stock
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class InsufficientStock(CartflowError):
    code: ClassVar[str] = "INSUFFICIENT_STOCK"

    product_id: str
    variant_key: str
    requested: int
    available: int

    @property
    def shortfall(self) -> int:
        return self.requested - self.available

    def __str__(self) -> str:
        return (
            f"{self.product_id}/{self.variant_key}: need {self.requested}, "
            f"have {self.available} (short by {self.shortfall})"
        )


type Shortage = InsufficientStock | NotFound


@dataclass(frozen=True, slots=True)
class StockUnavailable(CartflowError):
    """Every line that could not be reserved, not just the first."""

    code: ClassVar[str] = "STOCK_UNAVAILABLE"

    shortages: tuple[Shortage, ...]

    def __str__(self) -> str:
        return "Some items are not available: " + "; ".join(str(s) for s in self.shortages)

    def detail(self) -> dict[str, Any]:
        return {
            "shortages": [
                {"code": s.code, "message": str(s), **s.detail()} for s in self.shortages
            ]
        }


@dataclass(frozen=True, slots=True)
class StockChanged(CartflowError):
    """Stock moved between reservation and commit."""

    code: ClassVar[str] = "STOCK_CHANGED"

    product_id: str
    variant_key: str

    def __str__(self) -> str:
        return f"Stock changed for {self.product_id}/{self.variant_key} during checkout"


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class InvalidTransition(CartflowError):
    code: ClassVar[str] = "INVALID_TRANSITION"

    order_id: str
    current: str
    target: str

    def __str__(self) -> str:
        return f"Order {self.order_id}: cannot go from {self.current} to {self.target}"


# ═══════════════════════════════════════════════════════════════════════════════
# Infrastructure
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class StorageUnavailable(CartflowError):
    """Transient failure that survived the retry budget."""

    code: ClassVar[str] = "STORAGE_UNAVAILABLE"

    operation: str
    reason: str

    def __str__(self) -> str:
        return f"Storage unavailable during {self.operation}, please try again ({self.reason})"


@dataclass(frozen=True, slots=True)
class PlacementTimedOut(CartflowError):
    code: ClassVar[str] = "PLACEMENT_TIMED_OUT"

    seconds: float

    def __str__(self) -> str:
        return f"Order placement did not finish within {self.seconds:g}s, nothing was charged"


@dataclass(frozen=True, slots=True)
class RollbackIncomplete(CartflowError):
    """
    Stock or order changes could not all be put back.

    Raised when a failed placement cannot be fully undone, and when a
    cancelled order cannot return every line to stock. compensators_failed
    counts the steps (or lines) left undone.
    """

    code: ClassVar[str] = "ROLLBACK_INCOMPLETE"

    cause: str
    compensators_failed: int

    def __str__(self) -> str:
        return (
            "We could not confirm that every change was put back. "
            f"Please contact support ({self.cause})"
        )


@dataclass(frozen=True, slots=True)
class IdempotencyConflict(CartflowError):
    code: ClassVar[str] = "IDEMPOTENCY_CONFLICT"

    key: str
    reason: str

    def __str__(self) -> str:
        return f"Request {self.key} conflicts with an earlier one: {self.reason}"


# ═══════════════════════════════════════════════════════════════════════════════
# Unions
# ═══════════════════════════════════════════════════════════════════════════════

type CartError = InvalidQuantity | InvalidPromoCode | NotFound | StorageUnavailable

type PlacementError = (
    EmptyCart
    | InvalidAddress
    | StockUnavailable
    | StockChanged
    | StorageUnavailable
    | PlacementTimedOut
    | RollbackIncomplete
    | IdempotencyConflict
)

type LifecycleError = NotFound | InvalidTransition | StorageUnavailable | RollbackIncomplete


__all__ = (
    "CartflowError",
    "InvalidQuantity",
    "InvalidPromoCode",
    "EmptyCart",
    "InvalidAddress",
    "NotFound",
    "InsufficientStock",
    "Shortage",
    "StockUnavailable",
    "StockChanged",
    "InvalidTransition",
    "StorageUnavailable",
    "PlacementTimedOut",
    "RollbackIncomplete",
    "IdempotencyConflict",
    "CartError",
    "PlacementError",
    "LifecycleError",
)
