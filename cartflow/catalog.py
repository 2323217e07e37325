"""
Catalog — product lookup collaborator.

The storefront's catalog lives elsewhere; the engine only needs current
name, price, image and the variant → stock map for a product id.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol
from collections.abc import Iterable, Mapping

from kungfu import Result, Ok, Error

from cartflow.errors import NotFound
from cartflow.stock import StockLedger


@dataclass(frozen=True, slots=True)
class Product:
    id: str
    name: str
    price: Decimal
    sale_price: Decimal | None = None
    images: tuple[str, ...] = ()
    stock: Mapping[str, int] = field(default_factory=dict)

    @property
    def current_price(self) -> Decimal:
        """Price a shopper pays right now."""
        return self.sale_price if self.sale_price is not None else self.price

    @property
    def image_ref(self) -> str | None:
        return self.images[0] if self.images else None

    def has_variant(self, variant_key: str) -> bool:
        return variant_key in self.stock


class ProductCatalog(Protocol):
    async def get(self, product_id: str) -> Result[Product, NotFound]: ...


class MemoryCatalog:
    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: dict[str, Product] = {p.id: p for p in products}

    def put(self, product: Product) -> None:
        self._products[product.id] = product

    def all(self) -> list[Product]:
        return list(self._products.values())

    async def get(self, product_id: str) -> Result[Product, NotFound]:
        product = self._products.get(product_id)
        return Ok(product) if product else Error(NotFound("product", product_id))


async def seed_ledger(products: Iterable[Product], ledger: StockLedger) -> int:
    """Copy each product's variant → stock map into the ledger. Returns rows written."""
    count = 0
    for product in products:
        for variant_key, quantity in product.stock.items():
            await ledger.set_level(product.id, variant_key, quantity)
            count += 1
    return count


__all__ = ("Product", "ProductCatalog", "MemoryCatalog", "seed_ledger")
