"""Pytest fixtures for cartflow tests."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from cartflow import Identity, Settings, Storefront
from cartflow.catalog import Product
from cartflow.db import create_database
from cartflow.notify import MemorySink
from cartflow.orders import Address
from cartflow.retry import Backoff


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tee():
    """p1: M has 10 units at 500, L has a single unit."""
    return Product(
        id="p1",
        name="Classic Tee",
        price=Decimal("500"),
        images=("tee.jpg",),
        stock={"M": 10, "L": 1},
    )


@pytest.fixture
def mug():
    """p2: on sale, 199 instead of 249."""
    return Product(
        id="p2",
        name="Coffee Mug",
        price=Decimal("249"),
        sale_price=Decimal("199"),
        stock={"std": 3},
    )


@pytest.fixture
def address():
    return Address(
        street="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        postal_code="560001",
    )


@pytest.fixture
def settings():
    """Default settings with an instant retry budget."""
    return Settings().with_backoff(Backoff(attempts=3, initial=0.0))


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
async def shop(tee, mug, settings, sink):
    return await Storefront.in_memory([tee, mug], settings=settings, sink=sink)


@pytest.fixture
def user():
    return Identity.user("u1")


@pytest.fixture
async def database(tmp_path):
    """File-backed SQLite so every session sees the same data."""
    session_factory, engine = await create_database(
        f"sqlite+aiosqlite:///{tmp_path / 'cartflow.db'}"
    )
    yield session_factory
    await engine.dispose()
