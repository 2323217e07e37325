"""
Settings — immutable engine configuration.

Fluent builder pattern, each method returns a new Settings:

    settings = (
        Settings()
        .with_tax(rate="0.18")
        .with_shipping(threshold=1000, flat_fee=100)
        .with_reservation_ttl(minutes=15)
    )

Or from the environment:

    settings = Settings.from_env()          # CARTFLOW_TAX_RATE, ...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from decimal import Decimal
from collections.abc import Mapping

from cartflow.retry import Backoff


DEFAULT_PROMO_CODES: Mapping[str, int] = {
    "WELCOME10": 10,
    "SUMMER20": 20,
}


@dataclass(frozen=True, slots=True)
class Settings:
    """
    Engine configuration.

    Note: Immutable. Share one instance between components freely.
    """

    # Pricing policy
    tax_rate: Decimal = Decimal("0.18")
    free_shipping_threshold: Decimal = Decimal("1000")
    flat_shipping_fee: Decimal = Decimal("100")
    promo_codes: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_PROMO_CODES))

    # Checkout
    reservation_ttl: timedelta = timedelta(minutes=15)
    placement_timeout: timedelta = timedelta(seconds=30)
    idempotency_window: timedelta = timedelta(minutes=10)
    stock_changed_retries: int = 1
    low_stock_threshold: int = 3

    # Operations
    maintenance_interval: timedelta = timedelta(seconds=30)
    admin_token: str | None = None

    # Infrastructure
    backoff: Backoff = Backoff()
    database_url: str = "sqlite+aiosqlite:///:memory:"
    log_level: str = "INFO"
    log_json: bool = False

    def with_tax(self, *, rate: Decimal | str | float) -> Settings:
        return replace(self, tax_rate=Decimal(str(rate)))

    def with_shipping(
        self,
        *,
        threshold: Decimal | str | int | None = None,
        flat_fee: Decimal | str | int | None = None,
    ) -> Settings:
        """
        Free shipping applies when subtotal is strictly above threshold.

        Example:
            .with_shipping(threshold=1000, flat_fee=100)
        """
        return replace(
            self,
            free_shipping_threshold=(
                Decimal(str(threshold)) if threshold is not None else self.free_shipping_threshold
            ),
            flat_shipping_fee=(
                Decimal(str(flat_fee)) if flat_fee is not None else self.flat_shipping_fee
            ),
        )

    def with_promo_codes(self, codes: Mapping[str, int]) -> Settings:
        for code, percent in codes.items():
            if not 0 <= percent <= 100:
                raise ValueError(f"Promo {code}: discount must be within 0..100, got {percent}")
        return replace(self, promo_codes={k.strip().upper(): v for k, v in codes.items()})

    def with_reservation_ttl(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
    ) -> Settings:
        return replace(self, reservation_ttl=_delta(seconds, minutes, self.reservation_ttl))

    def with_placement_timeout(self, *, seconds: float) -> Settings:
        return replace(self, placement_timeout=timedelta(seconds=seconds))

    def with_idempotency_window(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
    ) -> Settings:
        return replace(self, idempotency_window=_delta(seconds, minutes, self.idempotency_window))

    def with_backoff(self, backoff: Backoff) -> Settings:
        return replace(self, backoff=backoff)

    def with_low_stock_threshold(self, threshold: int) -> Settings:
        return replace(self, low_stock_threshold=threshold)

    def with_database(self, url: str) -> Settings:
        return replace(self, database_url=url)

    def with_maintenance_interval(self, *, seconds: float) -> Settings:
        if seconds <= 0:
            raise ValueError(f"Maintenance interval must be positive, got {seconds}")
        return replace(self, maintenance_interval=timedelta(seconds=seconds))

    def with_admin_token(self, token: str | None) -> Settings:
        """Token for status and payment updates; None disables those routes."""
        return replace(self, admin_token=token or None)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        prefix: str = "CARTFLOW_",
    ) -> Settings:
        """
        Build settings from environment variables.

        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(prefix + name)

        settings = cls()
        if (v := get("TAX_RATE")) is not None:
            settings = settings.with_tax(rate=v)
        settings = settings.with_shipping(
            threshold=get("FREE_SHIPPING_THRESHOLD"),
            flat_fee=get("FLAT_SHIPPING_FEE"),
        )
        if (v := get("RESERVATION_TTL_SECONDS")) is not None:
            settings = settings.with_reservation_ttl(seconds=float(v))
        if (v := get("PLACEMENT_TIMEOUT_SECONDS")) is not None:
            settings = settings.with_placement_timeout(seconds=float(v))
        if (v := get("IDEMPOTENCY_WINDOW_SECONDS")) is not None:
            settings = settings.with_idempotency_window(seconds=float(v))
        if (v := get("RETRY_ATTEMPTS")) is not None:
            settings = settings.with_backoff(replace(settings.backoff, attempts=int(v)))
        if (v := get("LOW_STOCK_THRESHOLD")) is not None:
            settings = settings.with_low_stock_threshold(int(v))
        if (v := get("DATABASE_URL")) is not None:
            settings = settings.with_database(v)
        if (v := get("MAINTENANCE_INTERVAL_SECONDS")) is not None:
            settings = settings.with_maintenance_interval(seconds=float(v))
        if (v := get("ADMIN_TOKEN")) is not None:
            settings = settings.with_admin_token(v)
        if (v := get("LOG_LEVEL")) is not None:
            settings = replace(settings, log_level=v.upper())
        if (v := get("LOG_JSON")) is not None:
            settings = replace(settings, log_json=v.lower() in ("1", "true", "yes"))
        return settings


def _delta(seconds: float | None, minutes: float | None, fallback: timedelta) -> timedelta:
    total = (seconds or 0) + (minutes or 0) * 60
    return timedelta(seconds=total) if total > 0 else fallback


__all__ = ("Settings", "DEFAULT_PROMO_CODES")
