"""Tests for settings, backoff and the retry boundary."""

from datetime import timedelta
from decimal import Decimal

import pytest
from kungfu import Ok

from cartflow.errors import StorageUnavailable
from cartflow.retry import Backoff, call_storage, retrying
from cartflow.settings import Settings

from helpers import ok, err


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.tax_rate == Decimal("0.18")
        assert settings.reservation_ttl == timedelta(minutes=15)
        assert settings.promo_codes == {"WELCOME10": 10, "SUMMER20": 20}

    def test_builders_return_new_instances(self):
        base = Settings()

        changed = base.with_tax(rate="0.05").with_shipping(threshold=500)

        assert base.tax_rate == Decimal("0.18")
        assert changed.tax_rate == Decimal("0.05")
        assert changed.free_shipping_threshold == Decimal("500")
        assert changed.flat_shipping_fee == Decimal("100")

    def test_promo_codes_are_normalised(self):
        settings = Settings().with_promo_codes({" vip50 ": 50})

        assert settings.promo_codes == {"VIP50": 50}

    def test_promo_discount_out_of_range(self):
        with pytest.raises(ValueError):
            Settings().with_promo_codes({"BROKEN": 120})

    def test_from_env(self):
        settings = Settings.from_env({
            "CARTFLOW_TAX_RATE": "0.12",
            "CARTFLOW_FREE_SHIPPING_THRESHOLD": "2000",
            "CARTFLOW_RESERVATION_TTL_SECONDS": "60",
            "CARTFLOW_PLACEMENT_TIMEOUT_SECONDS": "5",
            "CARTFLOW_RETRY_ATTEMPTS": "5",
            "CARTFLOW_DATABASE_URL": "sqlite+aiosqlite:///shop.db",
            "CARTFLOW_LOG_LEVEL": "debug",
            "CARTFLOW_LOG_JSON": "true",
            "CARTFLOW_MAINTENANCE_INTERVAL_SECONDS": "5",
            "CARTFLOW_ADMIN_TOKEN": "s3cret",
        })

        assert settings.tax_rate == Decimal("0.12")
        assert settings.free_shipping_threshold == Decimal("2000")
        assert settings.reservation_ttl == timedelta(seconds=60)
        assert settings.placement_timeout == timedelta(seconds=5)
        assert settings.backoff.attempts == 5
        assert settings.database_url == "sqlite+aiosqlite:///shop.db"
        assert settings.log_level == "DEBUG"
        assert settings.log_json is True
        assert settings.maintenance_interval == timedelta(seconds=5)
        assert settings.admin_token == "s3cret"

    def test_maintenance_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            Settings().with_maintenance_interval(seconds=0)

    def test_blank_admin_token_disables_admin_routes(self):
        assert Settings().with_admin_token("").admin_token is None

    def test_from_env_keeps_defaults(self):
        assert Settings.from_env({}) == Settings()


class TestBackoff:
    def test_delays_double_up_to_cap(self):
        assert Backoff(attempts=5, initial=0.5, factor=2, max_delay=1.5).delays() == [
            0.5,
            1.0,
            1.5,
            1.5,
        ]

    def test_single_attempt_has_no_delays(self):
        assert Backoff(attempts=1).delays() == []


class Flaky:
    def __init__(self, failures: int, exc: Exception) -> None:
        self.failures = failures
        self.exc = exc
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return "done"


INSTANT = Backoff(attempts=3, initial=0.0)


class TestRetrying:
    async def test_recovers_within_budget(self):
        fn = Flaky(2, ConnectionError("reset"))

        assert await retrying(fn, INSTANT, operation="test") == "done"
        assert fn.calls == 3

    async def test_exhausted_budget_reraises(self):
        fn = Flaky(3, ConnectionError("reset"))

        with pytest.raises(ConnectionError):
            await retrying(fn, INSTANT, operation="test")
        assert fn.calls == 3

    async def test_non_transient_errors_are_not_retried(self):
        fn = Flaky(1, KeyError("bug"))

        with pytest.raises(KeyError):
            await retrying(fn, INSTANT, operation="test")
        assert fn.calls == 1

    async def test_call_storage_maps_to_storage_unavailable(self):
        async def down():
            raise TimeoutError()

        async def up():
            return Ok(1)

        e = err(await call_storage(down, INSTANT, operation="stock.read"))

        assert isinstance(e, StorageUnavailable)
        assert e.operation == "stock.read"
        assert e.reason == "TimeoutError"
        assert ok(await call_storage(up, INSTANT, operation="stock.read")) == 1
