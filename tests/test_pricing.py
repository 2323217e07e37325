"""Tests for the totals calculator and promo lookup."""

from dataclasses import dataclass
from decimal import Decimal

from cartflow.pricing import (
    PricingPolicy,
    Totals,
    compute_totals,
    lookup_promo,
    money,
)
from cartflow.settings import DEFAULT_PROMO_CODES, Settings


@dataclass(frozen=True)
class Line:
    unit_price: Decimal
    quantity: int


POLICY = PricingPolicy()


class TestComputeTotals:
    def test_subtotal_at_threshold_pays_shipping(self):
        totals = compute_totals([Line(Decimal("500"), 2)], 0, POLICY)

        assert totals == Totals(
            subtotal=Decimal("1000.00"),
            discount=Decimal("0.00"),
            tax=Decimal("180.00"),
            shipping_fee=Decimal("100.00"),
            total=Decimal("1280.00"),
        )

    def test_promo_scenario(self):
        totals = compute_totals([Line(Decimal("500"), 2)], 10, POLICY)

        assert totals.discount == Decimal("100.00")
        assert totals.tax == Decimal("162.00")
        assert totals.shipping_fee == Decimal("100.00")
        assert totals.total == Decimal("1162.00")

    def test_free_shipping_strictly_above_threshold(self):
        totals = compute_totals([Line(Decimal("1000.01"), 1)], 0, POLICY)

        assert totals.shipping_fee == Decimal("0.00")
        assert totals.total == Decimal("1180.01")

    def test_threshold_uses_subtotal_before_discount(self):
        totals = compute_totals([Line(Decimal("600"), 2)], 20, POLICY)

        assert totals.subtotal == Decimal("1200.00")
        assert totals.discount == Decimal("240.00")
        assert totals.shipping_fee == Decimal("0.00")

    def test_empty_cart_is_all_zero(self):
        totals = compute_totals([], 20, POLICY)

        assert totals == Totals.zero()
        assert totals.shipping_fee == Decimal("0.00")

    def test_rounds_half_up(self):
        # subtotal 0.125 → 0.13, tax 0.13 × 0.18 = 0.0234 → 0.02
        totals = compute_totals([Line(Decimal("0.125"), 1)], 0, POLICY)

        assert totals.subtotal == Decimal("0.13")
        assert totals.tax == Decimal("0.02")

    def test_policy_from_settings(self):
        settings = Settings().with_tax(rate="0.05").with_shipping(threshold=500, flat_fee=40)
        policy = PricingPolicy.from_settings(settings)

        totals = compute_totals([Line(Decimal("100"), 2)], 0, policy)

        assert totals.tax == Decimal("10.00")
        assert totals.shipping_fee == Decimal("40.00")
        assert totals.total == Decimal("250.00")


class TestMoney:
    def test_float_goes_through_str(self):
        assert money(0.1) == Decimal("0.10")
        assert money("2.005") == Decimal("2.01")


class TestPromo:
    def test_known_codes(self):
        assert lookup_promo(DEFAULT_PROMO_CODES, "WELCOME10") == 10
        assert lookup_promo(DEFAULT_PROMO_CODES, "SUMMER20") == 20

    def test_lookup_normalises_case_and_whitespace(self):
        assert lookup_promo(DEFAULT_PROMO_CODES, "  welcome10 ") == 10

    def test_unknown_code(self):
        assert lookup_promo(DEFAULT_PROMO_CODES, "FREESTUFF") is None
