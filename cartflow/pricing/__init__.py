"""
Pricing — pure totals calculation.

    from cartflow import pricing as P

    totals = P.compute_totals(cart.items, cart.discount_percent, P.PricingPolicy())
    totals.total  # Decimal('1162.00')
"""

from __future__ import annotations

from cartflow.pricing._totals import (
    Priced,
    PricingPolicy,
    Totals,
    money,
    round2,
    compute_totals,
)
from cartflow.pricing._promo import PromoRules, normalise, lookup_promo

__all__ = (
    "Priced",
    "PricingPolicy",
    "Totals",
    "money",
    "round2",
    "compute_totals",
    "PromoRules",
    "normalise",
    "lookup_promo",
)
