"""
Promo codes — fixed rule set, exact match after normalisation.
"""

from __future__ import annotations

from collections.abc import Mapping

type PromoRules = Mapping[str, int]
"""Normalised code → discount percent."""


def normalise(code: str) -> str:
    return code.strip().upper()


def lookup_promo(rules: PromoRules, code: str) -> int | None:
    """Discount percent for code, or None when the code is unknown."""
    return rules.get(normalise(code))


__all__ = ("PromoRules", "normalise", "lookup_promo")
