"""
Monthly Bonus Tiers
Highest qualifying tier wins; tiers never stack.
"""
from __future__ import annotations

from dataclasses import dataclass

from clipper.core.enums import BonusTier


@dataclass(frozen=True)
class BonusTierRule:
    min_views: int
    bonus_cents: int
    tier: BonusTier


# Ordered highest first
MONTHLY_BONUS_TIERS = [
    BonusTierRule(min_views=1_000_000, bonus_cents=111100, tier=BonusTier.SUPER),
    BonusTierRule(min_views=500_000, bonus_cents=44400, tier=BonusTier.PROVEN),
    BonusTierRule(min_views=100_000, bonus_cents=11100, tier=BonusTier.VERIFIED),
]


def select_bonus_tier(monthly_views: int) -> tuple[BonusTier, int]:
    """Return (tier, bonus_cents) for the month's net views."""
    for rule in MONTHLY_BONUS_TIERS:
        if monthly_views >= rule.min_views:
            return rule.tier, rule.bonus_cents
    return BonusTier.NONE, 0
