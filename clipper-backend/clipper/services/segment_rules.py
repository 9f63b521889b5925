"""
Segment Rules
Per-user stats and the rule matcher behind automatic segment assignment.

A segment's `rules` object may carry any of:
  tier       - str or list; matches the view tier or the latest bonus tier
  platform   - str or list; any platform the user has posted on
  min_views  - lifetime net views
  min_clips  - verified clip count
Unknown keys are ignored. A segment with no rules never matches.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from clipper.core.enums import BonusTier, ClipStatus
from clipper.services.activation import compute_net_views

DEFAULT_PLATFORM = "tiktok"

# Highest first
VIEW_TIERS = [
    (1_000_000, "super"),
    (500_000, "proven"),
    (100_000, "verified"),
    (10_000, "active"),
]
STARTER_TIER = "starter"


def classify_tier(total_views: int) -> str:
    for threshold, tier in VIEW_TIERS:
        if total_views >= threshold:
            return tier
    return STARTER_TIER


@dataclass
class UserStats:
    user_id: str
    total_views: int = 0
    platforms: set = field(default_factory=set)
    clip_count: int = 0
    verified_count: int = 0
    bonus_tier: str = BonusTier.NONE.value

    @property
    def tier(self) -> str:
        return classify_tier(self.total_views)


def collect_user_stats(clips: Iterable, bonus_tiers: Optional[dict] = None) -> dict[str, UserStats]:
    """Fold every clip into per-user stats; `bonus_tiers` maps user_id -> latest bonus tier."""
    bonus_tiers = bonus_tiers or {}
    stats: dict[str, UserStats] = {}

    for clip in clips:
        s = stats.get(clip.user_id)
        if s is None:
            s = stats[clip.user_id] = UserStats(user_id=clip.user_id)
        s.total_views += compute_net_views(clip.view_count, clip.baseline_view_count)
        s.platforms.add(clip.platform or DEFAULT_PLATFORM)
        s.clip_count += 1
        if clip.status == ClipStatus.VERIFIED.value:
            s.verified_count += 1

    for user_id, tier in bonus_tiers.items():
        if user_id in stats:
            stats[user_id].bonus_tier = tier or BonusTier.NONE.value

    return stats


def _as_list(value) -> list:
    return value if isinstance(value, (list, tuple)) else [value]


def matches_rules(rules: Optional[dict], stats: UserStats) -> bool:
    if not rules:
        return False

    if rules.get("tier"):
        tiers = _as_list(rules["tier"])
        if stats.tier not in tiers and stats.bonus_tier not in tiers:
            return False

    if rules.get("platform"):
        if not any(p in stats.platforms for p in _as_list(rules["platform"])):
            return False

    if rules.get("min_views") and stats.total_views < rules["min_views"]:
        return False

    if rules.get("min_clips") and stats.verified_count < rules["min_clips"]:
        return False

    return True


def pick_segment(segments: Iterable, stats: UserStats):
    """First matching segment; `segments` must already be ordered by priority, highest first."""
    for segment in segments:
        if matches_rules(segment.rules, stats):
            return segment
    return None
