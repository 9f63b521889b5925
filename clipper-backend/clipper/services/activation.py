"""
Activation Service
Per-clip activation gate and base-earnings math shared by every stage.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from clipper.core.policy import policy


def compute_net_views(view_count: Optional[int], baseline_view_count: Optional[int]) -> int:
    """Views gained since submission. Never negative."""
    return max(0, (view_count or 0) - (baseline_view_count or 0))


def is_activated(
    net_views: int,
    ctr: Optional[float],
    reg_rate: Optional[float],
    day1_post_rate: Optional[float],
) -> bool:
    """
    A clip is activated only when every gate passes at once.
    Missing metrics count as 0.
    """
    return (
        net_views >= policy.activation_min_views
        and (ctr or 0) >= policy.activation_min_ctr
        and (reg_rate or 0) >= policy.activation_min_reg_rate
        and (day1_post_rate or 0) >= policy.activation_min_day1_post_rate
    )


def base_earnings_cents(total_net_views: int, rpm: float) -> int:
    """
    Cents earned for `total_net_views` at `rpm` USD per 1000 views.

    Rounds half up. A positive result below the payout floor is lifted to the
    floor; zero stays zero.
    """
    raw = (total_net_views / 1000) * rpm * 100
    cents = int(math.floor(raw + 0.5))
    if 0 < cents < policy.min_payout_cents:
        cents = policy.min_payout_cents
    return cents


@dataclass
class ClipEvaluation:
    clip_id: str
    net_views: int
    activated: bool


@dataclass
class EarningsSummary:
    clips: list[ClipEvaluation]
    activated_clips: int
    total_net_views: int
    base_earnings_cents: int


def summarize_clips(clips: Iterable, rpm: float) -> EarningsSummary:
    """
    Evaluate every clip against the gate and total the activated ones.
    Works on anything exposing the clip_submissions columns.
    """
    evaluations: list[ClipEvaluation] = []
    total = 0
    activated_count = 0

    for clip in clips:
        net = compute_net_views(clip.view_count, clip.baseline_view_count)
        activated = is_activated(net, clip.ctr, clip.reg_rate, clip.day1_post_rate)
        evaluations.append(ClipEvaluation(clip_id=clip.id, net_views=net, activated=activated))
        if activated:
            total += net
            activated_count += 1

    return EarningsSummary(
        clips=evaluations,
        activated_clips=activated_count,
        total_net_views=total,
        base_earnings_cents=base_earnings_cents(total, rpm),
    )
