"""
Budget Allocation
Pure fold over the week's open payout records.

Walks the budget hierarchy for each user in a fixed order:
global cycle ceiling -> segment status and ceiling -> per-clipper weekly cap
-> monthly bonus -> per-clip cap. Spend approved earlier in the run counts
against later users, so the order is part of the contract: candidates are
processed by (user_id, payout_id), first come first served.

Nothing here touches the database; the payout stage gathers the inputs and
applies the decisions.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from clipper.core.enums import BonusTier, SegmentCycleStatus
from clipper.services.bonus import select_bonus_tier


@dataclass
class SegmentBudget:
    segment_id: str
    name: str
    weekly_limit_cents: int
    # None when the segment has no segment-cycle row for this period
    cycle_status: Optional[str] = None
    spent_cents: int = 0
    segment_cycle_id: Optional[str] = None


@dataclass
class CycleLimits:
    global_weekly_limit_cents: Optional[int] = None
    spent_cents: int = 0
    max_payout_per_clipper_week_cents: Optional[int] = None
    max_payout_per_clip_cents: Optional[int] = None


@dataclass
class PayoutCandidate:
    payout_id: str
    user_id: str
    base_earnings_cents: int
    total_cents: int = 0
    monthly_views: int = 0
    bonus_paid_this_month_cents: int = 0
    segment: Optional[SegmentBudget] = None


@dataclass
class PayoutDecision:
    payout_id: str
    user_id: str
    approved: bool
    base_earnings_cents: int
    bonus_cents: int
    total_cents: int
    monthly_views: int = 0
    qualified_tier: BonusTier = BonusTier.NONE
    tier_bonus_cents: int = 0
    segment_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class AllocationResult:
    approved: list[PayoutDecision] = field(default_factory=list)
    held: list[PayoutDecision] = field(default_factory=list)


def _hold(candidate: PayoutCandidate, reason: str) -> PayoutDecision:
    # Held rows keep their pre-held amounts
    return PayoutDecision(
        payout_id=candidate.payout_id,
        user_id=candidate.user_id,
        approved=False,
        base_earnings_cents=candidate.base_earnings_cents,
        bonus_cents=0,
        total_cents=candidate.total_cents,
        monthly_views=candidate.monthly_views,
        segment_id=candidate.segment.segment_id if candidate.segment else None,
        reason=reason,
    )


def _clamp(value: int, cap: Optional[int]) -> int:
    if cap is None:
        return value
    return min(value, cap)


def decide_payout(
    candidate: PayoutCandidate,
    limits: CycleLimits,
    protection_active: bool,
    global_spend: int = 0,
    segment_spend: int = 0,
) -> PayoutDecision:
    """
    Decide one user's payout given what the run has already approved.

    `global_spend` and `segment_spend` are the totals approved earlier in the
    same run (globally and within the candidate's segment).
    """
    base = candidate.base_earnings_cents
    segment = candidate.segment
    segment_status = segment.cycle_status if segment else None

    if limits.global_weekly_limit_cents is not None:
        if limits.spent_cents + global_spend + base > limits.global_weekly_limit_cents:
            return _hold(candidate, "Global weekly budget limit reached")

    if segment is not None and segment_status is not None:
        if segment_status == SegmentCycleStatus.KILLED.value:
            return _hold(candidate, f"Segment '{segment.name}' is killed for this cycle")
        if segment_status == SegmentCycleStatus.PENDING.value:
            return _hold(candidate, f"Segment '{segment.name}' is pending approval")
        if segment.spent_cents + segment_spend + base > segment.weekly_limit_cents:
            return _hold(candidate, f"Segment '{segment.name}' weekly limit reached")

    base = _clamp(base, limits.max_payout_per_clipper_week_cents)

    tier, tier_cents = select_bonus_tier(candidate.monthly_views)
    bonus_eligible = not protection_active and (
        segment_status is None or segment_status == SegmentCycleStatus.APPROVED.value
    )
    bonus = 0
    if bonus_eligible:
        bonus = max(0, tier_cents - candidate.bonus_paid_this_month_cents)

    base = _clamp(base, limits.max_payout_per_clip_cents)

    return PayoutDecision(
        payout_id=candidate.payout_id,
        user_id=candidate.user_id,
        approved=True,
        base_earnings_cents=base,
        bonus_cents=bonus,
        total_cents=base + bonus,
        monthly_views=candidate.monthly_views,
        qualified_tier=tier,
        tier_bonus_cents=tier_cents,
        segment_id=segment.segment_id if segment else None,
    )


def allocate_payouts(
    candidates: Iterable[PayoutCandidate],
    limits: CycleLimits,
    protection_active: bool,
) -> AllocationResult:
    """Fold every candidate through `decide_payout`, carrying run spend forward."""
    result = AllocationResult()
    # Spend added by this run, globally and per segment with a cycle row
    global_spend = 0
    segment_spend: dict[str, int] = {}

    for candidate in sorted(candidates, key=lambda c: (c.user_id, c.payout_id)):
        segment = candidate.segment
        tracked = segment is not None and segment.segment_cycle_id is not None
        seg_spend = segment_spend.get(segment.segment_id, 0) if tracked else 0

        decision = decide_payout(
            candidate,
            limits,
            protection_active,
            global_spend=global_spend,
            segment_spend=seg_spend,
        )

        if not decision.approved:
            result.held.append(decision)
            continue

        result.approved.append(decision)
        global_spend += decision.total_cents
        if tracked:
            segment_spend[segment.segment_id] = seg_spend + decision.total_cents

    return result
