from clipper.core.enums import BonusTier
from clipper.services.allocation import (
    CycleLimits,
    PayoutCandidate,
    SegmentBudget,
    allocate_payouts,
    decide_payout,
)


def segment(status="approved", limit=100_000, spent=0, name="Core", sid="seg-1", cycle_row=True):
    return SegmentBudget(
        segment_id=sid,
        name=name,
        weekly_limit_cents=limit,
        cycle_status=status if cycle_row else None,
        spent_cents=spent,
        segment_cycle_id=f"{sid}-cycle" if cycle_row else None,
    )


def candidate(user_id, base, monthly_views=0, paid_bonus=0, seg=None, payout_id=None):
    return PayoutCandidate(
        payout_id=payout_id or f"p-{user_id}",
        user_id=user_id,
        base_earnings_cents=base,
        total_cents=base,
        monthly_views=monthly_views,
        bonus_paid_this_month_cents=paid_bonus,
        segment=seg,
    )


LIMITS = CycleLimits(global_weekly_limit_cents=500_000)


class TestDecidePayout:
    def test_approves_within_budget(self):
        decision = decide_payout(candidate("u1", 1100, seg=segment()), LIMITS, protection_active=False)
        assert decision.approved
        assert decision.total_cents == 1100
        assert decision.bonus_cents == 0
        assert decision.segment_id == "seg-1"

    def test_killed_segment_holds(self):
        decision = decide_payout(candidate("u1", 1100, seg=segment("killed", name="Tier A")), LIMITS, False)
        assert not decision.approved
        assert decision.reason == "Segment 'Tier A' is killed for this cycle"

    def test_pending_segment_holds(self):
        decision = decide_payout(candidate("u1", 1100, seg=segment("pending", name="Tier A")), LIMITS, False)
        assert decision.reason == "Segment 'Tier A' is pending approval"

    def test_segment_limit_includes_spend_so_far(self):
        seg = segment(limit=2000, spent=500, name="Tier A")
        decision = decide_payout(candidate("u1", 1100, seg=seg), LIMITS, False, segment_spend=500)
        assert decision.reason == "Segment 'Tier A' weekly limit reached"

    def test_segment_limit_is_inclusive(self):
        seg = segment(limit=2000, spent=900)
        assert decide_payout(candidate("u1", 1100, seg=seg), LIMITS, False).approved

    def test_global_ceiling_holds(self):
        limits = CycleLimits(global_weekly_limit_cents=1000, spent_cents=0)
        decision = decide_payout(candidate("u1", 1100), limits, False)
        assert decision.reason == "Global weekly budget limit reached"

    def test_segment_without_cycle_row_is_not_checked(self):
        seg = segment(limit=0, cycle_row=False)
        decision = decide_payout(candidate("u1", 1100, monthly_views=150_000, seg=seg), LIMITS, False)
        assert decision.approved
        assert decision.bonus_cents == 11100

    def test_held_keeps_previous_amounts(self):
        decision = decide_payout(candidate("u1", 1100, seg=segment("killed")), LIMITS, False)
        assert decision.base_earnings_cents == 1100
        assert decision.total_cents == 1100
        assert decision.bonus_cents == 0

    def test_per_clipper_cap_clamps_base(self):
        limits = CycleLimits(global_weekly_limit_cents=500_000, max_payout_per_clipper_week_cents=1000)
        decision = decide_payout(candidate("u1", 1500), limits, False)
        assert decision.base_earnings_cents == 1000
        assert decision.total_cents == 1000

    def test_per_clip_cap_does_not_touch_bonus(self):
        limits = CycleLimits(global_weekly_limit_cents=500_000, max_payout_per_clip_cents=800)
        decision = decide_payout(candidate("u1", 2640, monthly_views=120_000), limits, False)
        assert decision.base_earnings_cents == 800
        assert decision.bonus_cents == 11100
        assert decision.total_cents == 11900


class TestBonus:
    def test_bonus_added_to_total(self):
        decision = decide_payout(candidate("u1", 2640, monthly_views=120_000, seg=segment()), LIMITS, False)
        assert decision.qualified_tier is BonusTier.VERIFIED
        assert decision.bonus_cents == 11100
        assert decision.total_cents == 13740

    def test_no_bonus_in_protection_mode(self):
        decision = decide_payout(candidate("u1", 2640, monthly_views=120_000), LIMITS, protection_active=True)
        assert decision.approved
        assert decision.bonus_cents == 0
        assert decision.total_cents == 2640
        assert decision.qualified_tier is BonusTier.VERIFIED

    def test_no_bonus_in_throttled_segment(self):
        decision = decide_payout(candidate("u1", 2640, monthly_views=120_000, seg=segment("throttled")), LIMITS, False)
        assert decision.approved
        assert decision.bonus_cents == 0

    def test_bonus_paid_once_per_month(self):
        decision = decide_payout(candidate("u1", 2640, monthly_views=150_000, paid_bonus=11100), LIMITS, False)
        assert decision.bonus_cents == 0

    def test_tier_upgrade_pays_difference(self):
        decision = decide_payout(candidate("u1", 2640, monthly_views=600_000, paid_bonus=11100), LIMITS, False)
        assert decision.qualified_tier is BonusTier.PROVEN
        assert decision.tier_bonus_cents == 44400
        assert decision.bonus_cents == 33300


class TestAllocatePayouts:
    def test_earlier_users_consume_segment_budget(self):
        seg = segment(limit=1500, name="Tier A")
        result = allocate_payouts(
            [candidate("u2", 1100, seg=seg), candidate("u1", 1100, seg=seg)],
            LIMITS,
            protection_active=False,
        )
        assert [d.user_id for d in result.approved] == ["u1"]
        assert [d.user_id for d in result.held] == ["u2"]
        assert result.held[0].reason == "Segment 'Tier A' weekly limit reached"
        assert result.held[0].total_cents == 1100

    def test_global_spend_accumulates(self):
        limits = CycleLimits(global_weekly_limit_cents=2500, spent_cents=300)
        result = allocate_payouts(
            [candidate("a", 1100), candidate("b", 1100), candidate("c", 1100)],
            limits,
            protection_active=False,
        )
        assert [d.user_id for d in result.approved] == ["a", "b"]
        assert result.held[0].reason == "Global weekly budget limit reached"
        assert sum(d.total_cents for d in result.approved) == 2200

    def test_segment_spend_includes_bonus(self):
        seg = segment(limit=20_000)
        result = allocate_payouts(
            [candidate("u1", 2640, monthly_views=120_000, seg=seg), candidate("u2", 7000, seg=seg)],
            LIMITS,
            protection_active=False,
        )
        assert [d.total_cents for d in result.approved] == [13740]
        assert result.held[0].user_id == "u2"

    def test_untracked_segment_has_no_ceiling(self):
        seg = segment(limit=1000, cycle_row=False)
        result = allocate_payouts(
            [candidate("u1", 1100, seg=seg), candidate("u2", 1100, seg=seg)],
            LIMITS,
            protection_active=False,
        )
        assert [d.user_id for d in result.approved] == ["u1", "u2"]
        assert result.held == []

    def test_empty(self):
        result = allocate_payouts([], LIMITS, protection_active=False)
        assert result.approved == []
        assert result.held == []
