from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clipper.core.errors import ThrottleConflictError
from clipper.db.base import Base
from clipper.db.repositories import ThrottleRepository
from clipper.models import (
    BudgetEvent,
    BudgetSegment,
    BudgetSegmentCycle,
    ClipperSegmentMembership,
    ClipSubmission,
    ClipperPayout,
    MonthlyBonus,
    RiskThrottle,
)
from clipper.services.throttle import ProtectionModeMachine
from clipper.workers import payout_pipeline
from clipper.workers.payout_pipeline import (
    budget_alerts_job,
    check_throttle_job,
    freeze_job,
    payout_job,
    review_job,
)

from conftest import NOW, WINDOW_START, WEEK_KEY, LOW_METRICS


def payout_for(db, user_id):
    return db.query(ClipperPayout).filter(ClipperPayout.user_id == user_id).one()


# =============================================================================
# Freeze
# =============================================================================

class TestFreeze:
    def test_freezes_activated_views(self, db, make_clip):
        make_clip("u1", 50_000)
        make_clip("u1", 2_000, ctr=0.005)
        make_clip("u1", 500)

        result = freeze_job(db, now=NOW)

        assert result == {"ok": True, "processed": 1, "skipped": 0, "weekKey": WEEK_KEY}
        payout = payout_for(db, "u1")
        assert payout.status == "frozen"
        assert payout.clips_count == 1
        assert payout.total_net_views == 50_000
        assert payout.base_earnings_cents == 1100
        assert payout.total_cents == 1100

    def test_marks_clips(self, db, make_clip):
        good = make_clip("u1", 50_000)
        bad = make_clip("u1", 2_000, ctr=0.005)

        freeze_job(db, now=NOW)

        assert good.is_activated and good.payout_week == WEEK_KEY
        assert not bad.is_activated and bad.net_views == 2_000

    def test_sub_floor_earnings_lifted(self, db, make_clip):
        make_clip("u1", 5_000)
        freeze_job(db, now=NOW)
        assert payout_for(db, "u1").base_earnings_cents == 222

    def test_ignores_clips_outside_window(self, db, make_clip):
        make_clip("u1", 50_000, submitted_at=WINDOW_START - timedelta(seconds=1))
        make_clip("u2", 50_000, submitted_at=WINDOW_START + timedelta(days=7))

        result = freeze_job(db, now=NOW)

        assert result["message"] == "No clips to process"
        assert db.query(ClipperPayout).count() == 0

    def test_rerun_produces_identical_record(self, db, make_clip):
        make_clip("u1", 50_000)
        make_clip("u2", 5_000)

        freeze_job(db, now=NOW)
        columns = ["id", "clips_count", "total_net_views", "base_earnings_cents", "total_cents", "status"]
        first = {p.user_id: [getattr(p, c) for c in columns] for p in db.query(ClipperPayout).all()}

        freeze_job(db, now=NOW)
        second = {p.user_id: [getattr(p, c) for c in columns] for p in db.query(ClipperPayout).all()}

        assert first == second
        assert db.query(ClipperPayout).count() == 2

    def test_does_not_reopen_finalized_payout(self, db, make_clip, make_payout):
        make_clip("u1", 50_000)
        make_payout("u1", 999, status="approved")

        result = freeze_job(db, now=NOW)

        assert result["skipped"] == 1
        payout = payout_for(db, "u1")
        assert payout.status == "approved"
        assert payout.base_earnings_cents == 999

    def test_protection_mode_uses_lower_rpm(self, db, make_clip, protection_on):
        make_clip("u1", 100_000)
        freeze_job(db, now=NOW)
        assert payout_for(db, "u1").base_earnings_cents == 1800


# =============================================================================
# Review
# =============================================================================

class TestReview:
    def test_recomputes_and_moves_to_reviewing(self, db, make_clip):
        clip = make_clip("u1", 50_000)
        freeze_job(db, now=NOW)

        clip.view_count = 100_000
        db.commit()

        result = review_job(db, now=NOW)

        assert result == {"ok": True, "reviewed": 1, "weekKey": WEEK_KEY}
        payout = payout_for(db, "u1")
        assert payout.status == "reviewing"
        assert payout.base_earnings_cents == 2200
        assert payout.total_cents == 2200
        assert payout.reviewed_at is not None

    def test_nothing_to_review(self, db):
        result = review_job(db, now=NOW)
        assert result["message"] == "Nothing to review"
        assert result["reviewed"] == 0

    def test_only_frozen_records(self, db, make_payout):
        make_payout("u1", 1100, status="held")
        assert review_job(db, now=NOW)["message"] == "Nothing to review"


# =============================================================================
# Payout
# =============================================================================

class TestPayout:
    def test_nothing_to_pay(self, db):
        result = payout_job(db, now=NOW)
        assert result["message"] == "Nothing to pay"
        assert result["paid"] == 0

    def test_approves_and_books_spend(self, db, make_payout, make_cycle, make_segment):
        cycle = make_cycle()
        _, segment_cycle = make_segment("Tier A", cycle=cycle, members=["u1"])
        make_payout("u1", 1100)

        result = payout_job(db, now=NOW)

        assert result["paid"] == 1
        assert result["held"] == 0
        assert result["monthKey"] == "2026-10"

        payout = payout_for(db, "u1")
        assert payout.status == "approved"
        assert payout.total_cents == 1100
        assert payout.paid_at is not None
        assert segment_cycle.spent_cents == 1100
        assert segment_cycle.remaining_cents == 100000 - 1100
        assert cycle.spent_cents == 1100

        event = db.query(BudgetEvent).one()
        assert event.action == "payout_run"
        assert event.estimated_impact_cents == 1100
        assert event.impacted_segments == [segment_cycle.segment_id]

    def test_no_cycle_holds_everything(self, db, make_payout):
        make_payout("u1", 1100, status="frozen")
        make_payout("u2", 2200)

        result = payout_job(db, now=NOW)

        assert result["paid"] == 0
        assert result["held"] == 2
        assert result["heldReasons"][0]["reason"] == "No budget cycle for this week"
        assert {p.status for p in db.query(ClipperPayout).all()} == {"held"}

    def test_pending_cycle_holds_everything(self, db, make_payout, make_cycle):
        make_cycle(status="pending")
        make_payout("u1", 1100)

        result = payout_job(db, now=NOW)

        assert result["held"] == 1
        assert payout_for(db, "u1").notes == "Budget cycle not approved (status: pending)"

    def test_cycle_for_other_week_is_ignored(self, db, make_payout, make_cycle):
        make_cycle(start_date=WINDOW_START + timedelta(days=7))
        make_payout("u1", 1100)

        assert payout_job(db, now=NOW)["held"] == 1

    def test_killed_segment_holds_its_members(self, db, make_payout, make_cycle, make_segment):
        cycle = make_cycle()
        make_segment("Tier A", cycle=cycle, cycle_status="killed", members=["u1"])
        make_payout("u1", 1100)
        make_payout("u2", 1100)

        result = payout_job(db, now=NOW)

        assert result["paid"] == 1
        assert result["heldReasons"] == [{"user_id": "u1", "reason": "Segment 'Tier A' is killed for this cycle"}]
        assert payout_for(db, "u2").status == "approved"

    def test_segment_limit_first_come_first_served(self, db, make_payout, make_cycle, make_segment):
        cycle = make_cycle()
        _, segment_cycle = make_segment("Tier A", cycle=cycle, weekly_limit_cents=1500, members=["u1", "u2"])
        make_payout("u2", 1100)
        make_payout("u1", 1100)

        result = payout_job(db, now=NOW)

        assert result["paid"] == 1
        assert result["heldReasons"] == [{"user_id": "u2", "reason": "Segment 'Tier A' weekly limit reached"}]
        assert segment_cycle.spent_cents == 1100
        assert cycle.spent_cents == 1100

    def test_remaining_derived_when_never_seeded(self, db, make_payout, make_cycle):
        cycle = make_cycle()
        segment = BudgetSegment(id=str(uuid4()), name="Tier A", weekly_limit_cents=100000, is_active=True)
        segment_cycle = BudgetSegmentCycle(id=str(uuid4()), segment_id=segment.id, cycle_id=cycle.id, status="approved")
        db.add_all([
            segment,
            segment_cycle,
            ClipperSegmentMembership(id=str(uuid4()), user_id="u1", segment_id=segment.id),
        ])
        db.commit()
        assert segment_cycle.remaining_cents == 0
        make_payout("u1", 1100)

        payout_job(db, now=NOW)

        db.refresh(segment_cycle)
        assert segment_cycle.spent_cents == 1100
        assert segment_cycle.remaining_cents == 98900

    def test_pays_monthly_bonus(self, db, make_clip, make_payout, make_cycle):
        make_cycle()
        make_clip("u1", 120_000)
        make_payout("u1", 2640)

        payout_job(db, now=NOW)

        payout = payout_for(db, "u1")
        assert payout.bonus_cents == 11100
        assert payout.total_cents == 13740

        bonus = db.query(MonthlyBonus).one()
        assert bonus.month_key == "2026-10"
        assert bonus.bonus_tier == "verified"
        assert bonus.paid_cents == 11100
        assert bonus.paid is True

    def test_bonus_not_paid_twice_in_a_month(self, db, make_clip, make_payout, make_cycle):
        make_cycle()
        make_clip("u1", 120_000)
        make_payout("u1", 2640)
        db.add(MonthlyBonus(
            id=str(uuid4()), user_id="u1", month_key="2026-10",
            monthly_views=110_000, bonus_tier="verified", bonus_cents=11100, paid_cents=11100, paid=True,
        ))
        db.commit()

        payout_job(db, now=NOW)

        assert payout_for(db, "u1").bonus_cents == 0
        assert db.query(MonthlyBonus).one().paid_cents == 11100

    def test_no_bonus_in_protection_mode(self, db, make_clip, make_payout, make_cycle, protection_on):
        make_cycle()
        make_clip("u1", 120_000)
        make_payout("u1", 2640)

        payout_job(db, now=NOW)

        assert payout_for(db, "u1").bonus_cents == 0
        bonus = db.query(MonthlyBonus).one()
        assert bonus.bonus_tier == "verified"
        assert bonus.paid is False

    def test_rerun_does_not_repay(self, db, make_payout, make_cycle):
        cycle = make_cycle()
        make_payout("u1", 1100)

        payout_job(db, now=NOW)
        second = payout_job(db, now=NOW)

        assert second["message"] == "Nothing to pay"
        assert cycle.spent_cents == 1100


# =============================================================================
# Check Throttle
# =============================================================================

def seed_low_day(make_clip, now, count=5):
    for i in range(count):
        make_clip(f"u{i}", 2_000, submitted_at=now - timedelta(hours=2), **LOW_METRICS)


class TestCheckThrottle:
    def test_not_enough_data(self, db, make_clip):
        seed_low_day(make_clip, NOW, count=4)

        result = check_throttle_job(db, now=NOW)

        assert result["message"] == "Not enough data"
        assert result["samples"] == 4
        assert db.query(RiskThrottle).one().is_active is False

    def test_activates_on_third_consecutive_low_day(self, db, make_clip):
        results = []
        for day in range(3):
            now = NOW + timedelta(days=day)
            seed_low_day(make_clip, now)
            results.append(check_throttle_job(db, now=now))

        assert [r["protection"] for r in results] == [False, False, True]
        assert results[2]["activated"] is True
        assert results[2]["consecutiveLowDays"] == 3

        row = db.query(RiskThrottle).one()
        assert row.is_active is True
        assert row.rpm_override == 0.18
        assert row.activated_at is not None

    def test_steps_once_per_day(self, db, make_clip):
        seed_low_day(make_clip, NOW)

        first = check_throttle_job(db, now=NOW)
        second = check_throttle_job(db, now=NOW + timedelta(minutes=1))

        assert first["consecutiveLowDays"] == 1
        assert second == {"ok": True, "message": "Already checked today", "protection": False}
        assert db.query(RiskThrottle).one().consecutive_low_days == 1

    def test_ignores_unverified_clips(self, db, make_clip):
        for i in range(5):
            make_clip(f"u{i}", 2_000, submitted_at=NOW - timedelta(hours=1), status="pending", **LOW_METRICS)

        assert check_throttle_job(db, now=NOW)["message"] == "Not enough data"

    def test_concurrent_write_raises_conflict(self, tmp_path, monkeypatch):
        engine = create_engine(f"sqlite:///{tmp_path / 'throttle.db'}")
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
        db = Session()
        for i in range(5):
            db.add(ClipSubmission(
                id=str(uuid4()), user_id=f"u{i}", status="verified", view_count=2_000,
                submitted_at=NOW - timedelta(hours=1), **LOW_METRICS,
            ))
        db.commit()
        ThrottleRepository(db).get_or_create()

        class RacingMachine(ProtectionModeMachine):
            def step(self, counters, metrics_low):
                other = Session()
                row = ThrottleRepository(other).get()
                row.consecutive_low_days = 7
                other.commit()
                other.close()
                return super().step(counters, metrics_low)

        monkeypatch.setattr(payout_pipeline, "ProtectionModeMachine", RacingMachine)

        with pytest.raises(ThrottleConflictError):
            check_throttle_job(db, now=NOW)

        db.close()
        engine.dispose()


# =============================================================================
# Budget Alerts
# =============================================================================

class TestBudgetAlerts:
    def test_throttles_and_kills_segments(self, db, make_cycle, make_segment):
        cycle = make_cycle(spent_cents=2060)
        _, near = make_segment("A", cycle=cycle, weekly_limit_cents=1000, spent_cents=960)
        _, over = make_segment("B", cycle=cycle, weekly_limit_cents=1000, spent_cents=1000)
        _, fine = make_segment("C", cycle=cycle, weekly_limit_cents=1000, spent_cents=100)

        result = budget_alerts_job(db, now=NOW)

        assert result["alerts"] == [
            {"segment": "A", "pct": 96, "level": "warning", "label": "SOFT THROTTLE"},
            {"segment": "B", "pct": 100, "level": "critical", "label": "HARD FREEZE"},
        ]
        assert near.status == "throttled"
        assert over.status == "killed"
        assert fine.status == "approved"
        actions = sorted(e.action for e in db.query(BudgetEvent).all())
        assert actions == ["segment_auto_killed", "segment_auto_throttled"]

    def test_global_alert(self, db, make_cycle):
        make_cycle(global_weekly_limit_cents=10_000, spent_cents=8_500)

        result = budget_alerts_job(db, now=NOW)

        assert result["alerts"] == [{"segment": "GLOBAL", "pct": 85, "level": "caution", "label": "WARNING"}]

    def test_no_cycle(self, db):
        assert budget_alerts_job(db, now=NOW)["message"] == "No active cycle"

    def test_no_alerts(self, db, make_cycle, make_segment):
        cycle = make_cycle()
        make_segment("A", cycle=cycle, spent_cents=10)
        assert budget_alerts_job(db, now=NOW) == {"ok": True, "message": "No alerts", "alerts": []}
