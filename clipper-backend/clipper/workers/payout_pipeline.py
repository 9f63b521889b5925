"""
Payout Pipeline - Weekly clipper payout stages
Freeze (Mon) -> Review (Thu) -> Payout (Fri), plus the daily throttle check
and budget alerts. Every job takes an open session and the reference time,
and commits its own writes.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from clipper.core.enums import PayoutStatus, CycleStatus, SegmentCycleStatus, OPEN_PAYOUT_STATUSES
from clipper.core.errors import ThrottleConflictError
from clipper.core.policy import policy
from clipper.db.repositories import (
    ClipSubmissionRepository,
    PayoutRepository,
    MonthlyBonusRepository,
    BudgetRepository,
    ThrottleRepository,
)
from clipper.services.activation import compute_net_views, summarize_clips
from clipper.services.allocation import (
    CycleLimits,
    PayoutCandidate,
    PayoutDecision,
    SegmentBudget,
    allocate_payouts,
)
from clipper.services.budget_alerts import GLOBAL_SEGMENT_NAME, evaluate, next_segment_status
from clipper.services.payout_calendar import month_key, month_start, payout_window, utc_day
from clipper.services.throttle import EngagementAverages, ProtectionModeMachine, ThrottleCounters

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


# =============================================================================
# Job 1: Freeze (Monday)
# =============================================================================

def freeze_job(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Snapshot last week's activated net views and base earnings per creator.

    Recomputes from scratch on every run. Records that already reached a
    terminal status are left alone.
    """
    now = _now(now)
    window = payout_window(now)
    rpm = policy.rpm_for(ThrottleRepository(db).is_protection_active())

    logger.info(f"[freeze] Week {window.week_key} ({window.start.date()} .. {window.end.date()}), rpm={rpm}")

    clips = ClipSubmissionRepository(db).get_submitted_between(window.start, window.end)
    if not clips:
        logger.info("[freeze] No clips submitted in window")
        return {"ok": True, "message": "No clips to process", "processed": 0, "weekKey": window.week_key}

    by_user: dict[str, list] = {}
    for clip in clips:
        by_user.setdefault(clip.user_id, []).append(clip)

    payouts = PayoutRepository(db)
    processed = 0
    skipped = 0

    for user_id, user_clips in by_user.items():
        record = payouts.get_by_user_week(user_id, window.week_key)
        if record is not None and record.status not in OPEN_PAYOUT_STATUSES:
            logger.warning(f"[freeze] Skipping user {user_id}: payout already {record.status}")
            skipped += 1
            continue

        summary = summarize_clips(user_clips, rpm)

        for clip, evaluation in zip(user_clips, summary.clips):
            clip.is_activated = evaluation.activated
            clip.net_views = evaluation.net_views
            clip.payout_week = window.week_key

        values = {
            "clips_count": summary.activated_clips,
            "total_net_views": summary.total_net_views,
            "base_earnings_cents": summary.base_earnings_cents,
            "bonus_cents": 0,
            "total_cents": summary.base_earnings_cents,
            "status": PayoutStatus.FROZEN.value,
            "notes": None,
            "reviewed_at": None,
        }
        if record is None:
            payouts.create(user_id=user_id, week_key=window.week_key, **values)
        else:
            for key, value in values.items():
                setattr(record, key, value)

        logger.debug(
            f"[freeze] {user_id}: {summary.activated_clips}/{len(user_clips)} clips activated, "
            f"{summary.total_net_views} net views -> {summary.base_earnings_cents}c"
        )
        processed += 1

    db.commit()
    logger.info(f"[freeze] Done. Frozen {processed} payouts, skipped {skipped}")
    return {"ok": True, "processed": processed, "skipped": skipped, "weekKey": window.week_key}


# =============================================================================
# Job 2: Review (Thursday)
# =============================================================================

def review_job(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Re-check frozen payouts against current clip metrics.
    Moves them to `reviewing`; no budget checks here.
    """
    now = _now(now)
    window = payout_window(now)
    rpm = policy.rpm_for(ThrottleRepository(db).is_protection_active())

    payouts = PayoutRepository(db)
    clip_repo = ClipSubmissionRepository(db)

    frozen = payouts.get_for_week(window.week_key, [PayoutStatus.FROZEN.value])
    if not frozen:
        logger.info(f"[review] Nothing frozen for {window.week_key}")
        return {"ok": True, "message": "Nothing to review", "reviewed": 0, "weekKey": window.week_key}

    reviewed = 0
    for payout in frozen:
        clips = clip_repo.get_by_user_week(payout.user_id, window.week_key)
        summary = summarize_clips(clips, rpm)

        if payout.base_earnings_cents != summary.base_earnings_cents:
            logger.info(
                f"[review] {payout.user_id}: base {payout.base_earnings_cents}c -> {summary.base_earnings_cents}c"
            )

        moved = payouts.transition(
            payout.id,
            [PayoutStatus.FROZEN.value],
            clips_count=summary.activated_clips,
            total_net_views=summary.total_net_views,
            base_earnings_cents=summary.base_earnings_cents,
            total_cents=summary.base_earnings_cents,
            status=PayoutStatus.REVIEWING.value,
            reviewed_at=now,
        )
        if moved:
            reviewed += 1
        else:
            logger.warning(f"[review] Payout {payout.id} changed status concurrently, skipped")

    db.commit()
    logger.info(f"[review] Done. Reviewed {reviewed} payouts")
    return {"ok": True, "reviewed": reviewed, "weekKey": window.week_key}


# =============================================================================
# Job 3: Payout (Friday)
# =============================================================================

def _cycle_gate_reason(cycle) -> Optional[str]:
    """Fail closed: anything short of an approved cycle blocks every payout."""
    if cycle is None:
        return "No budget cycle for this week"
    if cycle.status == CycleStatus.KILLED.value:
        return "Budget cycle killed"
    if cycle.status != CycleStatus.APPROVED.value:
        return f"Budget cycle not approved (status: {cycle.status})"
    return None


def _monthly_net_views(clip_repo: ClipSubmissionRepository, user_id: str, since: datetime) -> int:
    return sum(
        compute_net_views(c.view_count, c.baseline_view_count)
        for c in clip_repo.get_by_user_since(user_id, since)
    )


def _record_monthly_bonus(
    bonus_repo: MonthlyBonusRepository,
    decision: PayoutDecision,
    month: str,
    now: datetime,
) -> None:
    row = bonus_repo.get_by_user_month(decision.user_id, month)
    if row is None:
        row = bonus_repo.create(user_id=decision.user_id, month_key=month, paid_cents=0)

    row.monthly_views = decision.monthly_views
    row.bonus_tier = decision.qualified_tier.value
    row.bonus_cents = decision.tier_bonus_cents
    row.paid_cents = (row.paid_cents or 0) + decision.bonus_cents
    row.paid = row.bonus_cents > 0 and row.paid_cents >= row.bonus_cents
    row.updated_at = now


def payout_job(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Approve or hold every open payout of the week under the budget hierarchy.

    Decisions come from the pure allocation fold; this job gathers its inputs,
    applies each decision with a conditional status update and then books the
    spend onto the ledgers with atomic increments.
    """
    now = _now(now)
    window = payout_window(now)
    month = month_key(now)
    protection = ThrottleRepository(db).is_protection_active()

    payouts = PayoutRepository(db)
    open_payouts = payouts.get_for_week(window.week_key, OPEN_PAYOUT_STATUSES)
    if not open_payouts:
        logger.info(f"[payout] Nothing to pay for {window.week_key}")
        return {
            "ok": True,
            "message": "Nothing to pay",
            "paid": 0,
            "held": 0,
            "heldReasons": [],
            "weekKey": window.week_key,
        }

    budget = BudgetRepository(db)
    cycle = budget.get_cycle_starting_between(window.start, window.end)
    gate_reason = _cycle_gate_reason(cycle)

    if gate_reason:
        logger.warning(f"[payout] All {len(open_payouts)} payouts blocked: {gate_reason}")
        held_reasons = []
        for payout in open_payouts:
            if payouts.transition(payout.id, OPEN_PAYOUT_STATUSES, status=PayoutStatus.HELD.value, notes=gate_reason):
                held_reasons.append({"user_id": payout.user_id, "reason": gate_reason})
        db.commit()
        return {
            "ok": True,
            "paid": 0,
            "held": len(held_reasons),
            "heldReasons": held_reasons,
            "weekKey": window.week_key,
        }

    # Gather fold inputs
    clip_repo = ClipSubmissionRepository(db)
    bonus_repo = MonthlyBonusRepository(db)
    user_ids = [p.user_id for p in open_payouts]

    memberships = budget.get_memberships(user_ids)
    segments = budget.get_segments(set(memberships.values()))
    segment_cycles = budget.get_segment_cycles(cycle.id)
    bonuses = bonus_repo.get_for_month(user_ids, month)

    segment_budgets: dict[str, SegmentBudget] = {}
    for segment_id, segment in segments.items():
        sc = segment_cycles.get(segment_id)
        segment_budgets[segment_id] = SegmentBudget(
            segment_id=segment_id,
            name=segment.name,
            weekly_limit_cents=segment.weekly_limit_cents or 0,
            cycle_status=sc.status if sc else None,
            spent_cents=(sc.spent_cents or 0) if sc else 0,
            segment_cycle_id=sc.id if sc else None,
        )

    since = month_start(now)
    candidates = [
        PayoutCandidate(
            payout_id=p.id,
            user_id=p.user_id,
            base_earnings_cents=p.base_earnings_cents or 0,
            total_cents=p.total_cents or 0,
            monthly_views=_monthly_net_views(clip_repo, p.user_id, since),
            bonus_paid_this_month_cents=(bonuses[p.user_id].paid_cents or 0) if p.user_id in bonuses else 0,
            segment=segment_budgets.get(memberships.get(p.user_id)),
        )
        for p in open_payouts
    ]
    limits = CycleLimits(
        global_weekly_limit_cents=cycle.global_weekly_limit_cents,
        spent_cents=cycle.spent_cents or 0,
        max_payout_per_clipper_week_cents=cycle.max_payout_per_clipper_week_cents,
        max_payout_per_clip_cents=cycle.max_payout_per_clip_cents,
    )

    result = allocate_payouts(candidates, limits, protection)

    # Apply decisions
    paid = 0
    applied_total = 0
    applied_segment_spend: dict[str, int] = {}

    for decision in result.approved:
        moved = payouts.transition(
            decision.payout_id,
            OPEN_PAYOUT_STATUSES,
            base_earnings_cents=decision.base_earnings_cents,
            bonus_cents=decision.bonus_cents,
            total_cents=decision.total_cents,
            status=PayoutStatus.APPROVED.value,
            notes=None,
            paid_at=now,
        )
        if not moved:
            logger.warning(f"[payout] Payout {decision.payout_id} changed status concurrently, skipped")
            continue

        paid += 1
        applied_total += decision.total_cents
        _record_monthly_bonus(bonus_repo, decision, month, now)

        seg = segment_budgets.get(decision.segment_id) if decision.segment_id else None
        if seg is not None and seg.segment_cycle_id is not None:
            applied_segment_spend[seg.segment_id] = applied_segment_spend.get(seg.segment_id, 0) + decision.total_cents

    held_reasons = []
    for decision in result.held:
        if payouts.transition(decision.payout_id, OPEN_PAYOUT_STATUSES, status=PayoutStatus.HELD.value, notes=decision.reason):
            logger.warning(f"[payout] Held {decision.user_id}: {decision.reason}")
            held_reasons.append({"user_id": decision.user_id, "reason": decision.reason})

    # One batched increment per touched ledger
    for segment_id, delta in applied_segment_spend.items():
        if delta:
            seg = segment_budgets[segment_id]
            budget.increment_segment_spend(seg.segment_cycle_id, delta, seg.weekly_limit_cents)
    if applied_total:
        budget.increment_cycle_spend(cycle.id, applied_total)

    budget.log_event(
        "payout_run",
        after_state={
            "week_key": window.week_key,
            "paid": paid,
            "held": len(held_reasons),
            "segment_spend": applied_segment_spend,
            "protection": protection,
        },
        impacted_segments=sorted(applied_segment_spend),
        estimated_impact_cents=applied_total,
    )

    db.commit()
    logger.info(f"[payout] Done. Approved {paid}, held {len(held_reasons)}, spent {applied_total}c")
    return {
        "ok": True,
        "paid": paid,
        "held": len(held_reasons),
        "heldReasons": held_reasons,
        "weekKey": window.week_key,
        "monthKey": month,
    }


# =============================================================================
# Job 4: Check Throttle (daily)
# =============================================================================

def check_throttle_job(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Sample the trailing window of verified clips and advance the
    protection-mode state machine by one day.
    """
    now = _now(now)
    throttle_repo = ThrottleRepository(db)
    row = throttle_repo.get_or_create()

    # One state-machine step per UTC day, however often the job runs
    if row.last_checked_at is not None and utc_day(row.last_checked_at) == utc_day(now):
        logger.info(f"[check_throttle] Already checked on {utc_day(now).isoformat()}, skipping")
        return {"ok": True, "message": "Already checked today", "protection": bool(row.is_active)}

    since = now - timedelta(hours=policy.throttle_window_hours)
    sample = ClipSubmissionRepository(db).get_verified_since(since)

    if len(sample) < policy.throttle_min_samples:
        logger.info(f"[check_throttle] Not enough data ({len(sample)} clips), skipping")
        return {"ok": True, "message": "Not enough data", "samples": len(sample), "protection": bool(row.is_active)}

    averages = EngagementAverages.from_clips(sample)
    counters = ThrottleCounters(
        is_active=bool(row.is_active),
        consecutive_low_days=row.consecutive_low_days or 0,
        consecutive_recovery_days=row.consecutive_recovery_days or 0,
    )
    step = ProtectionModeMachine().step(counters, averages.is_low())

    row.is_active = step.counters.is_active
    row.consecutive_low_days = step.counters.consecutive_low_days
    row.consecutive_recovery_days = step.counters.consecutive_recovery_days
    row.current_avg_ctr = averages.ctr
    row.current_avg_reg_rate = averages.reg_rate
    row.current_avg_day1_rate = averages.day1_post_rate
    row.rpm_override = step.rpm_override
    row.last_checked_at = now
    if step.activated:
        row.activated_at = now
    if step.deactivated:
        row.deactivated_at = now

    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ThrottleConflictError("Risk throttle state was updated by another run") from e

    if step.activated:
        logger.warning("[check_throttle] Protection mode ACTIVATED")
    elif step.deactivated:
        logger.info("[check_throttle] Protection mode deactivated")

    logger.info(
        f"[check_throttle] avg ctr={averages.ctr:.4f} reg={averages.reg_rate:.4f} "
        f"day1={averages.day1_post_rate:.4f} low={step.metrics_low} "
        f"streaks low={step.counters.consecutive_low_days} recovery={step.counters.consecutive_recovery_days}"
    )
    return {
        "ok": True,
        "protection": step.counters.is_active,
        "avgCtr": averages.ctr,
        "avgReg": averages.reg_rate,
        "avgDay1": averages.day1_post_rate,
        "samples": averages.sample_size,
        "consecutiveLowDays": step.counters.consecutive_low_days,
        "consecutiveRecoveryDays": step.counters.consecutive_recovery_days,
        "activated": step.activated,
        "deactivated": step.deactivated,
    }


# =============================================================================
# Job 5: Budget Alerts (after payout)
# =============================================================================

def budget_alerts_job(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Compare ledger spend to weekly limits for the payout week's cycle.
    Auto-throttles segments at 95% and kills them at 100%.
    """
    now = _now(now)
    window = payout_window(now)
    budget = BudgetRepository(db)

    cycle = budget.get_cycle_starting_between(window.start, window.end)
    if cycle is None:
        return {"ok": True, "message": "No active cycle", "alerts": []}

    segments = budget.get_segments(active_only=True)
    segment_cycles = budget.get_segment_cycles(cycle.id)

    alerts = []
    for segment in segments.values():
        sc = segment_cycles.get(segment.id)
        if sc is None:
            continue

        alert = evaluate(segment.name, sc.spent_cents or 0, segment.weekly_limit_cents)
        if alert is None:
            continue
        alerts.append(alert)

        new_status = next_segment_status(alert.pct, sc.status)
        if new_status and budget.set_segment_cycle_status(sc.id, sc.status, new_status):
            action = (
                "segment_auto_killed"
                if new_status == SegmentCycleStatus.KILLED.value
                else "segment_auto_throttled"
            )
            budget.log_event(
                action,
                before_state={"status": sc.status, "spent_cents": sc.spent_cents},
                after_state={"status": new_status},
                impacted_segments=[segment.id],
                notes=f"{alert.label} at {alert.pct}% of weekly limit",
            )
            logger.warning(f"[budget_alerts] Segment '{segment.name}' {sc.status} -> {new_status}")

    global_alert = evaluate(GLOBAL_SEGMENT_NAME, cycle.spent_cents or 0, cycle.global_weekly_limit_cents)
    if global_alert is not None:
        alerts.append(global_alert)

    db.commit()

    if not alerts:
        return {"ok": True, "message": "No alerts", "alerts": []}

    for alert in alerts:
        logger.warning(f"[budget_alerts] {alert.label}: {alert.segment} at {alert.pct}%")
    return {"ok": True, "alerts": [a.to_dict() for a in alerts]}
