"""
Budget Control - Operator changes to cycles, segments and memberships
Every change is written to budget_events_log together with its before and
after state, in the same commit as the change itself.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from clipper.core.enums import CycleStatus, SegmentCycleStatus
from clipper.core.errors import BudgetNotFoundError, InvalidBudgetChangeError
from clipper.core.policy import policy
from clipper.db.repositories import BudgetRepository, ClipSubmissionRepository, MonthlyBonusRepository
from clipper.models import BudgetCycle, BudgetSegment, ClipperSegmentMembership
from clipper.services.payout_calendar import current_week_window
from clipper.services.segment_rules import collect_user_stats, pick_segment

logger = logging.getLogger(__name__)

DEFAULT_SEGMENT_WEEKLY_LIMIT_CENTS = 100000

CYCLE_LIMIT_FIELDS = (
    "global_weekly_limit_cents",
    "global_monthly_limit_cents",
    "max_payout_per_clipper_week_cents",
    "max_payout_per_clip_cents",
)
# Caps clamp base earnings, so they may not undercut the payout floor
PAYOUT_CAP_FIELDS = ("max_payout_per_clipper_week_cents", "max_payout_per_clip_cents")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _limits_state(cycle: BudgetCycle) -> dict:
    state = {name: getattr(cycle, name) for name in CYCLE_LIMIT_FIELDS}
    state["notes"] = cycle.notes
    return state


def _require(value, kind: str, key: str):
    if value is None:
        raise BudgetNotFoundError(kind, key)
    return value


# =============================================================================
# Cycles
# =============================================================================

def get_current_cycle(db: Session, now: Optional[datetime] = None) -> Optional[BudgetCycle]:
    week = current_week_window(_now(now))
    return BudgetRepository(db).get_cycle_starting_between(week.start, week.end)


def open_cycle(db: Session, now: Optional[datetime] = None, actor: str = "operator") -> BudgetCycle:
    """
    Return this week's cycle, creating it as pending if it does not exist.
    A new cycle gets a pending segment-cycle row for every active segment,
    seeded with the segment's full weekly limit.
    """
    now = _now(now)
    existing = get_current_cycle(db, now)
    if existing is not None:
        return existing

    week = current_week_window(now)
    budget = BudgetRepository(db)
    cycle = BudgetCycle(
        id=str(uuid4()),
        start_date=week.start,
        end_date=week.end,
        status=CycleStatus.PENDING.value,
        spent_cents=0,
    )
    db.add(cycle)

    segments = budget.get_segments(active_only=True)
    for segment in segments.values():
        budget.create_segment_cycle(segment, cycle.id, SegmentCycleStatus.PENDING.value)

    budget.log_event(
        "cycle_created",
        after_state={"week_key": week.week_key, "status": cycle.status},
        impacted_segments=sorted(segments),
        actor=actor,
    )
    db.commit()
    logger.info(f"[budget] Opened cycle for {week.week_key} with {len(segments)} segments")
    return cycle


def set_cycle_status(
    db: Session,
    cycle_id: str,
    status: str,
    now: Optional[datetime] = None,
    actor: str = "operator",
) -> BudgetCycle:
    """Approve, kill or reset a cycle. `approved_at` is only kept while approved."""
    if status not in {s.value for s in CycleStatus}:
        raise InvalidBudgetChangeError(f"Unknown cycle status: {status}")

    budget = BudgetRepository(db)
    cycle = _require(budget.get_cycle(cycle_id), "Budget cycle", cycle_id)
    before = cycle.status

    cycle.status = status
    cycle.approved_at = _now(now) if status == CycleStatus.APPROVED.value else None
    budget.log_event("cycle_status_change", {"status": before}, {"status": status}, actor=actor)
    db.commit()

    logger.info(f"[budget] Cycle {cycle_id} {before} -> {status}")
    return cycle


def update_cycle_limits(db: Session, cycle_id: str, changes: Dict[str, Any], actor: str = "operator") -> BudgetCycle:
    """
    Apply a partial update of the cycle's limits and notes.
    Limits must be non-negative; the two payout caps may be cleared with None
    but never set below the minimum payout floor.
    """
    allowed = set(CYCLE_LIMIT_FIELDS) | {"notes"}
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise InvalidBudgetChangeError(f"Unknown cycle fields: {', '.join(unknown)}")

    for name in CYCLE_LIMIT_FIELDS:
        if name not in changes:
            continue
        value = changes[name]
        if value is None:
            if name not in PAYOUT_CAP_FIELDS:
                raise InvalidBudgetChangeError(f"{name} cannot be cleared")
            continue
        if value < 0:
            raise InvalidBudgetChangeError(f"{name} must be non-negative")
        if name in PAYOUT_CAP_FIELDS and value < policy.min_payout_cents:
            raise InvalidBudgetChangeError(
                f"{name} must be at least the minimum payout ({policy.min_payout_cents}c)"
            )

    budget = BudgetRepository(db)
    cycle = _require(budget.get_cycle(cycle_id), "Budget cycle", cycle_id)
    before = _limits_state(cycle)

    for name, value in changes.items():
        setattr(cycle, name, value)
    budget.log_event("cycle_limits_change", before, _limits_state(cycle), actor=actor)
    db.commit()

    logger.info(f"[budget] Cycle {cycle_id} limits changed: {sorted(changes)}")
    return cycle


# =============================================================================
# Segments
# =============================================================================

def create_segment(
    db: Session,
    name: str,
    weekly_limit_cents: int = DEFAULT_SEGMENT_WEEKLY_LIMIT_CENTS,
    monthly_limit_cents: Optional[int] = None,
    priority: int = 0,
    rules: Optional[dict] = None,
    cycle_id: Optional[str] = None,
    now: Optional[datetime] = None,
    actor: str = "operator",
) -> BudgetSegment:
    """
    Create a segment and, when a cycle is given or this week's cycle exists,
    its segment-cycle row with `remaining_cents` seeded from the weekly limit.
    """
    if weekly_limit_cents < 0:
        raise InvalidBudgetChangeError("weekly_limit_cents must be non-negative")

    budget = BudgetRepository(db)
    if cycle_id is not None:
        cycle = _require(budget.get_cycle(cycle_id), "Budget cycle", cycle_id)
    else:
        cycle = get_current_cycle(db, now)

    segment = BudgetSegment(
        id=str(uuid4()),
        name=name,
        weekly_limit_cents=weekly_limit_cents,
        priority=priority,
        rules=rules,
        is_active=True,
    )
    if monthly_limit_cents is not None:
        segment.monthly_limit_cents = monthly_limit_cents
    db.add(segment)

    if cycle is not None:
        budget.create_segment_cycle(segment, cycle.id, SegmentCycleStatus.PENDING.value)

    budget.log_event(
        "segment_created",
        after_state={"name": name, "weekly_limit_cents": weekly_limit_cents, "priority": priority, "rules": rules},
        impacted_segments=[segment.id],
        actor=actor,
    )
    db.commit()

    logger.info(f"[budget] Created segment '{name}'")
    return segment


def set_segment_cycle_status(
    db: Session,
    segment_cycle_id: str,
    status: str,
    now: Optional[datetime] = None,
    actor: str = "operator",
):
    if status not in {s.value for s in SegmentCycleStatus}:
        raise InvalidBudgetChangeError(f"Unknown segment status: {status}")

    budget = BudgetRepository(db)
    segment_cycle = _require(budget.get_segment_cycle(segment_cycle_id), "Segment cycle", segment_cycle_id)
    before = segment_cycle.status

    segment_cycle.status = status
    segment_cycle.approved_at = _now(now) if status == SegmentCycleStatus.APPROVED.value else None
    budget.log_event(
        "segment_cycle_status_change",
        {"status": before},
        {"status": status},
        impacted_segments=[segment_cycle.segment_id],
        actor=actor,
    )
    db.commit()

    logger.info(f"[budget] Segment cycle {segment_cycle_id} {before} -> {status}")
    return segment_cycle


# =============================================================================
# Memberships
# =============================================================================

def assign_member(db: Session, user_id: str, segment_id: str, actor: str = "operator") -> ClipperSegmentMembership:
    """Put `user_id` in `segment_id`, moving them out of any previous segment."""
    budget = BudgetRepository(db)
    _require(budget.get_segment(segment_id), "Segment", segment_id)

    membership = budget.get_membership(user_id)
    before = None
    if membership is None:
        membership = ClipperSegmentMembership(id=str(uuid4()), user_id=user_id, segment_id=segment_id)
        db.add(membership)
    else:
        before = {"user_id": user_id, "segment_id": membership.segment_id}
        membership.segment_id = segment_id

    impacted = sorted({segment_id, before["segment_id"]}) if before else [segment_id]
    budget.log_event(
        "member_assigned",
        before,
        {"user_id": user_id, "segment_id": segment_id},
        impacted_segments=impacted,
        actor=actor,
    )
    db.commit()
    return membership


def remove_member(db: Session, user_id: str, actor: str = "operator") -> None:
    budget = BudgetRepository(db)
    membership = _require(budget.get_membership(user_id), "Membership", user_id)

    budget.log_event(
        "member_removed",
        {"user_id": user_id, "segment_id": membership.segment_id},
        None,
        impacted_segments=[membership.segment_id],
        actor=actor,
    )
    db.delete(membership)
    db.commit()


def auto_assign_segments(db: Session, actor: str = "system") -> Dict[str, Any]:
    """
    Place every clipper without a segment into the highest-priority active
    segment whose rules they match. Existing memberships are left alone.
    """
    budget = BudgetRepository(db)
    segments = list(budget.get_segments(active_only=True).values())
    if not segments:
        return {"ok": True, "message": "No active segments"}

    clips = ClipSubmissionRepository(db).get_all_for_segmenting()
    if not clips:
        return {"ok": True, "message": "No clips found"}

    stats = collect_user_stats(clips, MonthlyBonusRepository(db).get_latest_tiers())
    already = budget.get_memberships(stats)

    assignments = []
    for user_id in sorted(stats):
        if user_id in already:
            continue
        segment = pick_segment(segments, stats[user_id])
        if segment is None:
            continue
        db.add(ClipperSegmentMembership(id=str(uuid4()), user_id=user_id, segment_id=segment.id))
        assignments.append((user_id, segment.id))

    if assignments:
        budget.log_event(
            "auto_assign_segments",
            after_state={"assignments_count": len(assignments)},
            impacted_segments=sorted({segment_id for _, segment_id in assignments}),
            notes=f"Auto-assigned {len(assignments)} clippers to segments based on rules",
            actor=actor,
        )
    db.commit()

    logger.info(f"[budget] Auto-assign evaluated {len(stats)} clippers, assigned {len(assignments)}")
    return {"ok": True, "evaluated": len(stats), "assigned": len(assignments)}
