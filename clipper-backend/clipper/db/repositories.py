from datetime import datetime, timedelta, timezone
from typing import TypeVar, Generic, Type, Optional, Iterable
from uuid import uuid4
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from clipper.db.base import Base
from clipper.core.errors import PipelineBusyError
from clipper.core.enums import ClipStatus

T = TypeVar("T", bound=Base)


def _utc(dt: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


class BaseRepository(Generic[T]):
    """Generic repository for CRUD operations."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model

    def create(self, **kwargs) -> T:
        if "id" not in kwargs:
            kwargs["id"] = str(uuid4())
        instance = self.model(**kwargs)
        self.db.add(instance)
        return instance


class ClipSubmissionRepository(BaseRepository):
    """Repository for ClipSubmission operations."""

    def __init__(self, db: Session):
        from clipper.models import ClipSubmission
        super().__init__(db, ClipSubmission)

    def get_submitted_between(self, start: datetime, end: datetime):
        return self.db.query(self.model).filter(
            self.model.submitted_at >= start,
            self.model.submitted_at < end,
        ).order_by(self.model.user_id, self.model.submitted_at, self.model.id).all()

    def get_by_user_week(self, user_id: str, week_key: str):
        return self.db.query(self.model).filter(
            self.model.user_id == user_id,
            self.model.payout_week == week_key,
        ).order_by(self.model.submitted_at, self.model.id).all()

    def get_verified_since(self, since: datetime):
        return self.db.query(self.model).filter(
            self.model.status == ClipStatus.VERIFIED.value,
            self.model.submitted_at >= since,
        ).all()

    def get_by_user_since(self, user_id: str, since: datetime):
        return self.db.query(self.model).filter(
            self.model.user_id == user_id,
            self.model.submitted_at >= since,
        ).all()

    def get_all_for_segmenting(self):
        return self.db.query(self.model).order_by(self.model.user_id, self.model.submitted_at, self.model.id).all()


class PayoutRepository(BaseRepository):
    """Repository for ClipperPayout operations."""

    def __init__(self, db: Session):
        from clipper.models import ClipperPayout
        super().__init__(db, ClipperPayout)

    def get_by_user_week(self, user_id: str, week_key: str):
        return self.db.query(self.model).filter(
            self.model.user_id == user_id,
            self.model.week_key == week_key,
        ).first()

    def get_for_week(self, week_key: str, statuses: Iterable[str]):
        return self.db.query(self.model).filter(
            self.model.week_key == week_key,
            self.model.status.in_(list(statuses)),
        ).order_by(self.model.user_id, self.model.id).all()

    def transition(self, payout_id: str, from_statuses: Iterable[str], **values) -> bool:
        """
        Conditional update: only applies while the row is still in one of
        `from_statuses`. Returns False when another run got there first.
        """
        count = self.db.query(self.model).filter(
            self.model.id == payout_id,
            self.model.status.in_(list(from_statuses)),
        ).update(values, synchronize_session=False)
        return count == 1

    def search(self, user_id: Optional[str] = None, week_key: Optional[str] = None, limit: int = 100):
        q = self.db.query(self.model)
        if user_id:
            q = q.filter(self.model.user_id == user_id)
        if week_key:
            q = q.filter(self.model.week_key == week_key)
        return q.order_by(self.model.week_key.desc(), self.model.user_id).limit(limit).all()


class MonthlyBonusRepository(BaseRepository):
    """Repository for MonthlyBonus operations."""

    def __init__(self, db: Session):
        from clipper.models import MonthlyBonus
        super().__init__(db, MonthlyBonus)

    def get_by_user_month(self, user_id: str, month_key: str):
        return self.db.query(self.model).filter(
            self.model.user_id == user_id,
            self.model.month_key == month_key,
        ).first()

    def get_for_month(self, user_ids: Iterable[str], month_key: str) -> dict:
        rows = self.db.query(self.model).filter(
            self.model.user_id.in_(list(user_ids)),
            self.model.month_key == month_key,
        ).all()
        return {r.user_id: r for r in rows}

    def get_by_user(self, user_id: str):
        return self.db.query(self.model).filter(
            self.model.user_id == user_id
        ).order_by(self.model.month_key.desc()).all()

    def get_latest_tiers(self) -> dict:
        """user_id -> bonus tier of the most recent month on record."""
        rows = self.db.query(self.model).order_by(self.model.user_id, self.model.month_key).all()
        return {r.user_id: r.bonus_tier for r in rows}


class BudgetRepository:
    """Budget cycles, segments, memberships and the audit log."""

    def __init__(self, db: Session):
        self.db = db

    def get_cycle_starting_between(self, start: datetime, end: datetime):
        from clipper.models import BudgetCycle
        return self.db.query(BudgetCycle).filter(
            BudgetCycle.start_date >= start,
            BudgetCycle.start_date < end,
        ).order_by(BudgetCycle.created_at.desc(), BudgetCycle.id.desc()).first()

    def get_memberships(self, user_ids: Iterable[str]) -> dict:
        from clipper.models import ClipperSegmentMembership
        rows = self.db.query(ClipperSegmentMembership).filter(
            ClipperSegmentMembership.user_id.in_(list(user_ids))
        ).all()
        return {m.user_id: m.segment_id for m in rows}

    def get_segments(self, segment_ids: Optional[Iterable[str]] = None, active_only: bool = False) -> dict:
        from clipper.models import BudgetSegment
        q = self.db.query(BudgetSegment)
        if segment_ids is not None:
            q = q.filter(BudgetSegment.id.in_(list(segment_ids)))
        if active_only:
            q = q.filter(BudgetSegment.is_active == True)
        return {s.id: s for s in q.order_by(BudgetSegment.priority.desc(), BudgetSegment.name).all()}

    def get_segment_cycles(self, cycle_id: str) -> dict:
        from clipper.models import BudgetSegmentCycle
        rows = self.db.query(BudgetSegmentCycle).filter(
            BudgetSegmentCycle.cycle_id == cycle_id
        ).all()
        return {sc.segment_id: sc for sc in rows}

    def get_cycle(self, cycle_id: str):
        from clipper.models import BudgetCycle
        return self.db.query(BudgetCycle).filter(BudgetCycle.id == cycle_id).first()

    def get_segment(self, segment_id: str):
        from clipper.models import BudgetSegment
        return self.db.query(BudgetSegment).filter(BudgetSegment.id == segment_id).first()

    def get_segment_cycle(self, segment_cycle_id: str):
        from clipper.models import BudgetSegmentCycle
        return self.db.query(BudgetSegmentCycle).filter(BudgetSegmentCycle.id == segment_cycle_id).first()

    def get_membership(self, user_id: str):
        from clipper.models import ClipperSegmentMembership
        return self.db.query(ClipperSegmentMembership).filter(
            ClipperSegmentMembership.user_id == user_id
        ).first()

    def create_segment_cycle(self, segment, cycle_id: str, status: str):
        """New ledger row for `segment` in a cycle, seeded with the full weekly limit."""
        from clipper.models import BudgetSegmentCycle
        segment_cycle = BudgetSegmentCycle(
            id=str(uuid4()),
            segment_id=segment.id,
            cycle_id=cycle_id,
            status=status,
            spent_cents=0,
            remaining_cents=segment.weekly_limit_cents or 0,
        )
        self.db.add(segment_cycle)
        return segment_cycle

    def get_events(self, limit: int = 50):
        from clipper.models import BudgetEvent
        return self.db.query(BudgetEvent).order_by(
            BudgetEvent.created_at.desc(), BudgetEvent.id
        ).limit(limit).all()

    def increment_segment_spend(self, segment_cycle_id: str, delta_cents: int, weekly_limit_cents: int) -> None:
        """
        Atomic in-database increment; never read-modify-write.
        remaining is derived from the post-increment spend, so it is correct
        even for rows whose remaining_cents was never seeded.
        """
        from clipper.models import BudgetSegmentCycle
        self.db.query(BudgetSegmentCycle).filter(
            BudgetSegmentCycle.id == segment_cycle_id
        ).update({
            BudgetSegmentCycle.spent_cents: BudgetSegmentCycle.spent_cents + delta_cents,
            BudgetSegmentCycle.remaining_cents: weekly_limit_cents - (BudgetSegmentCycle.spent_cents + delta_cents),
        }, synchronize_session=False)

    def increment_cycle_spend(self, cycle_id: str, delta_cents: int) -> None:
        from clipper.models import BudgetCycle
        self.db.query(BudgetCycle).filter(
            BudgetCycle.id == cycle_id
        ).update({
            BudgetCycle.spent_cents: BudgetCycle.spent_cents + delta_cents,
        }, synchronize_session=False)

    def set_segment_cycle_status(self, segment_cycle_id: str, from_status: str, to_status: str) -> bool:
        from clipper.models import BudgetSegmentCycle
        count = self.db.query(BudgetSegmentCycle).filter(
            BudgetSegmentCycle.id == segment_cycle_id,
            BudgetSegmentCycle.status == from_status,
        ).update({BudgetSegmentCycle.status: to_status}, synchronize_session=False)
        return count == 1

    def log_event(
        self,
        action: str,
        before_state: Optional[dict] = None,
        after_state: Optional[dict] = None,
        impacted_segments: Optional[list] = None,
        estimated_impact_cents: int = 0,
        notes: Optional[str] = None,
        actor: str = "system",
    ):
        from clipper.models import BudgetEvent
        event = BudgetEvent(
            id=str(uuid4()),
            actor=actor,
            action=action,
            before_state=before_state,
            after_state=after_state,
            impacted_segments=impacted_segments or [],
            estimated_impact_cents=estimated_impact_cents,
            notes=notes,
        )
        self.db.add(event)
        return event


class ThrottleRepository(BaseRepository):
    """Repository for the RiskThrottle singleton."""

    def __init__(self, db: Session):
        from clipper.models import RiskThrottle
        super().__init__(db, RiskThrottle)

    def get(self):
        return self.db.query(self.model).order_by(self.model.created_at, self.model.id).first()

    def get_or_create(self):
        row = self.get()
        if row is None:
            row = self.create(is_active=False, consecutive_low_days=0, consecutive_recovery_days=0)
            self.db.commit()
        return row

    def is_protection_active(self) -> bool:
        row = self.get()
        return bool(row and row.is_active)


class LockRepository:
    """Row-based advisory locks keyed by action and period."""

    def __init__(self, db: Session):
        self.db = db

    def acquire(self, lock_key: str, run_id: str, now: datetime, ttl_seconds: int) -> None:
        from clipper.models import PipelineLock

        for _ in range(2):
            self.db.add(PipelineLock(lock_key=lock_key, run_id=run_id, acquired_at=now))
            try:
                self.db.commit()
                return
            except IntegrityError:
                self.db.rollback()

            existing = self.db.query(PipelineLock).filter(PipelineLock.lock_key == lock_key).first()
            if existing is None:
                continue
            if _utc(existing.acquired_at) > now - timedelta(seconds=ttl_seconds):
                raise PipelineBusyError(lock_key)

            # Stale lock from a crashed run; take it over
            self.db.query(PipelineLock).filter(
                PipelineLock.lock_key == lock_key,
                PipelineLock.run_id == existing.run_id,
            ).delete(synchronize_session=False)
            self.db.commit()

        raise PipelineBusyError(lock_key)

    def release(self, lock_key: str, run_id: str) -> None:
        from clipper.models import PipelineLock
        self.db.query(PipelineLock).filter(
            PipelineLock.lock_key == lock_key,
            PipelineLock.run_id == run_id,
        ).delete(synchronize_session=False)
        self.db.commit()
