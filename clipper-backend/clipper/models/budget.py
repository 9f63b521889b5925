from datetime import datetime

from sqlalchemy import String, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, JSON, func
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class BudgetCycle(Base):
    __tablename__ = "budget_cycles"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending / approved / killed
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    global_weekly_limit_cents: Mapped[int] = mapped_column(Integer, default=500000)
    global_monthly_limit_cents: Mapped[int] = mapped_column(Integer, default=2000000)

    # None means no cap
    max_payout_per_clipper_week_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_payout_per_clip_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)

    spent_cents: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BudgetSegment(Base):
    __tablename__ = "budget_segments"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)

    weekly_limit_cents: Mapped[int] = mapped_column(Integer, default=100000)
    monthly_limit_cents: Mapped[int] = mapped_column(Integer, default=400000)
    priority: Mapped[int] = mapped_column(Integer, default=0)
    # Auto-assignment rules: tier, platform, min_views, min_clips
    rules: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BudgetSegmentCycle(Base):
    __tablename__ = "budget_segment_cycles"
    __table_args__ = (UniqueConstraint("segment_id", "cycle_id", name="uq_budget_segment_cycles_segment_cycle"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    segment_id: Mapped[str] = mapped_column(String, ForeignKey("budget_segments.id"), nullable=False)
    cycle_id: Mapped[str] = mapped_column(String, ForeignKey("budget_cycles.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending / approved / throttled / killed
    spent_cents: Mapped[int] = mapped_column(Integer, default=0)
    remaining_cents: Mapped[int] = mapped_column(Integer, default=0)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ClipperSegmentMembership(Base):
    """One active segment per user."""
    __tablename__ = "clipper_segment_membership"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    segment_id: Mapped[str] = mapped_column(String, ForeignKey("budget_segments.id"), nullable=False)

    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class BudgetEvent(Base):
    """Audit trail for automated and manual budget changes."""
    __tablename__ = "budget_events_log"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    actor: Mapped[str | None] = mapped_column(String, nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)

    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    impacted_segments: Mapped[list | None] = mapped_column(JSON, nullable=True)
    estimated_impact_cents: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
