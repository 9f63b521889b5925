from datetime import datetime

from sqlalchemy import String, Integer, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class ClipperPayout(Base):
    __tablename__ = "clipper_payouts"
    __table_args__ = (UniqueConstraint("user_id", "week_key", name="uq_clipper_payouts_user_week"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    week_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # e.g. 2026-W42

    clips_count: Mapped[int] = mapped_column(Integer, default=0)
    total_net_views: Mapped[int] = mapped_column(Integer, default=0)

    base_earnings_cents: Mapped[int] = mapped_column(Integer, default=0)
    bonus_cents: Mapped[int] = mapped_column(Integer, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(20), default="frozen")  # frozen / reviewing / approved / held
    notes: Mapped[str | None] = mapped_column(String, nullable=True)

    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
