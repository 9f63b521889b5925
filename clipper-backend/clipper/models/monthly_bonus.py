from datetime import datetime

from sqlalchemy import String, Integer, Boolean, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class MonthlyBonus(Base):
    __tablename__ = "clipper_monthly_bonuses"
    __table_args__ = (UniqueConstraint("user_id", "month_key", name="uq_clipper_monthly_bonuses_user_month"),)

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    month_key: Mapped[str] = mapped_column(String(7), nullable=False)  # e.g. 2026-10

    monthly_views: Mapped[int] = mapped_column(Integer, default=0)
    bonus_tier: Mapped[str] = mapped_column(String(20), default="none")
    bonus_cents: Mapped[int] = mapped_column(Integer, default=0)

    # Amount of bonus_cents already paid out this month
    paid_cents: Mapped[int] = mapped_column(Integer, default=0)
    paid: Mapped[bool] = mapped_column(Boolean, default=False)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
