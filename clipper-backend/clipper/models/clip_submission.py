from datetime import datetime

from sqlalchemy import String, Integer, Float, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class ClipSubmission(Base):
    __tablename__ = "clip_submissions"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    clip_url: Mapped[str] = mapped_column(String, default="")
    platform: Mapped[str] = mapped_column(String(20), default="youtube")
    status: Mapped[str] = mapped_column(String(20), default="pending")  # pending / verified / rejected

    # Views at submission time are the baseline for net-view deltas
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    baseline_view_count: Mapped[int] = mapped_column(Integer, default=0)

    # Engagement ratios in [0, 1]
    ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    reg_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    day1_post_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Written by the freeze stage
    is_activated: Mapped[bool] = mapped_column(Boolean, default=False)
    net_views: Mapped[int] = mapped_column(Integer, default=0)
    payout_week: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
