from datetime import datetime

from sqlalchemy import String, Integer, Float, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class RiskThrottle(Base):
    """Singleton row holding the global protection-mode state."""
    __tablename__ = "clipper_risk_throttle"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    # Trailing 24h averages from the last check
    current_avg_ctr: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_avg_reg_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_avg_day1_rate: Mapped[float | None] = mapped_column(Float, nullable=True)

    consecutive_low_days: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_recovery_days: Mapped[int] = mapped_column(Integer, default=0)
    rpm_override: Mapped[float | None] = mapped_column(Float, nullable=True)

    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency token, bumped by the ORM on every UPDATE
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __mapper_args__ = {"version_id_col": version_id}
