from datetime import datetime

from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from clipper.db.base import Base

class PipelineLock(Base):
    """Advisory lock row; the primary key makes acquisition exclusive."""
    __tablename__ = "pipeline_locks"

    lock_key: Mapped[str] = mapped_column(String, primary_key=True)  # e.g. payout:2026-W42
    run_id: Mapped[str] = mapped_column(String, nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
