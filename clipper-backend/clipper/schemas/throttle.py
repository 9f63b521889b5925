from datetime import datetime
from pydantic import BaseModel

class RiskThrottleOut(BaseModel):
    is_active: bool = False
    current_avg_ctr: float | None = None
    current_avg_reg_rate: float | None = None
    current_avg_day1_rate: float | None = None
    consecutive_low_days: int = 0
    consecutive_recovery_days: int = 0
    rpm_override: float | None = None
    activated_at: datetime | None = None
    deactivated_at: datetime | None = None
    last_checked_at: datetime | None = None

    class Config:
        from_attributes = True
