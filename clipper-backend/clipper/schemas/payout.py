from datetime import datetime
from pydantic import BaseModel

class PayoutOut(BaseModel):
    id: str
    user_id: str
    week_key: str
    clips_count: int
    total_net_views: int
    base_earnings_cents: int
    bonus_cents: int
    total_cents: int
    status: str
    notes: str | None = None
    reviewed_at: datetime | None = None
    paid_at: datetime | None = None

    class Config:
        from_attributes = True

class MonthlyBonusOut(BaseModel):
    id: str
    user_id: str
    month_key: str
    monthly_views: int
    bonus_tier: str
    bonus_cents: int
    paid_cents: int
    paid: bool
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
