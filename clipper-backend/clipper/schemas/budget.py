from datetime import datetime
from pydantic import BaseModel, Field

class BudgetCycleOut(BaseModel):
    id: str
    start_date: datetime
    end_date: datetime | None = None
    status: str
    approved_at: datetime | None = None
    global_weekly_limit_cents: int
    global_monthly_limit_cents: int
    max_payout_per_clipper_week_cents: int | None = None
    max_payout_per_clip_cents: int | None = None
    spent_cents: int
    notes: str | None = None

    class Config:
        from_attributes = True

class StatusIn(BaseModel):
    status: str

class CycleLimitsIn(BaseModel):
    global_weekly_limit_cents: int | None = None
    global_monthly_limit_cents: int | None = None
    max_payout_per_clipper_week_cents: int | None = None
    max_payout_per_clip_cents: int | None = None
    notes: str | None = None

class SegmentIn(BaseModel):
    name: str = Field(min_length=1)
    weekly_limit_cents: int = 100000
    monthly_limit_cents: int | None = None
    priority: int = 0
    rules: dict | None = None
    cycle_id: str | None = None

class SegmentOut(BaseModel):
    id: str
    name: str
    weekly_limit_cents: int
    monthly_limit_cents: int
    priority: int
    rules: dict | None = None
    is_active: bool

    class Config:
        from_attributes = True

class SegmentCycleOut(BaseModel):
    id: str
    segment_id: str
    cycle_id: str
    status: str
    spent_cents: int
    remaining_cents: int
    approved_at: datetime | None = None

    class Config:
        from_attributes = True

class MembershipIn(BaseModel):
    segment_id: str

class MembershipOut(BaseModel):
    id: str
    user_id: str
    segment_id: str

    class Config:
        from_attributes = True

class BudgetEventOut(BaseModel):
    id: str
    actor: str | None = None
    action: str
    before_state: dict | None = None
    after_state: dict | None = None
    impacted_segments: list | None = None
    estimated_impact_cents: int = 0
    notes: str | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
