from clipper.models.clip_submission import ClipSubmission
from clipper.models.payout import ClipperPayout
from clipper.models.monthly_bonus import MonthlyBonus
from clipper.models.risk_throttle import RiskThrottle
from clipper.models.budget import (
    BudgetCycle,
    BudgetSegment,
    BudgetSegmentCycle,
    ClipperSegmentMembership,
    BudgetEvent,
)
from clipper.models.pipeline_lock import PipelineLock

__all__ = [
    "ClipSubmission",
    "ClipperPayout",
    "MonthlyBonus",
    "RiskThrottle",
    "BudgetCycle",
    "BudgetSegment",
    "BudgetSegmentCycle",
    "ClipperSegmentMembership",
    "BudgetEvent",
    "PipelineLock",
]
