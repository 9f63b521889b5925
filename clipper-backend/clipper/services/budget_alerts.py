"""
Budget Alerts
Spend-percentage thresholds for segment and global weekly budgets.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from typing import Optional

from clipper.core.enums import SegmentCycleStatus


@dataclass(frozen=True)
class AlertThreshold:
    pct: int
    label: str
    level: str


# Ordered highest first; only the highest matching threshold fires
ALERT_THRESHOLDS = [
    AlertThreshold(pct=100, label="HARD FREEZE", level="critical"),
    AlertThreshold(pct=95, label="SOFT THROTTLE", level="warning"),
    AlertThreshold(pct=80, label="WARNING", level="caution"),
]

GLOBAL_SEGMENT_NAME = "GLOBAL"


@dataclass
class BudgetAlert:
    segment: str
    pct: int
    level: str
    label: str

    def to_dict(self) -> dict:
        return asdict(self)


def spent_pct(spent_cents: int, limit_cents: Optional[int]) -> int:
    if not limit_cents or limit_cents <= 0:
        return 100 if spent_cents > 0 else 0
    return int(math.floor(spent_cents / limit_cents * 100 + 0.5))


def match_threshold(pct: int) -> Optional[AlertThreshold]:
    for threshold in ALERT_THRESHOLDS:
        if pct >= threshold.pct:
            return threshold
    return None


def evaluate(segment_name: str, spent_cents: int, limit_cents: Optional[int]) -> Optional[BudgetAlert]:
    pct = spent_pct(spent_cents, limit_cents)
    threshold = match_threshold(pct)
    if threshold is None:
        return None
    return BudgetAlert(segment=segment_name, pct=pct, level=threshold.level, label=threshold.label)


def next_segment_status(pct: int, current_status: str) -> Optional[str]:
    """
    Automatic status change for a segment-cycle at `pct` spend, or None.
    100%+ kills the segment; 95%+ throttles an approved one.
    """
    if pct >= 100 and current_status != SegmentCycleStatus.KILLED.value:
        return SegmentCycleStatus.KILLED.value
    if pct >= 95 and current_status == SegmentCycleStatus.APPROVED.value:
        return SegmentCycleStatus.THROTTLED.value
    return None
