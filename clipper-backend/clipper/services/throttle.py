"""
Protection Mode
Two-state machine (NORMAL <-> PROTECTION) driven by daily engagement checks.
Each direction needs a run of consecutive qualifying days before it flips.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from clipper.core.policy import policy


class ProtectionState(str, Enum):
    NORMAL = "normal"
    PROTECTION = "protection"


@dataclass(frozen=True)
class EngagementAverages:
    ctr: float
    reg_rate: float
    day1_post_rate: float
    sample_size: int

    @classmethod
    def from_clips(cls, clips: Iterable) -> "EngagementAverages":
        """Unweighted means; missing metrics count as 0."""
        clips = list(clips)
        n = len(clips)
        if n == 0:
            return cls(ctr=0.0, reg_rate=0.0, day1_post_rate=0.0, sample_size=0)
        return cls(
            ctr=sum(c.ctr or 0 for c in clips) / n,
            reg_rate=sum(c.reg_rate or 0 for c in clips) / n,
            day1_post_rate=sum(c.day1_post_rate or 0 for c in clips) / n,
            sample_size=n,
        )

    def is_low(self) -> bool:
        """Low only when all three averages sit under the protection thresholds."""
        return (
            self.ctr < policy.protection_max_ctr
            and self.reg_rate < policy.protection_max_reg_rate
            and self.day1_post_rate < policy.protection_max_day1_post_rate
        )


@dataclass(frozen=True)
class ThrottleCounters:
    is_active: bool = False
    consecutive_low_days: int = 0
    consecutive_recovery_days: int = 0

    @property
    def state(self) -> ProtectionState:
        return ProtectionState.PROTECTION if self.is_active else ProtectionState.NORMAL


@dataclass(frozen=True)
class ThrottleStep:
    counters: ThrottleCounters
    metrics_low: bool
    activated: bool = False
    deactivated: bool = False

    @property
    def rpm_override(self) -> Optional[float]:
        return policy.protection_rpm if self.counters.is_active else None


class ProtectionModeMachine:
    def __init__(
        self,
        low_days_to_activate: int = policy.low_days_to_activate,
        recovery_days_to_deactivate: int = policy.recovery_days_to_deactivate,
    ):
        self.low_days_to_activate = low_days_to_activate
        self.recovery_days_to_deactivate = recovery_days_to_deactivate

    def step(self, counters: ThrottleCounters, metrics_low: bool) -> ThrottleStep:
        """Advance one daily check."""
        low_days = counters.consecutive_low_days + 1 if metrics_low else 0
        recovery_days = (
            counters.consecutive_recovery_days + 1
            if counters.is_active and not metrics_low
            else 0
        )

        if counters.state is ProtectionState.NORMAL and low_days >= self.low_days_to_activate:
            return self._enter_protection(low_days, recovery_days, metrics_low)

        if counters.state is ProtectionState.PROTECTION and recovery_days >= self.recovery_days_to_deactivate:
            return self._enter_normal(low_days, metrics_low)

        return ThrottleStep(
            counters=ThrottleCounters(counters.is_active, low_days, recovery_days),
            metrics_low=metrics_low,
        )

    def _enter_protection(self, low_days: int, recovery_days: int, metrics_low: bool) -> ThrottleStep:
        return ThrottleStep(
            counters=ThrottleCounters(True, low_days, recovery_days),
            metrics_low=metrics_low,
            activated=True,
        )

    def _enter_normal(self, low_days: int, metrics_low: bool) -> ThrottleStep:
        # Entering NORMAL clears the recovery streak
        return ThrottleStep(
            counters=ThrottleCounters(False, low_days, 0),
            metrics_low=metrics_low,
            deactivated=True,
        )
