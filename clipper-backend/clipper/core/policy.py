"""
Payout Policy - Numeric rules for the weekly clipper payout pipeline
Defaults are the production values; each can be overridden from the environment.
"""
from __future__ import annotations
import os
from dataclasses import dataclass

def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    return default if v is None or v.strip() == "" else int(v)

def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    return default if v is None or v.strip() == "" else float(v)

@dataclass(frozen=True)
class PayoutPolicy:
    # Per-clip activation gate (all must hold)
    activation_min_views: int = _env_int("ACTIVATION_MIN_VIEWS", 1000)
    activation_min_ctr: float = _env_float("ACTIVATION_MIN_CTR", 0.01)
    activation_min_reg_rate: float = _env_float("ACTIVATION_MIN_REG_RATE", 0.15)
    activation_min_day1_post_rate: float = _env_float("ACTIVATION_MIN_DAY1_POST_RATE", 0.25)

    # Protection mode triggers (looser than the activation gate)
    protection_max_ctr: float = _env_float("PROTECTION_MAX_CTR", 0.008)
    protection_max_reg_rate: float = _env_float("PROTECTION_MAX_REG_RATE", 0.12)
    protection_max_day1_post_rate: float = _env_float("PROTECTION_MAX_DAY1_POST_RATE", 0.20)

    # Earnings (USD per 1000 net views)
    default_rpm: float = _env_float("DEFAULT_RPM", 0.22)
    protection_rpm: float = _env_float("PROTECTION_RPM", 0.18)
    min_payout_cents: int = _env_int("MIN_PAYOUT_CENTS", 222)

    # Throttle sampling + hysteresis
    throttle_min_samples: int = _env_int("THROTTLE_MIN_SAMPLES", 5)
    throttle_window_hours: int = _env_int("THROTTLE_WINDOW_HOURS", 24)
    low_days_to_activate: int = _env_int("THROTTLE_LOW_DAYS_TO_ACTIVATE", 3)
    recovery_days_to_deactivate: int = _env_int("THROTTLE_RECOVERY_DAYS_TO_DEACTIVATE", 3)

    def rpm_for(self, protection_active: bool) -> float:
        return self.protection_rpm if protection_active else self.default_rpm

policy = PayoutPolicy()
