from enum import Enum

class ClipStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"

class PayoutStatus(str, Enum):
    # Open states (still eligible for the payout stage)
    FROZEN = "frozen"
    REVIEWING = "reviewing"

    # Terminal states
    APPROVED = "approved"
    HELD = "held"

class CycleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    KILLED = "killed"

class SegmentCycleStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    THROTTLED = "throttled"
    KILLED = "killed"

class BonusTier(str, Enum):
    NONE = "none"
    VERIFIED = "verified"
    PROVEN = "proven"
    SUPER = "super"

class PipelineAction(str, Enum):
    FREEZE = "freeze"
    REVIEW = "review"
    PAYOUT = "payout"
    CHECK_THROTTLE = "check_throttle"

OPEN_PAYOUT_STATUSES = (PayoutStatus.FROZEN.value, PayoutStatus.REVIEWING.value)
