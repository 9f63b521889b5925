class PipelineError(Exception):
    """Base class for errors raised by the payout pipeline."""


class UnknownActionError(PipelineError):
    def __init__(self, action):
        self.action = action
        super().__init__("Unknown action. Use: freeze, review, payout, check_throttle")


class PipelineBusyError(PipelineError):
    """Another run already holds the lock for this action and period."""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__(f"Pipeline run already in progress: {lock_key}")


class ThrottleConflictError(PipelineError):
    """The risk throttle row was updated by a concurrent run."""


class BudgetControlError(PipelineError):
    """An operator budget change was rejected."""


class BudgetNotFoundError(BudgetControlError):
    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvalidBudgetChangeError(BudgetControlError):
    """The requested status or limit is not allowed."""
