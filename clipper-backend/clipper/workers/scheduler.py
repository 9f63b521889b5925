"""
Scheduler - Weekly payout calendar
Freeze on Monday, review on Thursday, payout and budget alerts on Friday,
throttle check every day. Each action is enqueued at most once per UTC day
per scheduler process. A restart can enqueue a stage again: the weekly stages
are idempotent per payout week, and the throttle check steps its state
machine at most once per UTC day.
"""
import time
from datetime import datetime, timezone
from typing import Optional

from clipper.core.enums import PipelineAction
from clipper.core.logging import get_logger
from clipper.core.settings import settings
from clipper.db.session import engine
from clipper.db.base import Base
from clipper.workers.queue import enqueue_pipeline
from clipper.workers.orchestrator import BUDGET_ALERTS, run_action_job, run_budget_alerts_job

logger = get_logger(__name__)

# datetime.weekday(): Monday == 0
WEEKLY_SCHEDULE = {
    0: [PipelineAction.FREEZE.value],
    3: [PipelineAction.REVIEW.value],
    4: [PipelineAction.PAYOUT.value, BUDGET_ALERTS],
}

# Throttle runs first so the day's payout sees the fresh protection state
DAILY_ACTIONS = [PipelineAction.CHECK_THROTTLE.value]

_enqueued: set = set()


def init_db():
    """Create tables if they don't exist"""
    logger.info("Initializing database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready.")


def actions_due(now: datetime) -> list[str]:
    return DAILY_ACTIONS + WEEKLY_SCHEDULE.get(now.weekday(), [])


def tick(now: Optional[datetime] = None) -> list[str]:
    """Enqueue every action due today that has not been enqueued yet."""
    now = now or datetime.now(timezone.utc)
    today = now.date().isoformat()
    enqueued = []

    # Keys from earlier days can never match again
    _enqueued.difference_update({key for key in _enqueued if key[1] != today})

    for action in actions_due(now):
        if (action, today) in _enqueued:
            continue

        if action == BUDGET_ALERTS:
            enqueue_pipeline(run_budget_alerts_job)
        else:
            enqueue_pipeline(run_action_job, action)

        _enqueued.add((action, today))
        enqueued.append(action)
        logger.info(f"[scheduler] Enqueued {action} for {today}")

    return enqueued


if __name__ == "__main__":
    # Wait for DB to be ready
    for attempt in range(10):
        try:
            init_db()
            break
        except Exception as e:
            logger.warning(f"DB not ready (attempt {attempt + 1}/10): {e}")
            time.sleep(3)

    logger.info(f"Scheduler started. Polling every {settings.scheduler_poll_seconds}s")
    while True:
        try:
            tick()
        except Exception as e:
            logger.error(f"Error in tick: {e}")
        time.sleep(settings.scheduler_poll_seconds)
