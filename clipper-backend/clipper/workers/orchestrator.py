"""
Pipeline Orchestrator - Action dispatch with run locking
Validates the requested action, takes the per-period lock, tags logs with the
run context and dispatches to the matching payout pipeline job.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from clipper.core.enums import PipelineAction
from clipper.core.errors import UnknownActionError
from clipper.core.logging import RunContext
from clipper.core.settings import settings
from clipper.db.context import get_db_session
from clipper.db.repositories import LockRepository
from clipper.services.payout_calendar import payout_window
from clipper.workers.payout_pipeline import (
    freeze_job,
    review_job,
    payout_job,
    check_throttle_job,
    budget_alerts_job,
)

logger = logging.getLogger(__name__)

BUDGET_ALERTS = "budget_alerts"

ACTION_JOBS: Dict[PipelineAction, Callable[..., Dict[str, Any]]] = {
    PipelineAction.FREEZE: freeze_job,
    PipelineAction.REVIEW: review_job,
    PipelineAction.PAYOUT: payout_job,
    PipelineAction.CHECK_THROTTLE: check_throttle_job,
}


def parse_action(action: Optional[str]) -> PipelineAction:
    try:
        return PipelineAction(action)
    except ValueError:
        raise UnknownActionError(action)


def lock_key_for(name: str, now: datetime) -> str:
    """Weekly stages lock on the payout week; daily checks lock on the date."""
    if name in (PipelineAction.CHECK_THROTTLE.value, BUDGET_ALERTS):
        return f"{name}:{now.date().isoformat()}"
    return f"{name}:{payout_window(now).week_key}"


def _run_locked(db: Session, name: str, job: Callable[..., Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    run_id = uuid4().hex[:12]
    lock_key = lock_key_for(name, now)
    locks = LockRepository(db)

    with RunContext(run_id=run_id, action=name, week_key=payout_window(now).week_key):
        locks.acquire(lock_key, run_id, now, settings.pipeline_lock_ttl_seconds)
        logger.info(f"[orchestrator] Starting {name} (lock {lock_key})")
        try:
            result = job(db, now=now)
        except Exception as e:
            db.rollback()
            logger.error(f"[orchestrator] {name} failed: {e}")
            raise
        finally:
            locks.release(lock_key, run_id)

        logger.info(f"[orchestrator] Finished {name}")
        return result


def run_action(db: Session, action: Optional[str], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Run one pipeline action end to end.

    Raises UnknownActionError before touching the database, and
    PipelineBusyError when another run holds the same period's lock.
    """
    parsed = parse_action(action)
    now = now or datetime.now(timezone.utc)
    return _run_locked(db, parsed.value, ACTION_JOBS[parsed], now)


def run_budget_alerts(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return _run_locked(db, BUDGET_ALERTS, budget_alerts_job, now)


# =============================================================================
# Queue entry points
# =============================================================================

def run_action_job(action: str) -> Dict[str, Any]:
    """RQ entry point: opens its own session."""
    with get_db_session() as db:
        return run_action(db, action)


def run_budget_alerts_job() -> Dict[str, Any]:
    with get_db_session() as db:
        return run_budget_alerts(db)
