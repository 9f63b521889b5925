import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clipper.core.enums import PipelineAction
from clipper.core.errors import UnknownActionError, PipelineBusyError, ThrottleConflictError
from clipper.db.repositories import PayoutRepository, MonthlyBonusRepository
from clipper.db.session import get_db
from clipper.schemas.actions import PayoutActionIn
from clipper.schemas.payout import PayoutOut, MonthlyBonusOut
from clipper.workers.orchestrator import run_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payouts"])


@router.post("/process-weekly-payout")
def process_weekly_payout(body: PayoutActionIn | None = None, db: Session = Depends(get_db)):
    """
    Run one stage of the weekly payout pipeline.
    An empty body runs `freeze`.
    """
    action = body.action if body is not None else PipelineAction.FREEZE.value

    try:
        return run_action(db, action)
    except UnknownActionError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except (PipelineBusyError, ThrottleConflictError) as e:
        logger.warning(f"[process-weekly-payout] {action} rejected: {e}")
        return JSONResponse(status_code=409, content={"error": str(e)})
    except Exception as e:
        db.rollback()
        logger.exception(f"[process-weekly-payout] {action} failed")
        return JSONResponse(status_code=500, content={"error": str(e)})


@router.get("/payouts", response_model=list[PayoutOut])
def list_payouts(
    user_id: str | None = Query(default=None),
    week_key: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return PayoutRepository(db).search(user_id=user_id, week_key=week_key, limit=limit)


@router.get("/payouts/monthly-bonuses", response_model=list[MonthlyBonusOut])
def list_monthly_bonuses(user_id: str = Query(...), db: Session = Depends(get_db)):
    return MonthlyBonusRepository(db).get_by_user(user_id)
