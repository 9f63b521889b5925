import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from clipper.core.errors import PipelineBusyError, BudgetNotFoundError, InvalidBudgetChangeError
from clipper.db.repositories import BudgetRepository
from clipper.db.session import get_db
from clipper.schemas.budget import (
    BudgetCycleOut,
    BudgetEventOut,
    CycleLimitsIn,
    MembershipIn,
    MembershipOut,
    SegmentCycleOut,
    SegmentIn,
    SegmentOut,
    StatusIn,
)
from clipper.services import budget_control
from clipper.workers.orchestrator import run_budget_alerts

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["budget"])


def _rejected(e: Exception) -> JSONResponse:
    status_code = 404 if isinstance(e, BudgetNotFoundError) else 400
    return JSONResponse(status_code=status_code, content={"error": str(e)})


@router.post("/budget-alerts")
def budget_alerts(db: Session = Depends(get_db)):
    try:
        return run_budget_alerts(db)
    except PipelineBusyError as e:
        return JSONResponse(status_code=409, content={"error": str(e)})
    except Exception as e:
        db.rollback()
        logger.exception("[budget-alerts] failed")
        return JSONResponse(status_code=500, content={"error": str(e)})


@router.post("/budget/cycles", response_model=BudgetCycleOut)
def open_cycle(db: Session = Depends(get_db)):
    """Open this week's cycle as pending, or return it if it already exists."""
    return budget_control.open_cycle(db)


@router.get("/budget/cycles/current", response_model=BudgetCycleOut)
def current_cycle(db: Session = Depends(get_db)):
    cycle = budget_control.get_current_cycle(db)
    if cycle is None:
        return JSONResponse(status_code=404, content={"error": "No budget cycle for this week"})
    return cycle


@router.post("/budget/cycles/{cycle_id}/status", response_model=BudgetCycleOut)
def set_cycle_status(cycle_id: str, body: StatusIn, db: Session = Depends(get_db)):
    try:
        return budget_control.set_cycle_status(db, cycle_id, body.status)
    except (BudgetNotFoundError, InvalidBudgetChangeError) as e:
        return _rejected(e)


@router.patch("/budget/cycles/{cycle_id}/limits", response_model=BudgetCycleOut)
def update_cycle_limits(cycle_id: str, body: CycleLimitsIn, db: Session = Depends(get_db)):
    # Only fields present in the body change; an explicit null clears a cap
    try:
        return budget_control.update_cycle_limits(db, cycle_id, body.model_dump(exclude_unset=True))
    except (BudgetNotFoundError, InvalidBudgetChangeError) as e:
        return _rejected(e)


@router.post("/budget/segments", response_model=SegmentOut)
def create_segment(body: SegmentIn, db: Session = Depends(get_db)):
    try:
        return budget_control.create_segment(db, **body.model_dump())
    except (BudgetNotFoundError, InvalidBudgetChangeError) as e:
        return _rejected(e)


@router.post("/budget/segment-cycles/{segment_cycle_id}/status", response_model=SegmentCycleOut)
def set_segment_cycle_status(segment_cycle_id: str, body: StatusIn, db: Session = Depends(get_db)):
    try:
        return budget_control.set_segment_cycle_status(db, segment_cycle_id, body.status)
    except (BudgetNotFoundError, InvalidBudgetChangeError) as e:
        return _rejected(e)


@router.put("/budget/members/{user_id}", response_model=MembershipOut)
def assign_member(user_id: str, body: MembershipIn, db: Session = Depends(get_db)):
    try:
        return budget_control.assign_member(db, user_id, body.segment_id)
    except BudgetNotFoundError as e:
        return _rejected(e)


@router.delete("/budget/members/{user_id}")
def remove_member(user_id: str, db: Session = Depends(get_db)):
    try:
        budget_control.remove_member(db, user_id)
    except BudgetNotFoundError as e:
        return _rejected(e)
    return {"ok": True}


@router.post("/budget/auto-assign")
def auto_assign(db: Session = Depends(get_db)):
    try:
        return budget_control.auto_assign_segments(db)
    except Exception as e:
        db.rollback()
        logger.exception("[auto-assign] failed")
        return JSONResponse(status_code=500, content={"error": str(e)})


@router.get("/budget/events", response_model=list[BudgetEventOut])
def list_events(limit: int = Query(default=50, ge=1, le=500), db: Session = Depends(get_db)):
    return BudgetRepository(db).get_events(limit=limit)
