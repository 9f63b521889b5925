from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clipper.db.repositories import ThrottleRepository
from clipper.db.session import get_db
from clipper.schemas.throttle import RiskThrottleOut

router = APIRouter(prefix="/api", tags=["risk-throttle"])


@router.get("/risk-throttle", response_model=RiskThrottleOut)
def get_risk_throttle(db: Session = Depends(get_db)):
    row = ThrottleRepository(db).get()
    if row is None:
        # No check has run yet
        return RiskThrottleOut()
    return row
