from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from clipper.db.session import get_db

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
def health(db: Session = Depends(get_db)):
    """Liveness plus a trivial database round-trip."""
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        database = f"error: {e}"
    return {"ok": database == "ok", "database": database}
