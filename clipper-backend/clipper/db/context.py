from contextlib import contextmanager

from clipper.db.session import SessionLocal


@contextmanager
def get_db_session():
    """Session scope for jobs and scripts. Rolls back on error, always closes."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
