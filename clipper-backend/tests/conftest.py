import os

# Must be set before clipper.core.settings is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clipper.db.base import Base
from clipper.models import (
    ClipSubmission,
    ClipperPayout,
    BudgetCycle,
    BudgetSegment,
    BudgetSegmentCycle,
    ClipperSegmentMembership,
    RiskThrottle,
)

# Friday of ISO week 2026-W42; the payout window is 2026-W41 (Mon Oct 5 .. Mon Oct 12)
NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
WINDOW_START = datetime(2026, 10, 5, tzinfo=timezone.utc)
WEEK_KEY = "2026-W41"

GOOD_METRICS = {"ctr": 0.05, "reg_rate": 0.30, "day1_post_rate": 0.50}
LOW_METRICS = {"ctr": 0.001, "reg_rate": 0.05, "day1_post_rate": 0.10}


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    from fastapi.testclient import TestClient
    from clipper.main import app
    from clipper.db.session import get_db

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_clip(db):
    def _make(user_id, net_views, submitted_at=None, status="verified", baseline=0, **metrics):
        values = dict(GOOD_METRICS)
        values.update(metrics)
        clip = ClipSubmission(
            id=str(uuid4()),
            user_id=user_id,
            clip_url=f"https://example.com/{uuid4().hex[:8]}",
            status=status,
            view_count=baseline + net_views,
            baseline_view_count=baseline,
            submitted_at=submitted_at or WINDOW_START + timedelta(days=1),
            **values,
        )
        db.add(clip)
        db.commit()
        return clip
    return _make


@pytest.fixture
def make_payout(db):
    def _make(user_id, base_earnings_cents, status="reviewing", week_key=WEEK_KEY, **extra):
        payout = ClipperPayout(
            id=extra.pop("id", str(uuid4())),
            user_id=user_id,
            week_key=week_key,
            clips_count=extra.pop("clips_count", 1),
            total_net_views=extra.pop("total_net_views", 0),
            base_earnings_cents=base_earnings_cents,
            bonus_cents=0,
            total_cents=base_earnings_cents,
            status=status,
            **extra,
        )
        db.add(payout)
        db.commit()
        return payout
    return _make


@pytest.fixture
def make_cycle(db):
    def _make(status="approved", start_date=WINDOW_START, **limits):
        cycle = BudgetCycle(
            id=str(uuid4()),
            start_date=start_date,
            end_date=start_date + timedelta(days=7),
            status=status,
            global_weekly_limit_cents=limits.pop("global_weekly_limit_cents", 500000),
            spent_cents=limits.pop("spent_cents", 0),
            **limits,
        )
        db.add(cycle)
        db.commit()
        return cycle
    return _make


@pytest.fixture
def make_segment(db):
    def _make(name, cycle=None, weekly_limit_cents=100000, cycle_status="approved", spent_cents=0, members=()):
        segment = BudgetSegment(id=str(uuid4()), name=name, weekly_limit_cents=weekly_limit_cents, is_active=True)
        db.add(segment)
        segment_cycle = None
        if cycle is not None:
            segment_cycle = BudgetSegmentCycle(
                id=str(uuid4()),
                segment_id=segment.id,
                cycle_id=cycle.id,
                status=cycle_status,
                spent_cents=spent_cents,
                remaining_cents=weekly_limit_cents - spent_cents,
            )
            db.add(segment_cycle)
        for user_id in members:
            db.add(ClipperSegmentMembership(id=str(uuid4()), user_id=user_id, segment_id=segment.id))
        db.commit()
        return segment, segment_cycle
    return _make


@pytest.fixture
def protection_on(db):
    row = RiskThrottle(id=str(uuid4()), is_active=True, consecutive_low_days=3, consecutive_recovery_days=0)
    db.add(row)
    db.commit()
    return row
