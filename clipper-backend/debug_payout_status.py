import sys
import os

# Add local path to import clipper modules
sys.path.append(os.getcwd())

from datetime import datetime, timezone

from clipper.db.context import get_db_session
from clipper.db.repositories import PayoutRepository, ThrottleRepository, BudgetRepository
from clipper.services.payout_calendar import payout_window

window = payout_window(datetime.now(timezone.utc))

with get_db_session() as db:
    throttle = ThrottleRepository(db).get()
    if throttle:
        print(f"Protection: {'ON' if throttle.is_active else 'off'} "
              f"(low streak {throttle.consecutive_low_days}, recovery streak {throttle.consecutive_recovery_days})")
    else:
        print("Protection: no check has run yet")

    cycle = BudgetRepository(db).get_cycle_starting_between(window.start, window.end)
    if cycle:
        print(f"Cycle {cycle.id}: {cycle.status}, spent {cycle.spent_cents}c / {cycle.global_weekly_limit_cents}c")
    else:
        print(f"No budget cycle for {window.week_key}")

    payouts = PayoutRepository(db).search(week_key=window.week_key, limit=50)
    print(f"\nPayouts for {window.week_key}:")
    print(f"{'User':<36} | {'Status':<10} | {'Base':>8} | {'Bonus':>8} | {'Total':>8}")
    print("-" * 85)
    for p in payouts:
        print(f"{p.user_id:<36} | {p.status:<10} | {p.base_earnings_cents:>8} | {p.bonus_cents:>8} | {p.total_cents:>8}")
        if p.notes:
            print(f"  [HELD] {p.notes}")
