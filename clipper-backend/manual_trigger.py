import sys
import os
import json

# Add local path to import clipper modules
sys.path.append(os.getcwd())

from clipper.db.context import get_db_session
from clipper.workers.orchestrator import run_action, run_budget_alerts, BUDGET_ALERTS

USAGE = "Usage: python manual_trigger.py [freeze|review|payout|check_throttle|budget_alerts]"


def manual_trigger(action: str):
    print(f"--- MANUAL TRIGGER: {action} ---")

    with get_db_session() as db:
        if action == BUDGET_ALERTS:
            result = run_budget_alerts(db)
        else:
            result = run_action(db, action)

    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(USAGE)
        sys.exit(1)
    manual_trigger(sys.argv[1])
