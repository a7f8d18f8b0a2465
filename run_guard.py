"""
Once-per-day run guard and JSON state file helpers.

cron may fire the tracker more than once a day; the guard makes every run
after the first completed one a no-op. The read-then-write of the state file
is not atomic, so two overlapping invocations could both run.
"""

import json
import logging
from datetime import date, datetime, timezone

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State file helpers
# ---------------------------------------------------------------------------

def load_state(path: str) -> dict:
    try:
        with open(path) as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_state(path: str, data: dict) -> None:
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


# ---------------------------------------------------------------------------
# Run guard
# ---------------------------------------------------------------------------

def should_run(state: dict, today: date) -> bool:
    last_run = state.get("last_run", "")
    if last_run == today.isoformat():
        log.info("Already ran today (%s), skipping", last_run)
        return False
    return True


def mark_ran(state: dict, today: date) -> None:
    """Record a completed pass. Call only after all dispatch attempts have finished."""
    state["last_run"] = today.isoformat()
    state["finished_at"] = datetime.now(timezone.utc).isoformat()
