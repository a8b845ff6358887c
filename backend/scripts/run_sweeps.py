#!/usr/bin/env python3
"""
Sweep Runner
Cron entry point for the alert scheduler.

Usage:
    python -m scripts.run_sweeps            # run whatever is due
    python -m scripts.run_sweeps <trigger>  # force one of hourly|daily|weekly

Example crontab (every five minutes):
    */5 * * * * cd /srv/placement-guard/backend && python -m scripts.run_sweeps
"""
import json
import logging
import sys
import os

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from placement_guard.context import build_context
from placement_guard.database import SessionLocal, init_db
from placement_guard.models.db_models import AlertTrigger
from placement_guard.services.alerts import AlertEngine, AlertScheduler, SWEEP_INTERVALS

logger = logging.getLogger("placement_guard.run_sweeps")


def run(trigger: str = None) -> dict:
    """Run one scheduler tick, or one forced sweep. Owns the session lifecycle."""
    init_db()

    db = SessionLocal()
    try:
        ctx = build_context(db)
        scheduler = AlertScheduler(lambda: AlertEngine(ctx), ctx.clock)
        if trigger is None:
            return scheduler.tick()
        return scheduler.run_trigger(AlertTrigger(trigger))
    finally:
        db.close()


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if len(sys.argv) > 2:
        print(__doc__)
        sys.exit(1)

    trigger = sys.argv[1] if len(sys.argv) == 2 else None
    valid = [t.value for t in SWEEP_INTERVALS]
    if trigger is not None and trigger not in valid:
        print(f"Error: trigger must be one of {', '.join(valid)}.")
        sys.exit(1)

    try:
        result = run(trigger)
    except Exception as e:
        logger.error(f"Sweep run failed: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))
    sys.exit(1 if result.get("errors") else 0)


if __name__ == "__main__":
    main()
