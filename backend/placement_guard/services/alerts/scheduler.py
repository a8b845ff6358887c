"""
Alert Scheduler

AUTHORITY: SYSTEM
Decides which cadence sweeps are due and runs them. The clock is
injected so cadence decisions can be driven deterministically; last-run
times are persisted so a cron entry point can call tick() as often as
it likes.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List

from ...models.db_models import AlertTrigger, SchedulerRunDB
from .alert_engine import AlertEngine

logger = logging.getLogger(__name__)


SWEEP_INTERVALS = {
    AlertTrigger.HOURLY: timedelta(hours=1),
    AlertTrigger.DAILY: timedelta(hours=24),
    AlertTrigger.WEEKLY: timedelta(days=7),
}


class AlertScheduler:
    """
    Runs due sweeps. One failing cadence never stops the others.

    Usage:
        scheduler = AlertScheduler(lambda: AlertEngine(ctx), ctx.clock)
        result = scheduler.tick()
    """

    def __init__(self, engine_factory: Callable[[], AlertEngine], clock):
        self.engine_factory = engine_factory
        self.clock = clock
        self._engine = None

    @property
    def engine(self) -> AlertEngine:
        if self._engine is None:
            self._engine = self.engine_factory()
        return self._engine

    def last_runs(self) -> Dict[AlertTrigger, datetime]:
        rows = self.engine.db.query(SchedulerRunDB).all()
        return {row.trigger: row.last_run_at for row in rows}

    def due_triggers(self, now: datetime) -> List[AlertTrigger]:
        last = self.last_runs()
        return [
            trigger for trigger, interval in SWEEP_INTERVALS.items()
            if trigger not in last or now - last[trigger] >= interval
        ]

    def _record_run(self, trigger: AlertTrigger, when: datetime, result: Dict[str, Any]) -> None:
        db = self.engine.db
        row = db.get(SchedulerRunDB, trigger)
        if row is None:
            row = SchedulerRunDB(trigger=trigger)
            db.add(row)
        row.last_run_at = when
        row.last_result = {
            "alerts_created": result.get("alerts_created", 0),
            "alerts_escalated": result.get("alerts_escalated", 0),
        }
        db.commit()

    def run_trigger(self, trigger: AlertTrigger) -> Dict[str, Any]:
        """Run one sweep now, whether or not it is due."""
        trigger = AlertTrigger(trigger)
        if trigger not in SWEEP_INTERVALS:
            raise ValueError(f"{trigger.value} is not a scheduled trigger")
        now = self.clock.now()
        result = self.engine.run_sweep(trigger)
        self._record_run(trigger, now, result)
        return result

    def tick(self) -> Dict[str, Any]:
        """Run every due sweep, then the escalation pass."""
        now = self.clock.now()
        due = self.due_triggers(now)
        results = {}
        errors = []

        for trigger in due:
            try:
                results[trigger.value] = self.run_trigger(trigger)
            except Exception as e:
                self.engine.db.rollback()
                logger.error(f"{trigger.value} sweep failed: {e}")
                errors.append({"trigger": trigger.value, "error": str(e)})

        escalated = []
        try:
            escalated = self.engine.escalate_overdue_alerts()
            self.engine.db.commit()
        except Exception as e:
            self.engine.db.rollback()
            logger.error(f"Alert escalation failed: {e}")
            errors.append({"trigger": "escalation", "error": str(e)})

        return {
            "run_date": now.isoformat(),
            "sweeps_run": [t.value for t in due if t.value in results],
            "alerts_escalated": len(escalated),
            "errors": len(errors),
            "details": {
                "results": results,
                "errors": errors,
            },
        }
