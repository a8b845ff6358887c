"""
Alert Engine

AUTHORITY: SYSTEM
Turns suspicious-activity flags and scheduled conditions into alerts,
runs each rule's automated action, and escalates stale critical alerts.

Rules are isolated: a rule whose condition or action raises is logged,
its partial writes are rolled back to a savepoint, and the remaining
rules still run.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import func

from ...context import EngineContext
from ...errors import InvalidTransition, NotFoundError
from ...models.db_models import (
    AlertDB,
    SuspiciousFlagDB,
    AlertStatus,
    AlertTrigger,
    Severity,
)
from ..access.access_ledger import AccessLedger
from ..enforcement.enforcement_ledger import EnforcementLedger
from .rules import AlertRule, default_rules

logger = logging.getLogger(__name__)


# =============================================================================
# ALERT LIFECYCLE
# =============================================================================

ALERT_TRANSITIONS = {
    AlertStatus.PENDING: [
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
        AlertStatus.ESCALATED,
    ],
    AlertStatus.ACKNOWLEDGED: [AlertStatus.RESOLVED],
    AlertStatus.ESCALATED: [
        AlertStatus.ACKNOWLEDGED,
        AlertStatus.RESOLVED,
    ],
    AlertStatus.RESOLVED: [],  # Terminal state
}

ACTIVE_STATUSES = [AlertStatus.PENDING, AlertStatus.ACKNOWLEDGED, AlertStatus.ESCALATED]

ESCALATION_AGE = timedelta(hours=1)


def flag_data(flag: SuspiciousFlagDB) -> Dict[str, Any]:
    """Condition/action payload for an immediate rule."""
    return {
        "flag_id": flag.id,
        "employer_id": flag.employer_id,
        "candidate_id": flag.candidate_id,
        "activity_type": flag.activity_type,
        "severity": flag.severity.value,
        "description": flag.description,
        "evidence": flag.evidence or {},
    }


class AlertEngine:
    """Evaluates the rule table and owns the alert log."""

    def __init__(
        self,
        ctx: EngineContext,
        ledger: Optional[AccessLedger] = None,
        enforcement: Optional[EnforcementLedger] = None,
        monitor=None,
        rules: Optional[Sequence[AlertRule]] = None,
    ):
        self.ctx = ctx
        self.db = ctx.db
        self.ledger = ledger or AccessLedger(ctx)
        self.enforcement = enforcement or EnforcementLedger(ctx)
        self._monitor = monitor
        self.rules: List[AlertRule] = list(rules) if rules is not None else default_rules(self)

    @property
    def monitor(self):
        if self._monitor is None:
            from ..monitoring.activity_monitor import ActivityMonitor
            self._monitor = ActivityMonitor(
                self.ctx, ledger=self.ledger, enforcement=self.enforcement, alert_engine=self,
            )
        return self._monitor

    def get_rule(self, rule_id: str) -> Optional[AlertRule]:
        return next((r for r in self.rules if r.id == rule_id), None)

    # =========================================================================
    # RULE EVALUATION
    # =========================================================================

    def _create_alert(self, rule: AlertRule, data: Dict[str, Any]) -> AlertDB:
        alert = AlertDB(
            id=str(uuid4()),
            rule_id=rule.id,
            employer_id=data.get("employer_id"),
            candidate_id=data.get("candidate_id"),
            severity=rule.severity,
            title=rule.name,
            message=data.get("description") or rule.description,
            data={k: v for k, v in data.items() if k != "now"},
            status=AlertStatus.PENDING,
            created_at=self.ctx.now(),
        )
        self.db.add(alert)
        self.db.flush()
        logger.info(f"Alert {alert.id} [{rule.severity.value}] {rule.name}")
        return alert

    def evaluate(self, trigger: AlertTrigger, data: Dict[str, Any]) -> List[AlertDB]:
        """Run every enabled rule for `trigger` against `data`. Does not commit."""
        alerts = []
        for rule in self.rules:
            if not rule.enabled or rule.trigger != trigger:
                continue
            rule_data = dict(data)
            try:
                with self.db.begin_nested():
                    if not rule.condition(rule_data):
                        continue
                    rule.action(rule_data)
                    if rule.records_alert:
                        alerts.append(self._create_alert(rule, rule_data))
            except Exception as e:
                logger.error(f"Alert rule {rule.id} failed: {e}")
        return alerts

    def process_flag(self, flag: SuspiciousFlagDB) -> List[AlertDB]:
        """Immediate rules for a freshly recorded flag."""
        return self.evaluate(AlertTrigger.IMMEDIATE, flag_data(flag))

    # =========================================================================
    # SCHEDULED SWEEPS (SYSTEM-AUTHORITATIVE)
    # =========================================================================

    def escalate_overdue_alerts(self) -> List[AlertDB]:
        """Pending critical alerts older than an hour become escalated."""
        now = self.ctx.now()
        stale = self.db.query(AlertDB).filter(
            AlertDB.status == AlertStatus.PENDING,
            AlertDB.severity == Severity.CRITICAL,
            AlertDB.created_at < now - ESCALATION_AGE,
        ).all()

        for alert in stale:
            alert.status = AlertStatus.ESCALATED
            alert.escalated_at = now
            self.ctx.notifier.notify(
                "admin-escalation",
                f"ESCALATED: {alert.title}",
                alert.message,
                {"alert_id": alert.id, "employer_id": alert.employer_id},
            )
            logger.warning(f"Alert {alert.id} escalated after {ESCALATION_AGE}")
        self.db.flush()
        return stale

    def run_sweep(self, trigger: AlertTrigger) -> Dict[str, Any]:
        """
        Run one cadence sweep plus the escalation pass, then commit.

        AUTHORITY: SYSTEM - Called by the scheduler.
        """
        trigger = AlertTrigger(trigger)
        now = self.ctx.now()
        alerts = self.evaluate(trigger, {"now": now.isoformat(), "trigger": trigger.value})
        escalated = self.escalate_overdue_alerts()
        self.db.commit()

        return {
            "task": f"{trigger.value}_sweep",
            "run_date": now.isoformat(),
            "alerts_created": len(alerts),
            "alerts_escalated": len(escalated),
            "details": {
                "alerts": [{"id": a.id, "rule_id": a.rule_id, "severity": a.severity.value} for a in alerts],
                "escalated": [a.id for a in escalated],
            },
        }

    # =========================================================================
    # ADMIN LIFECYCLE
    # =========================================================================

    def get_alert(self, alert_id: str) -> AlertDB:
        alert = self.db.get(AlertDB, alert_id)
        if alert is None:
            raise NotFoundError(f"Alert {alert_id} not found")
        return alert

    def _transition(self, alert: AlertDB, to_status: AlertStatus) -> None:
        if to_status not in ALERT_TRANSITIONS.get(alert.status, []):
            raise InvalidTransition(
                f"Cannot transition alert from {alert.status.value} to {to_status.value}"
            )
        alert.status = to_status

    def acknowledge_alert(self, alert_id: str, admin_id: str) -> AlertDB:
        alert = self.get_alert(alert_id)
        self._transition(alert, AlertStatus.ACKNOWLEDGED)
        alert.acknowledged_at = self.ctx.now()
        alert.acknowledged_by = admin_id
        self.db.commit()
        logger.info(f"Alert {alert_id} acknowledged by {admin_id}")
        return alert

    def resolve_alert(self, alert_id: str, admin_id: str, resolution_note: str) -> AlertDB:
        alert = self.get_alert(alert_id)
        self._transition(alert, AlertStatus.RESOLVED)
        alert.resolved_at = self.ctx.now()
        alert.resolved_by = admin_id
        alert.resolution_note = resolution_note
        self.db.commit()
        logger.info(f"Alert {alert_id} resolved by {admin_id}")
        return alert

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list_active_alerts(self) -> List[AlertDB]:
        return self.db.query(AlertDB).filter(
            AlertDB.status.in_(ACTIVE_STATUSES)
        ).order_by(AlertDB.created_at.desc()).all()

    def get_alerts_by_employer(self, employer_id: str) -> List[AlertDB]:
        return self.db.query(AlertDB).filter(
            AlertDB.employer_id == employer_id
        ).order_by(AlertDB.created_at.desc()).all()

    def alert_stats(self) -> Dict[str, Any]:
        by_status = dict(
            self.db.query(AlertDB.status, func.count(AlertDB.id)).group_by(AlertDB.status).all()
        )
        by_severity = dict(
            self.db.query(AlertDB.severity, func.count(AlertDB.id)).group_by(AlertDB.severity).all()
        )
        return {
            "total": sum(by_status.values()),
            "active": sum(by_status.get(s, 0) for s in ACTIVE_STATUSES),
            "by_status": {s.value: by_status.get(s, 0) for s in AlertStatus},
            "by_severity": {s.value: by_severity.get(s, 0) for s in Severity},
        }


def alert_to_dict(alert: AlertDB) -> Dict[str, Any]:
    return {
        "id": alert.id,
        "rule_id": alert.rule_id,
        "employer_id": alert.employer_id,
        "candidate_id": alert.candidate_id,
        "severity": alert.severity.value,
        "title": alert.title,
        "message": alert.message,
        "data": alert.data,
        "status": alert.status.value,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
        "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
        "acknowledged_by": alert.acknowledged_by,
        "resolved_at": alert.resolved_at.isoformat() if alert.resolved_at else None,
        "resolved_by": alert.resolved_by,
        "resolution_note": alert.resolution_note,
        "escalated_at": alert.escalated_at.isoformat() if alert.escalated_at else None,
    }
