"""
Alert Rule Table

Each rule pairs a condition with an action. Immediate rules see the
flag that was just recorded; scheduled rules see the sweep context.

Actions only ever tighten: restrictions are set, never cleared, and
every penalty they raise is idempotent.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List

from ...models.db_models import AlertTrigger, FlagType, Severity

if TYPE_CHECKING:
    from .alert_engine import AlertEngine

logger = logging.getLogger(__name__)

Condition = Callable[[Dict[str, Any]], bool]
Action = Callable[[Dict[str, Any]], Any]


@dataclass
class AlertRule:
    id: str
    name: str
    description: str
    trigger: AlertTrigger
    severity: Severity
    condition: Condition
    action: Action
    enabled: bool = True
    # False for sweeps whose findings raise their own alerts
    records_alert: bool = True


def _is_flag(flag_type: FlagType) -> Condition:
    return lambda data: data.get("activity_type") == flag_type.value


def _always(data: Dict[str, Any]) -> bool:
    return True


def default_rules(engine: "AlertEngine") -> List[AlertRule]:
    """The production rule table, bound to one engine."""
    from ..monitoring.activity_monitor import INACTIVITY_PENALTY_REASON

    def notify(channel: str, data: Dict[str, Any], subject: str) -> None:
        engine.ctx.notifier.notify(
            channel,
            subject,
            data.get("description") or subject,
            {k: data.get(k) for k in ("employer_id", "candidate_id", "activity_type", "flag_id")},
        )

    # -------------------------------------------------------------------------
    # Immediate actions
    # -------------------------------------------------------------------------

    def block_and_escalate(data):
        notify("admin-immediate", data, "Platform bypass attempt")
        engine.ledger.suspend_employer(data["employer_id"], data.get("description") or "critical flag")
        notify("legal", data, "Platform bypass referred to legal")

    def restrict_viewing(data):
        notify("admin", data, "Excessive profile viewing")
        engine.ledger.restrict_employer(data["employer_id"])

    def prebill_penalty(data):
        notify("admin", data, "Contact accessed without follow-up")
        if data.get("candidate_id"):
            engine.enforcement.create_bypass_penalty(
                data["employer_id"], data["candidate_id"],
                reason_code=INACTIVITY_PENALTY_REASON,
                evidence=False,
                hire_confirmed=False,
            )

    def queue_for_review(data):
        notify("admin", data, "Message policy violation")
        notify("moderation", data, "Message queued for review")

    def restrict_mass_access(data):
        notify("admin", data, "Mass candidate access")
        engine.ledger.restrict_employer(data["employer_id"])

    def report_off_hours(data):
        notify("admin", data, "Off-hours activity")

    def review_candidate_report(data):
        notify("admin", data, "Candidate reported employer")
        notify("moderation", data, "Candidate report queued for review")

    # -------------------------------------------------------------------------
    # Scheduled actions
    # -------------------------------------------------------------------------

    def analyze_activity(data):
        flags = engine.monitor.scan_contact_inactivity()
        for employer_id in engine.monitor.recently_active_employers():
            flags.extend(engine.monitor.detect_abnormal_access_patterns(employer_id))
        data["flags_raised"] = len(flags)
        logger.info(f"Hourly activity analysis raised {len(flags)} flags")

    def has_overdue_fees(data):
        overdue = engine.enforcement.get_overdue_fees()
        data["overdue_count"] = len(overdue)
        return len(overdue) > 0

    def process_overdue(data):
        result = engine.enforcement.process_overdue_payments()
        data["marked_overdue"] = result["marked_overdue"]
        data["notices_sent"] = result["notices_sent"]
        data["description"] = (
            f"{data.get('overdue_count', 0)} overdue fees; "
            f"{result['notices_sent']} legal notices sent"
        )

    def compliance_report(data):
        report = engine.monitor.generate_monitoring_report(timedelta(days=7))
        data["summary"] = report["summary"]
        data["most_common_violations"] = report["patterns"]["most_common_violations"]
        data["suspicious_employers"] = report["patterns"]["suspicious_employers"]
        data["description"] = (
            f"Weekly compliance: {report['summary']['total_flags']} flags, "
            f"{report['summary']['critical_flags']} critical"
        )
        notify("admin", data, "Weekly compliance report")

    return [
        AlertRule(
            id="bypass-attempt-critical",
            name="Platform Bypass Attempt",
            description="Critical attempt to contact or hire a candidate outside the platform",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.CRITICAL,
            condition=lambda data: data.get("severity") == Severity.CRITICAL.value,
            action=block_and_escalate,
        ),
        AlertRule(
            id="excessive-viewing-high",
            name="Excessive Profile Viewing",
            description="Employer viewing a profile repeatedly without engagement",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.HIGH,
            condition=_is_flag(FlagType.EXCESSIVE_PROFILE_VIEWING),
            action=restrict_viewing,
        ),
        AlertRule(
            id="contact-access-no-followup",
            name="Contact Access Without Follow-up",
            description="Contact details accessed but no platform engagement followed",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.HIGH,
            condition=_is_flag(FlagType.SUDDEN_INACTIVITY_AFTER_CONTACT_ACCESS),
            action=prebill_penalty,
        ),
        AlertRule(
            id="message-policy-violation",
            name="Message Policy Violation",
            description="Message contains contact sharing or bypass attempts",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.MEDIUM,
            condition=_is_flag(FlagType.MESSAGE_POLICY_VIOLATION),
            action=queue_for_review,
        ),
        AlertRule(
            id="mass-access-high",
            name="Mass Candidate Access",
            description="Employer accessing many candidates in a short window",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.HIGH,
            condition=_is_flag(FlagType.MASS_CANDIDATE_ACCESS),
            action=restrict_mass_access,
        ),
        AlertRule(
            id="off-hours-medium",
            name="Off-Hours Activity",
            description="Sustained activity outside business hours",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.MEDIUM,
            condition=_is_flag(FlagType.OFF_HOURS_ACTIVITY),
            action=report_off_hours,
        ),
        AlertRule(
            id="candidate-report-high",
            name="Candidate Report",
            description="A candidate reported suspicious employer behaviour",
            trigger=AlertTrigger.IMMEDIATE,
            severity=Severity.HIGH,
            condition=_is_flag(FlagType.CANDIDATE_REPORT),
            action=review_candidate_report,
        ),
        AlertRule(
            id="activity-pattern-hourly",
            name="Hourly Activity Analysis",
            description="Contact-inactivity scan and employer-wide pattern analysis",
            trigger=AlertTrigger.HOURLY,
            severity=Severity.MEDIUM,
            condition=_always,
            action=analyze_activity,
            records_alert=False,
        ),
        AlertRule(
            id="overdue-payments-daily",
            name="Overdue Success Fees",
            description="Enforcement fees are overdue for payment",
            trigger=AlertTrigger.DAILY,
            severity=Severity.HIGH,
            condition=has_overdue_fees,
            action=process_overdue,
        ),
        AlertRule(
            id="employer-compliance-weekly",
            name="Employer Compliance Review",
            description="Weekly review of employer compliance metrics",
            trigger=AlertTrigger.WEEKLY,
            severity=Severity.MEDIUM,
            condition=_always,
            action=compliance_report,
        ),
    ]
