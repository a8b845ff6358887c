"""
Activity Monitor

Ingests employer activity and messages, applies the behavioural
heuristics, and turns anomalies into suspicious-activity flags.

Two very different failure policies live here:
- track_activity is fire-and-forget. Store failures are logged and
  dropped; the caller never sees them.
- monitor_message gates delivery. Every restriction is written before
  the decision is returned, and any store failure blocks the message.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from dateutil import tz
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ...context import EngineContext
from ...errors import PlacementGuardError, ValidationError
from ...models.db_models import (
    AccessGrantDB,
    ActivityEventDB,
    SuspiciousFlagDB,
    ActivityAction,
    FlagStatus,
    FlagType,
    Severity,
)
from ..access.access_ledger import AccessLedger, MAX_LEVEL
from ..detection.pattern_detector import PatternDetector, Classification
from ..enforcement.enforcement_ledger import EnforcementLedger

logger = logging.getLogger(__name__)


# =============================================================================
# HEURISTIC THRESHOLDS
# =============================================================================

VIEW_WINDOW = timedelta(hours=24)
MAX_VIEWS_WITHOUT_MESSAGE = 10

CONTACT_IDLE_LIMIT = timedelta(hours=2)
CONTACT_SCAN_LOOKBACK = timedelta(days=7)

MASS_ACCESS_WINDOW = timedelta(hours=1)
MASS_ACCESS_CANDIDATES = 20
MASS_ACCESS_EVENTS = 50

OFF_HOURS_WINDOW = timedelta(hours=24)
OFF_HOURS_EVENTS = 10
BUSINESS_HOURS_START = 6
BUSINESS_HOURS_END = 22

VIEW_ACTIONS = [ActivityAction.PROFILE_VIEWED.value, ActivityAction.CONTACT_ACCESSED.value]

# Written by the engine itself, never evidence of employer activity
SYSTEM_ACTIONS = [
    ActivityAction.SUSPICIOUS_ACTIVITY_FLAGGED.value,
    ActivityAction.EMPLOYER_SUSPENDED.value,
]

INACTIVITY_PENALTY_REASON = "contact_access_without_engagement"


@dataclass
class MessageDecision:
    """Outcome of gating one message."""
    delivered: bool
    content: Optional[str]
    flags: List[Dict[str, Any]] = field(default_factory=list)
    classification: Optional[Dict[str, Any]] = None
    severity: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "delivered": self.delivered,
            "content": self.content,
            "flags": self.flags,
            "classification": self.classification,
            "severity": self.severity,
            "reason": self.reason,
        }


class ActivityMonitor:
    """
    Behavioural monitoring for employer/candidate pairs.

    Flags are handed to the AlertEngine as soon as they are recorded so
    immediate rules act inside the same transaction.
    """

    def __init__(
        self,
        ctx: EngineContext,
        ledger: Optional[AccessLedger] = None,
        enforcement: Optional[EnforcementLedger] = None,
        detector: Optional[PatternDetector] = None,
        alert_engine=None,
    ):
        self.ctx = ctx
        self.db = ctx.db
        self.ledger = ledger or AccessLedger(ctx)
        self.enforcement = enforcement or EnforcementLedger(ctx)
        self.detector = detector or PatternDetector()
        if alert_engine is None:
            from ..alerts.alert_engine import AlertEngine
            alert_engine = AlertEngine(ctx, ledger=self.ledger, enforcement=self.enforcement, monitor=self)
        self.alert_engine = alert_engine
        self.local_tz = tz.gettz(ctx.settings.local_timezone) or tz.UTC

    # =========================================================================
    # FLAGS
    # =========================================================================

    def flag_suspicious(
        self,
        employer_id: str,
        candidate_id: Optional[str],
        activity_type: FlagType,
        severity: Severity,
        description: str,
        evidence: Optional[Dict[str, Any]] = None,
        implicates_employer: bool = True,
    ) -> SuspiciousFlagDB:
        """
        Record a flag and apply its immediate consequences.

        Every pair flag marks the grant suspicious and counts an external
        contact attempt. Critical flags also suspend the employer and
        raise a lesser bypass penalty. With implicates_employer=False the
        flag is recorded for review only and none of that happens.
        Does not commit.
        """
        activity_type = FlagType(activity_type)
        severity = Severity(severity)
        now = self.ctx.now()

        flag = SuspiciousFlagDB(
            id=str(uuid4()),
            employer_id=employer_id,
            candidate_id=candidate_id,
            activity_type=activity_type.value,
            severity=severity,
            description=description,
            evidence=evidence or {},
            status=FlagStatus.FLAGGED,
            created_at=now,
        )
        return self._apply_flag(flag, implicates_employer)

    def _apply_flag(self, flag: SuspiciousFlagDB, implicates_employer: bool = True) -> SuspiciousFlagDB:
        self.db.add(flag)
        self.db.flush()

        employer_id, candidate_id = flag.employer_id, flag.candidate_id
        if not implicates_employer:
            logger.warning(
                f"Flag recorded for review: {flag.activity_type} ({flag.severity.value}) "
                f"employer={employer_id} candidate={candidate_id}"
            )
            self.alert_engine.process_flag(flag)
            return flag

        if candidate_id is not None:
            self.ledger.mark_suspicious(employer_id, candidate_id)
            self.ledger.append_event(
                employer_id, candidate_id, ActivityAction.SUSPICIOUS_ACTIVITY_FLAGGED,
                metadata={"flag_id": flag.id, "activity_type": flag.activity_type, "severity": flag.severity.value},
                occurred_at=flag.created_at,
            )

        if flag.severity == Severity.CRITICAL:
            if self.ledger.suspend_employer(employer_id, f"{flag.activity_type}: {flag.description}"):
                if candidate_id is not None:
                    self.ledger.append_event(
                        employer_id, candidate_id, ActivityAction.EMPLOYER_SUSPENDED,
                        metadata={"flag_id": flag.id},
                        occurred_at=flag.created_at,
                    )
            if candidate_id is not None:
                self.enforcement.create_bypass_penalty(
                    employer_id, candidate_id,
                    reason_code=flag.activity_type.lower(),
                    evidence=True,
                    hire_confirmed=False,
                )

        logger.warning(
            f"Suspicious activity flagged: {flag.activity_type} ({flag.severity.value}) "
            f"employer={employer_id} candidate={candidate_id}"
        )

        self.alert_engine.process_flag(flag)
        return flag

    def _recent_flag_exists(
        self,
        employer_id: str,
        candidate_id: Optional[str],
        activity_type: FlagType,
        since: datetime,
    ) -> bool:
        query = self.db.query(SuspiciousFlagDB.id).filter(
            SuspiciousFlagDB.employer_id == employer_id,
            SuspiciousFlagDB.activity_type == activity_type.value,
            SuspiciousFlagDB.created_at >= since,
        )
        if candidate_id is None:
            query = query.filter(SuspiciousFlagDB.candidate_id.is_(None))
        else:
            query = query.filter(SuspiciousFlagDB.candidate_id == candidate_id)
        return query.first() is not None

    # =========================================================================
    # ACTIVITY TRACKING (fire-and-forget)
    # =========================================================================

    def track_activity(
        self,
        employer_id: str,
        candidate_id: str,
        action: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ActivityEventDB]:
        """
        Append an event and run the pair and employer-wide heuristics on it.
        Never raises on store errors.
        """
        action = action.value if isinstance(action, ActivityAction) else str(action)
        try:
            with self.db.begin_nested():
                event = self.ledger.record_activity(employer_id, candidate_id, action, metadata)
                if action in VIEW_ACTIONS:
                    self.check_excessive_viewing(employer_id, candidate_id)
                self.detect_abnormal_access_patterns(employer_id)
            self.db.commit()
            return event
        except (SQLAlchemyError, PlacementGuardError) as e:
            logger.error(f"Failed to track {action} for {employer_id}->{candidate_id}: {e}")
            return None

    def _count_pair_events(self, employer_id: str, candidate_id: str, actions: List[str], since: datetime) -> int:
        return self.db.query(func.count(ActivityEventDB.id)).filter(
            ActivityEventDB.employer_id == employer_id,
            ActivityEventDB.candidate_id == candidate_id,
            ActivityEventDB.action.in_(actions),
            ActivityEventDB.occurred_at >= since,
        ).scalar() or 0

    def check_excessive_viewing(self, employer_id: str, candidate_id: str) -> Optional[SuspiciousFlagDB]:
        """More than 10 views and no message in 24 h. Once per pair per window."""
        since = self.ctx.now() - VIEW_WINDOW
        views = self._count_pair_events(employer_id, candidate_id, VIEW_ACTIONS, since)
        if views <= MAX_VIEWS_WITHOUT_MESSAGE:
            return None
        messages = self._count_pair_events(
            employer_id, candidate_id, [ActivityAction.MESSAGE_SENT.value], since
        )
        if messages > 0:
            return None
        if self._recent_flag_exists(employer_id, candidate_id, FlagType.EXCESSIVE_PROFILE_VIEWING, since):
            return None

        return self.flag_suspicious(
            employer_id, candidate_id,
            FlagType.EXCESSIVE_PROFILE_VIEWING,
            Severity.HIGH,
            f"Profile viewed {views} times in 24 hours without any message",
            evidence={"views": views, "messages": messages, "window_hours": 24},
        )

    # =========================================================================
    # CONTACT INACTIVITY (hourly sweep)
    # =========================================================================

    def scan_contact_inactivity(self) -> List[SuspiciousFlagDB]:
        """
        Flag level-4 contact accesses followed by more than two hours of
        silence. Each contact access is flagged at most once.
        """
        now = self.ctx.now()
        contacts = self.db.query(ActivityEventDB).join(
            AccessGrantDB,
            (AccessGrantDB.employer_id == ActivityEventDB.employer_id)
            & (AccessGrantDB.candidate_id == ActivityEventDB.candidate_id),
        ).filter(
            ActivityEventDB.action == ActivityAction.CONTACT_ACCESSED.value,
            ActivityEventDB.occurred_at <= now - CONTACT_IDLE_LIMIT,
            ActivityEventDB.occurred_at >= now - CONTACT_SCAN_LOOKBACK,
            AccessGrantDB.level == MAX_LEVEL,
        ).order_by(ActivityEventDB.occurred_at.asc()).all()

        flags = []
        for contact in contacts:
            followed_up = self.db.query(ActivityEventDB.id).filter(
                ActivityEventDB.employer_id == contact.employer_id,
                ActivityEventDB.candidate_id == contact.candidate_id,
                ActivityEventDB.id != contact.id,
                ActivityEventDB.action.notin_(SYSTEM_ACTIONS),
                ActivityEventDB.occurred_at >= contact.occurred_at,
                ActivityEventDB.occurred_at <= contact.occurred_at + CONTACT_IDLE_LIMIT,
            ).first()
            if followed_up is not None:
                continue
            if self._contact_already_flagged(contact):
                continue

            idle_hours = round((now - contact.occurred_at).total_seconds() / 3600, 1)
            flags.append(self.flag_suspicious(
                contact.employer_id, contact.candidate_id,
                FlagType.SUDDEN_INACTIVITY_AFTER_CONTACT_ACCESS,
                Severity.MEDIUM,
                f"No platform activity for {idle_hours} hours after contact details were accessed",
                evidence={
                    "contact_event_id": contact.id,
                    "contact_accessed_at": contact.occurred_at.isoformat(),
                    "idle_hours": idle_hours,
                },
            ))
        return flags

    def _contact_already_flagged(self, contact: ActivityEventDB) -> bool:
        existing = self.db.query(SuspiciousFlagDB).filter(
            SuspiciousFlagDB.employer_id == contact.employer_id,
            SuspiciousFlagDB.candidate_id == contact.candidate_id,
            SuspiciousFlagDB.activity_type == FlagType.SUDDEN_INACTIVITY_AFTER_CONTACT_ACCESS.value,
        ).all()
        return any((f.evidence or {}).get("contact_event_id") == contact.id for f in existing)

    # =========================================================================
    # EMPLOYER-WIDE PATTERNS (hourly sweep)
    # =========================================================================

    def is_off_hours(self, occurred_at: datetime) -> bool:
        local = occurred_at.replace(tzinfo=tz.UTC).astimezone(self.local_tz)
        return local.hour < BUSINESS_HOURS_START or local.hour >= BUSINESS_HOURS_END

    def _employer_events(self, employer_id: str, since: datetime) -> List[ActivityEventDB]:
        return self.db.query(ActivityEventDB).filter(
            ActivityEventDB.employer_id == employer_id,
            ActivityEventDB.occurred_at >= since,
            ActivityEventDB.action.notin_(SYSTEM_ACTIONS),
        ).all()

    def recently_active_employers(self, window: timedelta = MASS_ACCESS_WINDOW) -> List[str]:
        since = self.ctx.now() - window
        rows = self.db.query(ActivityEventDB.employer_id).filter(
            ActivityEventDB.occurred_at >= since,
        ).distinct().all()
        return sorted(r[0] for r in rows)

    def detect_abnormal_access_patterns(self, employer_id: str) -> List[SuspiciousFlagDB]:
        now = self.ctx.now()
        flags = []

        recent = self._employer_events(employer_id, now - MASS_ACCESS_WINDOW)
        candidates = {e.candidate_id for e in recent}
        if (len(candidates) > MASS_ACCESS_CANDIDATES and len(recent) > MASS_ACCESS_EVENTS
                and not self._recent_flag_exists(employer_id, None, FlagType.MASS_CANDIDATE_ACCESS,
                                                 now - MASS_ACCESS_WINDOW)):
            flags.append(self.flag_suspicious(
                employer_id, None,
                FlagType.MASS_CANDIDATE_ACCESS,
                Severity.HIGH,
                f"Accessed {len(candidates)} candidates with {len(recent)} events in one hour",
                evidence={"candidates": len(candidates), "events": len(recent), "window_hours": 1},
            ))

        daily = self._employer_events(employer_id, now - OFF_HOURS_WINDOW)
        off_hours = [e for e in daily if self.is_off_hours(e.occurred_at)]
        if (len(off_hours) > OFF_HOURS_EVENTS
                and not self._recent_flag_exists(employer_id, None, FlagType.OFF_HOURS_ACTIVITY,
                                                 now - OFF_HOURS_WINDOW)):
            flags.append(self.flag_suspicious(
                employer_id, None,
                FlagType.OFF_HOURS_ACTIVITY,
                Severity.MEDIUM,
                f"{len(off_hours)} events outside business hours in 24 hours",
                evidence={"off_hours_events": len(off_hours), "timezone": self.ctx.settings.local_timezone},
            ))

        return flags

    # =========================================================================
    # MESSAGE GATING (fail closed)
    # =========================================================================

    def monitor_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MessageDecision:
        """
        Decide whether a message is delivered, and in what form.

        The sender is the employer unless metadata says the sender is
        the candidate.
        """
        metadata = metadata or {}
        if metadata.get("sender_role") == "candidate":
            employer_id, candidate_id = recipient_id, sender_id
        else:
            employer_id, candidate_id = sender_id, recipient_id

        classification = self.detector.classify(content or "")

        try:
            if employer_id == sender_id and self.ledger.is_employer_suspended(employer_id):
                self.ledger.append_event(
                    employer_id, candidate_id, ActivityAction.MESSAGE_BLOCKED,
                    metadata={"reason": "employer_suspended"},
                )
                self.db.commit()
                return MessageDecision(
                    delivered=False, content=None,
                    classification=classification.to_dict(), reason="employer_suspended",
                )

            if classification.is_clean:
                self.ledger.record_activity(employer_id, candidate_id, ActivityAction.MESSAGE_SENT.value,
                                            {"sender_id": sender_id, "length": len(content or "")})
                self.db.commit()
                return MessageDecision(delivered=True, content=content, classification=classification.to_dict())

            decision = self._gate_violation(employer_id, candidate_id, sender_id, content, classification)
            self.db.commit()
            return decision

        except (SQLAlchemyError, PlacementGuardError) as e:
            self.db.rollback()
            logger.error(f"Message gating failed for {sender_id}->{recipient_id}, blocking: {e}")
            return MessageDecision(
                delivered=False, content=None,
                classification=classification.to_dict(), reason="gating_unavailable",
            )

    def _gate_violation(
        self,
        employer_id: str,
        candidate_id: str,
        sender_id: str,
        content: str,
        classification: Classification,
    ) -> MessageDecision:
        # Only the employer can be held to a bypass; candidate messages go to review
        employer_sent = sender_id == employer_id
        severity = Severity.CRITICAL if employer_sent and classification.has_bypass_intent else Severity.MEDIUM
        redacted = self.detector.redact(content, classification)
        flag_dicts = [f.to_dict() for f in classification.flags]

        self.flag_suspicious(
            employer_id, candidate_id,
            FlagType.MESSAGE_POLICY_VIOLATION,
            severity,
            f"Message matched {', '.join(c.value for c in classification.categories)}",
            evidence={
                "sender_id": sender_id,
                "sender_role": "employer" if employer_sent else "candidate",
                "flags": flag_dicts,
                "confidence": classification.confidence,
                "risk_level": classification.risk_level,
                "blocked": classification.should_block,
                "redacted_content": redacted,
            },
            implicates_employer=employer_sent,
        )

        if classification.should_block:
            self.ledger.append_event(
                employer_id, candidate_id, ActivityAction.MESSAGE_BLOCKED,
                metadata={"sender_id": sender_id, "risk_level": classification.risk_level},
            )
            return MessageDecision(
                delivered=False, content=None, flags=flag_dicts,
                classification=classification.to_dict(), severity=severity.value,
                reason="policy_violation",
            )

        self.ledger.record_activity(
            employer_id, candidate_id, ActivityAction.MESSAGE_SENT.value,
            {"sender_id": sender_id, "redacted": True},
        )
        return MessageDecision(
            delivered=True, content=redacted, flags=flag_dicts,
            classification=classification.to_dict(), severity=severity.value,
            reason="redacted",
        )

    # =========================================================================
    # CANDIDATE REPORTS
    # =========================================================================

    def report_suspicious(
        self,
        reporter_id: str,
        subject_id: str,
        reason: str,
        evidence: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """A candidate reports an employer. Flags the pair as CANDIDATE_REPORT (high)."""
        if not reason or not reason.strip():
            raise ValidationError("A report needs a reason")

        try:
            flag = self.flag_suspicious(
                subject_id, reporter_id,
                FlagType.CANDIDATE_REPORT,
                Severity.HIGH,
                f"Candidate report: {reason}",
                evidence={"reporter_id": reporter_id, "reason": reason, "details": evidence or {}},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        return {
            "acknowledged": True,
            "flag_id": flag.id,
            "message": "Thank you. Your report has been received and will be reviewed by our team.",
        }

    # =========================================================================
    # REPORTING
    # =========================================================================

    def get_recent_flags(self, window: timedelta = timedelta(hours=24)) -> List[SuspiciousFlagDB]:
        since = self.ctx.now() - window
        return self.db.query(SuspiciousFlagDB).filter(
            SuspiciousFlagDB.created_at >= since
        ).order_by(SuspiciousFlagDB.created_at.desc()).all()

    def generate_monitoring_report(self, window: timedelta = timedelta(hours=24)) -> Dict[str, Any]:
        flags = self.get_recent_flags(window)
        by_severity = Counter(f.severity.value for f in flags)
        violations = Counter(f.activity_type for f in flags)
        employers = Counter(f.employer_id for f in flags)
        hours = Counter(
            f.created_at.replace(tzinfo=tz.UTC).astimezone(self.local_tz).hour for f in flags
        )

        return {
            "generated_at": self.ctx.now().isoformat(),
            "window_hours": round(window.total_seconds() / 3600, 2),
            "summary": {
                "total_flags": len(flags),
                "critical_flags": by_severity.get(Severity.CRITICAL.value, 0),
                "high_flags": by_severity.get(Severity.HIGH.value, 0),
                "medium_flags": by_severity.get(Severity.MEDIUM.value, 0),
                "low_flags": by_severity.get(Severity.LOW.value, 0),
                "resolved_flags": sum(1 for f in flags if f.status == FlagStatus.RESOLVED),
            },
            "patterns": {
                "most_common_violations": violations.most_common(5),
                "suspicious_employers": employers.most_common(10),
                "time_distribution": dict(sorted(hours.items())),
            },
            "flags": [
                {
                    "id": f.id,
                    "employer_id": f.employer_id,
                    "candidate_id": f.candidate_id,
                    "activity_type": f.activity_type,
                    "severity": f.severity.value,
                    "status": f.status.value,
                    "created_at": f.created_at.isoformat(),
                }
                for f in flags
            ],
        }
