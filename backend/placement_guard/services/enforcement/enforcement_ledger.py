"""
Enforcement Ledger

AUTHORITY: SYSTEM
Monetary obligations arising from hires and detected bypasses.

Key behaviors:
- Success fee on any hire inside the exclusive period (first contact + 365 days)
- Fixed bypass penalty on detected off-platform contact or hire
- Daily overdue processing with escalating legal notices (7 / 14 / 30 days)

Creation is idempotent: a success fee once per pair, a bypass penalty
once per (pair, reason) while it is still open. Records are never
deleted; status only moves forward through the fee state machine.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func

from ...context import EngineContext
from ...errors import NotFoundError, ValidationError
from ...models.db_models import (
    AccessGrantDB,
    EnforcementRecordDB,
    LegalNoticeDB,
    FeeStatus,
    FeeStructure,
    FeeType,
    HireSource,
    NoticeType,
)
from .state_machine import FeeStateMachine, OPEN_STATUSES

logger = logging.getLogger(__name__)


# =============================================================================
# ENFORCEMENT CONFIGURATION
# =============================================================================

# (days overdue, notice) in escalation order
NOTICE_SCHEDULE = [
    (7, NoticeType.REMINDER),
    (14, NoticeType.DEMAND),
    (30, NoticeType.LEGAL_ACTION),
]

EVIDENCE_TYPES = {
    "employee_confirmation",
    "payroll_records",
    "contract_upload",
    "external_report",
}

EXCLUSIVE_PERIOD = timedelta(days=365)

HIRE_BYPASS_REASON = "hire_bypass"

UNPAID_STATUSES = [FeeStatus.PENDING, FeeStatus.OVERDUE]


class EnforcementLedger:
    """Creates and moves enforcement records."""

    def __init__(self, ctx: EngineContext):
        self.ctx = ctx
        self.db = ctx.db
        self.settings = ctx.settings
        self.state_machine = FeeStateMachine()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def get_record(self, record_id: str) -> EnforcementRecordDB:
        record = self.db.get(EnforcementRecordDB, record_id)
        if record is None:
            raise NotFoundError(f"Enforcement record {record_id} not found")
        return record

    def first_contact_date(self, employer_id: str, candidate_id: str) -> datetime:
        """First platform contact for the pair, falling back to now."""
        grant = self.db.query(AccessGrantDB).filter(
            AccessGrantDB.employer_id == employer_id,
            AccessGrantDB.candidate_id == candidate_id,
        ).first()
        if grant is not None:
            if grant.first_contact_at is not None:
                return grant.first_contact_at
            if grant.created_at is not None:
                return grant.created_at
        return self.ctx.now()

    def exclusive_period_end(self, first_contact: datetime) -> datetime:
        return first_contact + EXCLUSIVE_PERIOD

    def _new_record(
        self,
        employer_id: str,
        candidate_id: str,
        fee_type: FeeType,
        fee_structure: FeeStructure,
        fee_rate: float,
        amount: float,
        due_days: int,
        first_contact: datetime,
        **fields,
    ) -> EnforcementRecordDB:
        now = self.ctx.now()
        record = EnforcementRecordDB(
            id=str(uuid4()),
            employer_id=employer_id,
            candidate_id=candidate_id,
            fee_type=fee_type,
            fee_structure=fee_structure,
            fee_rate=fee_rate,
            calculated_amount=round(amount, 2),
            currency=self.settings.currency,
            payment_status=FeeStatus.PENDING,
            due_date=now + timedelta(days=due_days),
            first_contact_date=first_contact,
            exclusive_period_end=self.exclusive_period_end(first_contact),
            evidence=[],
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.db.add(record)
        self.db.flush()
        return record

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_success_fee(
        self,
        employer_id: str,
        candidate_id: str,
        salary: float,
        hire_date: datetime,
        source: HireSource = HireSource.PLATFORM,
        job_title: Optional[str] = None,
        first_contact_date: Optional[datetime] = None,
    ) -> EnforcementRecordDB:
        """Percentage fee on first-year salary. One per pair."""
        if salary is None or salary <= 0:
            raise ValidationError("Salary must be a positive amount")

        existing = self.db.query(EnforcementRecordDB).filter(
            EnforcementRecordDB.employer_id == employer_id,
            EnforcementRecordDB.candidate_id == candidate_id,
            EnforcementRecordDB.fee_type == FeeType.SUCCESS_FEE,
        ).first()
        if existing is not None:
            return existing

        rate = self.settings.success_fee_rate
        record = self._new_record(
            employer_id, candidate_id,
            fee_type=FeeType.SUCCESS_FEE,
            fee_structure=FeeStructure.PERCENTAGE,
            fee_rate=rate,
            amount=salary * rate / 100,
            due_days=self.settings.success_fee_due_days,
            first_contact=first_contact_date or self.first_contact_date(employer_id, candidate_id),
            base_salary=salary,
            hire_date=hire_date,
            job_title=job_title,
            hire_source=HireSource(source),
            bypass_detected=HireSource(source) == HireSource.EXTERNAL,
        )
        logger.info(f"Success fee {record.id} created for {employer_id}->{candidate_id}: {record.calculated_amount} {record.currency}")
        return record

    def create_bypass_penalty(
        self,
        employer_id: str,
        candidate_id: str,
        reason_code: str,
        evidence: bool = False,
        hire_confirmed: bool = False,
        first_contact_date: Optional[datetime] = None,
    ) -> EnforcementRecordDB:
        """Fixed penalty. One open record per (pair, reason_code)."""
        existing = self.db.query(EnforcementRecordDB).filter(
            EnforcementRecordDB.employer_id == employer_id,
            EnforcementRecordDB.candidate_id == candidate_id,
            EnforcementRecordDB.fee_type == FeeType.BYPASS_PENALTY,
            EnforcementRecordDB.reason_code == reason_code,
            EnforcementRecordDB.payment_status.in_(OPEN_STATUSES),
        ).first()
        if existing is not None:
            return existing

        amount = self.settings.hire_bypass_penalty if hire_confirmed else self.settings.minor_bypass_penalty
        record = self._new_record(
            employer_id, candidate_id,
            fee_type=FeeType.BYPASS_PENALTY,
            fee_structure=FeeStructure.FIXED,
            fee_rate=amount,
            amount=amount,
            due_days=self.settings.penalty_due_days,
            first_contact=first_contact_date or self.first_contact_date(employer_id, candidate_id),
            reason_code=reason_code,
            hire_source=HireSource.EXTERNAL,
            bypass_detected=True,
        )
        if evidence:
            record.evidence = [self._evidence_entry("external_report")]
        logger.warning(f"Bypass penalty {record.id} ({reason_code}) created for {employer_id}->{candidate_id}: {amount}")
        return record

    def record_hire(
        self,
        employer_id: str,
        candidate_id: str,
        salary: float,
        hire_date: datetime,
        source: HireSource = HireSource.PLATFORM,
        job_title: Optional[str] = None,
    ) -> List[EnforcementRecordDB]:
        """
        Bill a hire.

        Inside the exclusive period the hire is billable whatever its
        source; an external hire additionally carries the hire-bypass
        penalty. Outside the window nothing is owed.
        """
        source = HireSource(source)
        first_contact = self.first_contact_date(employer_id, candidate_id)
        if hire_date >= self.exclusive_period_end(first_contact):
            logger.info(f"Hire {employer_id}->{candidate_id} on {hire_date} is outside the exclusive period")
            return []

        records = [
            self.create_success_fee(
                employer_id, candidate_id, salary, hire_date,
                source=source, job_title=job_title, first_contact_date=first_contact,
            )
        ]
        if source == HireSource.EXTERNAL:
            records.append(self.create_bypass_penalty(
                employer_id, candidate_id, HIRE_BYPASS_REASON,
                evidence=True, hire_confirmed=True, first_contact_date=first_contact,
            ))
        return records

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_overdue_fees(self) -> List[EnforcementRecordDB]:
        now = self.ctx.now()
        return self.db.query(EnforcementRecordDB).filter(
            EnforcementRecordDB.due_date < now,
            EnforcementRecordDB.payment_status.in_(UNPAID_STATUSES),
        ).all()

    def get_fees_in_exclusive_period(self, employer_id: str, candidate_id: str) -> List[EnforcementRecordDB]:
        now = self.ctx.now()
        return self.db.query(EnforcementRecordDB).filter(
            EnforcementRecordDB.employer_id == employer_id,
            EnforcementRecordDB.candidate_id == candidate_id,
            EnforcementRecordDB.exclusive_period_end > now,
        ).all()

    def get_records_for_employer(self, employer_id: str) -> List[EnforcementRecordDB]:
        return self.db.query(EnforcementRecordDB).filter(
            EnforcementRecordDB.employer_id == employer_id
        ).order_by(EnforcementRecordDB.created_at.asc()).all()

    def calculate_total_owed(self, employer_id: str) -> Dict[str, Any]:
        total, count = self.db.query(
            func.coalesce(func.sum(EnforcementRecordDB.calculated_amount), 0.0),
            func.count(EnforcementRecordDB.id),
        ).filter(
            EnforcementRecordDB.employer_id == employer_id,
            EnforcementRecordDB.payment_status.in_(UNPAID_STATUSES),
        ).one()
        return {
            "employer_id": employer_id,
            "total_amount": round(float(total), 2),
            "count": int(count),
            "currency": self.settings.currency,
        }

    # =========================================================================
    # STATUS TRANSITIONS
    # =========================================================================

    def mark_paid(self, record_id: str, payment_reference: Optional[str] = None) -> EnforcementRecordDB:
        record = self.get_record(record_id)
        now = self.ctx.now()
        self.state_machine.transition(record, FeeStatus.PAID, now)
        record.paid_at = now
        if payment_reference:
            record.payment_reference = payment_reference
        self.db.flush()
        return record

    def mark_overdue(self, record_id: str) -> EnforcementRecordDB:
        record = self.get_record(record_id)
        self.state_machine.transition(record, FeeStatus.OVERDUE, self.ctx.now())
        self.db.flush()
        return record

    def raise_dispute(self, record_id: str, reason: str) -> EnforcementRecordDB:
        if not reason or not reason.strip():
            raise ValidationError("A dispute needs a reason")
        record = self.get_record(record_id)
        self.state_machine.transition(record, FeeStatus.DISPUTED, self.ctx.now())
        record.dispute_reason = reason
        self.db.flush()
        return record

    def waive(self, record_id: str) -> EnforcementRecordDB:
        record = self.get_record(record_id)
        self.state_machine.transition(record, FeeStatus.WAIVED, self.ctx.now())
        self.db.flush()
        return record

    def refund(self, record_id: str) -> EnforcementRecordDB:
        record = self.get_record(record_id)
        self.state_machine.transition(record, FeeStatus.REFUNDED, self.ctx.now())
        self.db.flush()
        return record

    def _evidence_entry(self, evidence_type: str, document_url: Optional[str] = None) -> Dict[str, Any]:
        return {
            "type": evidence_type,
            "uploaded_at": self.ctx.now().isoformat(),
            "document_url": document_url,
            "verification_status": "pending",
        }

    def add_evidence(
        self,
        record_id: str,
        evidence_type: str,
        document_url: Optional[str] = None,
    ) -> EnforcementRecordDB:
        if evidence_type not in EVIDENCE_TYPES:
            raise ValidationError(f"Unknown evidence type: {evidence_type}")
        record = self.get_record(record_id)
        # Reassign so the JSON column is marked dirty
        record.evidence = list(record.evidence or []) + [self._evidence_entry(evidence_type, document_url)]
        record.updated_at = self.ctx.now()
        self.db.flush()
        return record

    # =========================================================================
    # OVERDUE PROCESSING (SYSTEM-AUTHORITATIVE)
    # =========================================================================

    def notices_due(self, record: EnforcementRecordDB, days_overdue: int) -> List[NoticeType]:
        sent = {n.notice_type for n in record.legal_notices}
        return [
            notice for threshold, notice in NOTICE_SCHEDULE
            if days_overdue >= threshold and notice not in sent
        ]

    def process_overdue_payments(self) -> Dict[str, Any]:
        """
        Daily overdue sweep.

        AUTHORITY: SYSTEM - Runs automatically.
        Marks pending records past due as overdue and records each legal
        notice the first time its threshold is crossed. Does not commit.
        """
        now = self.ctx.now()
        marked_overdue = []
        notices_sent = []
        errors = []

        for record in self.get_overdue_fees():
            try:
                days_overdue = (now - record.due_date).days
                with self.db.begin_nested():
                    became_overdue = record.payment_status == FeeStatus.PENDING
                    if became_overdue:
                        self.state_machine.transition(record, FeeStatus.OVERDUE, now)

                    issued = self.notices_due(record, days_overdue)
                    for notice_type in issued:
                        record.legal_notices.append(LegalNoticeDB(
                            id=str(uuid4()),
                            record_id=record.id,
                            notice_type=notice_type,
                            days_overdue=days_overdue,
                            sent_at=now,
                        ))
                    self.db.flush()
            except Exception as e:
                logger.error(f"Overdue processing failed for record {record.id}: {e}")
                errors.append({
                    "record_id": record.id,
                    "error": str(e),
                })
                continue

            if became_overdue:
                marked_overdue.append(record.id)
            for notice_type in issued:
                notices_sent.append({"record_id": record.id, "notice_type": notice_type.value})
                self.ctx.notifier.notify(
                    "legal" if notice_type == NoticeType.LEGAL_ACTION else "billing",
                    f"{notice_type.value.replace('_', ' ').title()} notice",
                    f"{record.fee_type.value} {record.id} for employer {record.employer_id} "
                    f"is {days_overdue} days overdue ({record.calculated_amount} {record.currency})",
                    {"record_id": record.id, "employer_id": record.employer_id},
                )

        return {
            "run_date": now.isoformat(),
            "marked_overdue": len(marked_overdue),
            "notices_sent": len(notices_sent),
            "errors": len(errors),
            "details": {
                "marked_overdue": marked_overdue,
                "notices": notices_sent,
                "errors": errors,
            },
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def record_to_dict(record: EnforcementRecordDB) -> Dict[str, Any]:
    return {
        "id": record.id,
        "employer_id": record.employer_id,
        "candidate_id": record.candidate_id,
        "fee_type": record.fee_type.value,
        "fee_structure": record.fee_structure.value,
        "fee_rate": record.fee_rate,
        "base_salary": record.base_salary,
        "calculated_amount": record.calculated_amount,
        "currency": record.currency,
        "reason_code": record.reason_code,
        "hire_source": record.hire_source.value,
        "hire_date": _iso(record.hire_date),
        "job_title": record.job_title,
        "bypass_detected": record.bypass_detected,
        "payment_status": record.payment_status.value,
        "due_date": _iso(record.due_date),
        "paid_at": _iso(record.paid_at),
        "payment_reference": record.payment_reference,
        "dispute_reason": record.dispute_reason,
        "first_contact_date": _iso(record.first_contact_date),
        "exclusive_period_end": _iso(record.exclusive_period_end),
        "evidence": list(record.evidence or []),
        "legal_notices": [
            {
                "notice_type": n.notice_type.value,
                "days_overdue": n.days_overdue,
                "sent_at": _iso(n.sent_at),
            }
            for n in record.legal_notices
        ],
    }
