"""
Placement Guard - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship, validates
from ..database import Base


# =============================================================================
# ENUMS FOR ACCESS CONTROL
# =============================================================================

class PaymentStatus(str, Enum):
    """Payment standing of an employer for one candidate."""
    NONE = "none"
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class CommitmentType(str, Enum):
    """Commercial commitment an employer has accepted."""
    NONE = "none"
    SUBSCRIPTION = "subscription"
    SUCCESS_FEE = "success_fee"
    INTERVIEW_FEE = "interview_fee"


class ActivityAction(str, Enum):
    """Well-known activity event actions. Free-form actions are also accepted."""
    PROFILE_VIEWED = "PROFILE_VIEWED"
    CONTACT_ACCESSED = "CONTACT_ACCESSED"
    MESSAGE_SENT = "MESSAGE_SENT"
    MESSAGE_BLOCKED = "MESSAGE_BLOCKED"
    ACCESS_UPGRADED = "ACCESS_UPGRADED"
    AGREEMENT_SIGNED = "AGREEMENT_SIGNED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    COMMITMENT_ACCEPTED = "COMMITMENT_ACCEPTED"
    SUSPICIOUS_ACTIVITY_FLAGGED = "SUSPICIOUS_ACTIVITY_FLAGGED"
    EMPLOYER_SUSPENDED = "EMPLOYER_SUSPENDED"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagStatus(str, Enum):
    FLAGGED = "flagged"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class FlagType(str, Enum):
    """Behavioural anomalies recorded by the activity monitor."""
    EXCESSIVE_PROFILE_VIEWING = "EXCESSIVE_PROFILE_VIEWING"
    SUDDEN_INACTIVITY_AFTER_CONTACT_ACCESS = "SUDDEN_INACTIVITY_AFTER_CONTACT_ACCESS"
    MESSAGE_POLICY_VIOLATION = "MESSAGE_POLICY_VIOLATION"
    MASS_CANDIDATE_ACCESS = "MASS_CANDIDATE_ACCESS"
    OFF_HOURS_ACTIVITY = "OFF_HOURS_ACTIVITY"
    CANDIDATE_REPORT = "CANDIDATE_REPORT"


# =============================================================================
# ENUMS FOR ENFORCEMENT / ALERTS
# =============================================================================

class FeeType(str, Enum):
    SUCCESS_FEE = "success_fee"
    BYPASS_PENALTY = "bypass_penalty"
    LIQUIDATED_DAMAGES = "liquidated_damages"


class FeeStructure(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class FeeStatus(str, Enum):
    """Payment lifecycle of an enforcement record."""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    DISPUTED = "disputed"
    WAIVED = "waived"
    REFUNDED = "refunded"


class HireSource(str, Enum):
    PLATFORM = "platform"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


class NoticeType(str, Enum):
    REMINDER = "reminder"
    DEMAND = "demand"
    LEGAL_ACTION = "legal_action"


class AlertStatus(str, Enum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class AlertTrigger(str, Enum):
    IMMEDIATE = "immediate"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


# =============================================================================
# ACCESS LEDGER MODELS
# =============================================================================

class AccessGrantDB(Base):
    """
    Trust level earned by one employer for one candidate.

    Created lazily on first interaction, never deleted.
    Every read-modify-write goes through the version column
    (compare-and-set); concurrent writers retry on StaleDataError.
    """
    __tablename__ = "access_grants"
    __table_args__ = (
        UniqueConstraint("employer_id", "candidate_id", name="uq_access_grant_pair"),
        Index("ix_access_grant_employer_level", "employer_id", "level"),
        Index("ix_access_grant_candidate_level", "candidate_id", "level"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    employer_id = Column(String(64), nullable=False, index=True)
    candidate_id = Column(String(64), nullable=False, index=True)

    # Trust level (1-4)
    level = Column(Integer, nullable=False, default=1)
    level_granted_at = Column(DateTime, nullable=True)

    # Commercial standing
    payment_status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.NONE)
    payment_reference = Column(String(255), nullable=True)
    commitment_type = Column(SQLEnum(CommitmentType), nullable=False, default=CommitmentType.NONE)
    agreement_signed = Column(Boolean, nullable=False, default=False)
    agreement_signed_at = Column(DateTime, nullable=True)

    # Monitoring flags
    suspicious_activity = Column(Boolean, nullable=False, default=False, index=True)
    external_contact_attempts = Column(Integer, nullable=False, default=0)
    last_activity_at = Column(DateTime, nullable=True)

    # First platform contact, anchors the exclusive period
    first_contact_at = Column(DateTime, nullable=True)

    # Optimistic lock
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    @validates("level")
    def _validate_level(self, key, value):
        if value not in (1, 2, 3, 4):
            raise ValueError(f"access level must be 1-4, got {value}")
        return value

    @validates("first_contact_at")
    def _validate_first_contact(self, key, value):
        if self.first_contact_at is not None and value != self.first_contact_at:
            raise ValueError("first_contact_at is write-once")
        return value

    @property
    def restrictions(self) -> dict:
        """Pure projection of (level, suspicious_activity)."""
        return project_restrictions(self.level or 1, bool(self.suspicious_activity))


def project_restrictions(level: int, suspicious: bool) -> dict:
    """
    Restriction booleans for a trust level.

    Suspicious activity blocks everything regardless of level.
    """
    if suspicious:
        return {
            "contact_blocked": True,
            "download_blocked": True,
            "external_sharing_blocked": True,
        }
    return {
        "contact_blocked": level < 4,
        "download_blocked": level < 3,
        "external_sharing_blocked": level < 4,
    }


class ActivityEventDB(Base):
    """
    Immutable activity record. Append-only.

    level is 0 for plain activity and the new level for upgrades.
    """
    __tablename__ = "activity_events"
    __table_args__ = (
        Index("ix_activity_pair_time", "employer_id", "candidate_id", "occurred_at"),
        Index("ix_activity_employer_time", "employer_id", "occurred_at"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    employer_id = Column(String(64), nullable=False)
    candidate_id = Column(String(64), nullable=False)
    action = Column(String(100), nullable=False)
    level = Column(Integer, nullable=False, default=0)
    occurred_at = Column(DateTime, nullable=False)
    # 'metadata' is reserved in SQLAlchemy
    event_metadata = Column(JSON, nullable=True)


class SuspiciousFlagDB(Base):
    """
    Recorded behavioural anomaly. Append-only except for status.
    candidate_id is NULL for employer-wide patterns.
    """
    __tablename__ = "suspicious_flags"
    __table_args__ = (
        Index("ix_flag_pair_type", "employer_id", "candidate_id", "activity_type"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    employer_id = Column(String(64), nullable=False, index=True)
    candidate_id = Column(String(64), nullable=True)
    activity_type = Column(String(100), nullable=False)
    severity = Column(SQLEnum(Severity), nullable=False)
    description = Column(Text, nullable=False)
    evidence = Column(JSON, nullable=True)
    status = Column(SQLEnum(FlagStatus), nullable=False, default=FlagStatus.FLAGGED)
    created_at = Column(DateTime, nullable=False)


class EmployerStatusDB(Base):
    """Account-level suspension. The engine only ever sets it."""
    __tablename__ = "employer_status"

    employer_id = Column(String(64), primary_key=True)
    suspended = Column(Boolean, nullable=False, default=False)
    suspended_at = Column(DateTime, nullable=True)
    reason = Column(Text, nullable=True)


# =============================================================================
# ENFORCEMENT LEDGER MODELS
# =============================================================================

class EnforcementRecordDB(Base):
    """
    Monetary obligation: success fee or bypass penalty.

    exclusive_period_end = first_contact_date + 365 days, write-once.
    """
    __tablename__ = "enforcement_records"
    __table_args__ = (
        Index("ix_enforcement_employer_status", "employer_id", "payment_status"),
        Index("ix_enforcement_due_status", "due_date", "payment_status"),
        Index("ix_enforcement_exclusive_end", "exclusive_period_end"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    employer_id = Column(String(64), nullable=False)
    candidate_id = Column(String(64), nullable=False)

    # Fee details
    fee_type = Column(SQLEnum(FeeType), nullable=False)
    fee_structure = Column(SQLEnum(FeeStructure), nullable=False)
    fee_rate = Column(Float, nullable=False)  # percent or fixed amount
    base_salary = Column(Float, nullable=True)
    calculated_amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="GBP")
    reason_code = Column(String(100), nullable=True)

    # Hire details
    hire_date = Column(DateTime, nullable=True)
    job_title = Column(String(255), nullable=True)
    hire_source = Column(SQLEnum(HireSource), nullable=False, default=HireSource.PLATFORM)
    bypass_detected = Column(Boolean, nullable=False, default=False)

    # Payment
    payment_status = Column(SQLEnum(FeeStatus), nullable=False, default=FeeStatus.PENDING)
    due_date = Column(DateTime, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    payment_reference = Column(String(255), nullable=True)
    dispute_reason = Column(Text, nullable=True)

    # Exclusivity window
    first_contact_date = Column(DateTime, nullable=False)
    exclusive_period_end = Column(DateTime, nullable=False)

    # Evidence: [{"type": ..., "uploaded_at": ..., "document_url": ..., "verification_status": ...}]
    evidence = Column(JSON, nullable=True, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    legal_notices = relationship(
        "LegalNoticeDB", back_populates="record", cascade="all, delete-orphan",
        order_by="LegalNoticeDB.sent_at",
    )

    @validates("exclusive_period_end")
    def _validate_exclusive_end(self, key, value):
        if self.exclusive_period_end is not None and value != self.exclusive_period_end:
            raise ValueError("exclusive_period_end is write-once")
        return value

    @validates("first_contact_date")
    def _validate_first_contact(self, key, value):
        if self.first_contact_date is not None and value != self.first_contact_date:
            raise ValueError("first_contact_date is write-once")
        return value


class LegalNoticeDB(Base):
    """One escalating notice per (record, type). Never re-sent."""
    __tablename__ = "legal_notices"
    __table_args__ = (
        UniqueConstraint("record_id", "notice_type", name="uq_legal_notice_type"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    record_id = Column(String(36), ForeignKey("enforcement_records.id", ondelete="CASCADE"), nullable=False, index=True)
    notice_type = Column(SQLEnum(NoticeType), nullable=False)
    days_overdue = Column(Integer, nullable=False)
    sent_at = Column(DateTime, nullable=False)

    record = relationship("EnforcementRecordDB", back_populates="legal_notices")


# =============================================================================
# ALERT MODELS
# =============================================================================

class AlertDB(Base):
    """
    Alert log. Append-only; only the status fields move.
    """
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alert_status_severity", "status", "severity"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    rule_id = Column(String(100), nullable=False, index=True)
    employer_id = Column(String(64), nullable=True, index=True)
    candidate_id = Column(String(64), nullable=True)

    severity = Column(SQLEnum(Severity), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)

    status = Column(SQLEnum(AlertStatus), nullable=False, default=AlertStatus.PENDING)
    created_at = Column(DateTime, nullable=False)
    acknowledged_at = Column(DateTime, nullable=True)
    acknowledged_by = Column(String(64), nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(64), nullable=True)
    resolution_note = Column(Text, nullable=True)
    escalated_at = Column(DateTime, nullable=True)


class SchedulerRunDB(Base):
    """Last completed run per sweep cadence."""
    __tablename__ = "scheduler_runs"

    trigger = Column(SQLEnum(AlertTrigger), primary_key=True)
    last_run_at = Column(DateTime, nullable=False)
    last_result = Column(JSON, nullable=True)
