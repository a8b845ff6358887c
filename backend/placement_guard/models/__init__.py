"""Placement Guard - Data Models"""
from .db_models import (
    # Enums
    PaymentStatus, CommitmentType, ActivityAction, Severity, FlagStatus, FlagType,
    FeeType, FeeStructure, FeeStatus, HireSource, NoticeType,
    AlertStatus, AlertTrigger,
    # Access ledger
    AccessGrantDB, ActivityEventDB, SuspiciousFlagDB, EmployerStatusDB,
    project_restrictions,
    # Enforcement ledger
    EnforcementRecordDB, LegalNoticeDB,
    # Alerts
    AlertDB, SchedulerRunDB,
)
from .profiles import (
    Location, SalaryRange, Education, WorkSample, VideoProfile, Reference,
    CandidateProfile, EmployerProfile, Profile, parse_profile,
)

__all__ = [
    "PaymentStatus", "CommitmentType", "ActivityAction", "Severity", "FlagStatus", "FlagType",
    "FeeType", "FeeStructure", "FeeStatus", "HireSource", "NoticeType",
    "AlertStatus", "AlertTrigger",
    "AccessGrantDB", "ActivityEventDB", "SuspiciousFlagDB", "EmployerStatusDB",
    "project_restrictions",
    "EnforcementRecordDB", "LegalNoticeDB",
    "AlertDB", "SchedulerRunDB",
    "Location", "SalaryRange", "Education", "WorkSample", "VideoProfile", "Reference",
    "CandidateProfile", "EmployerProfile", "Profile", "parse_profile",
]
