"""
Disclosure Service

Progressive disclosure of candidate profiles. What an employer sees is
a function of the trust level held in the AccessLedger:

    L1  basic, anonymised profile
    L2  + skills, education, salary band
    L3  + portfolio, watermarked video, anonymised references
    L4  + contact details

Upgrades are validated against the prerequisites for the target level
and applied as a single compare-and-set on the grant.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ...context import EngineContext
from ...errors import PermissionDenied, PlacementGuardError, ValidationError
from ...models.db_models import (
    AccessGrantDB,
    ActivityAction,
    CommitmentType,
    PaymentStatus,
    project_restrictions,
)
from ...models.profiles import CandidateProfile, SalaryRange
from ..detection import PatternDetector
from .access_ledger import AccessLedger, MAX_LEVEL, MIN_LEVEL

logger = logging.getLogger(__name__)


# =============================================================================
# DISCLOSURE CONFIGURATION
# =============================================================================

REQUIREMENT_AGREEMENT = "employer_agreement_signature"
REQUIREMENT_PAYMENT = "payment_or_subscription"
REQUIREMENT_COMMITMENT = "success_fee_commitment"

REGION_MAP = {
    "London": "Greater London",
    "Manchester": "North West England",
    "Birmingham": "West Midlands",
    "Glasgow": "Scotland",
    "Cardiff": "Wales",
    "Belfast": "Northern Ireland",
}
DEFAULT_REGION = "United Kingdom"

BIO_PREVIEW_LENGTH = 200
SALARY_BUCKET = 2000
AGE_BAND_YEARS = 5
VIDEO_PREVIEW_SECONDS = 30

ActivitySink = Callable[[str, str, str, Optional[Dict[str, Any]]], Any]


@dataclass
class StagedProfile:
    level: int
    view: Dict[str, Any]
    restrictions: Dict[str, bool]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "view": self.view,
            "restrictions": self.restrictions,
        }


@dataclass
class UpgradeCheck:
    allowed: bool
    missing: List[str] = field(default_factory=list)


# =============================================================================
# FIELD TRANSFORMS
# =============================================================================

def region_for_city(city: Optional[str]) -> str:
    return REGION_MAP.get(city or "", DEFAULT_REGION)


def truncate_text(text: str, max_length: int = BIO_PREVIEW_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def age_on(date_of_birth: Optional[date], today: date) -> Optional[int]:
    if date_of_birth is None:
        return None
    age = today.year - date_of_birth.year
    if (today.month, today.day) < (date_of_birth.month, date_of_birth.day):
        age -= 1
    return age


def approximate_age(date_of_birth: Optional[date], today: date) -> Optional[str]:
    """Five-year band, e.g. "20-24"."""
    age = age_on(date_of_birth, today)
    if age is None:
        return None
    low = (age // AGE_BAND_YEARS) * AGE_BAND_YEARS
    return f"{low}-{low + AGE_BAND_YEARS - 1}"


def format_salary_range(salary_range: Optional[SalaryRange]) -> str:
    """Round outward to the salary bucket so the exact expectation is hidden."""
    if salary_range is None:
        return "Not specified"
    low = int(math.floor(salary_range.min / SALARY_BUCKET) * SALARY_BUCKET)
    high = int(math.ceil(salary_range.max / SALARY_BUCKET) * SALARY_BUCKET)
    return f"£{low:,} - £{high:,}"


def watermark_url(url: str, employer_id: str) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}watermark={employer_id}&access=limited"


def restriction_labels(level: int) -> List[str]:
    labels = ["no_external_contact", "platform_messaging_only"]
    if level < 2:
        labels.append("limited_profile_info")
    if level < 3:
        labels.extend(["no_portfolio_access", "no_video_profile"])
    if level < 4:
        labels.extend(["no_contact_details", "watermarked_content"])
    return labels


def extract_achievements(profile: CandidateProfile) -> List[str]:
    achievements = [
        f"{edu.grade} in {edu.degree}"
        for edu in profile.education
        if edu.grade and edu.grade != "N/A"
    ]
    achievements.extend(profile.achievements)
    return achievements


# =============================================================================
# DISCLOSURE SERVICE
# =============================================================================

class DisclosureService:
    """
    Staged candidate views and upgrade validation.

    Views are recorded through `activity_sink`. The default sink writes
    straight to the ledger; the HTTP layer passes the ActivityMonitor so
    pattern rules run on every view.
    """

    def __init__(self, ctx: EngineContext, ledger: Optional[AccessLedger] = None,
                 activity_sink: Optional[ActivitySink] = None,
                 detector: Optional[PatternDetector] = None):
        self.ctx = ctx
        self.db = ctx.db
        self.ledger = ledger or AccessLedger(ctx)
        self.activity_sink = activity_sink or self.ledger.record_activity
        self.detector = detector or PatternDetector()

    # =========================================================================
    # STAGED PROFILE
    # =========================================================================

    def get_staged_profile(
        self,
        employer_id: str,
        candidate_id: str,
        full_profile: CandidateProfile,
    ) -> StagedProfile:
        grant = self.ledger.get_grant(employer_id, candidate_id)
        level = grant.level if grant else MIN_LEVEL
        suspicious = bool(grant and grant.suspicious_activity)
        restrictions = project_restrictions(level, suspicious)

        # A suspicious grant keeps its level but sees only the basic tier
        visible_level = MIN_LEVEL if suspicious else level
        view = self._build_view(employer_id, candidate_id, full_profile, visible_level, grant)

        action = ActivityAction.CONTACT_ACCESSED if "contact_info" in view else ActivityAction.PROFILE_VIEWED
        self._record_view(employer_id, candidate_id, action, level)

        return StagedProfile(level=level, view=view, restrictions=restrictions)

    def _build_view(
        self,
        employer_id: str,
        candidate_id: str,
        profile: CandidateProfile,
        level: int,
        grant: Optional[AccessGrantDB],
    ) -> Dict[str, Any]:
        today = self.ctx.now().date()
        view: Dict[str, Any] = {
            "candidate_id": candidate_id,
            "access_metadata": {
                "access_level": level,
                "granted_at": grant.level_granted_at.isoformat() if grant and grant.level_granted_at else None,
                "employer_id": employer_id,
                "restrictions": restriction_labels(level),
                "watermarked": level < MAX_LEVEL,
            },
        }

        view["basic_info"] = {
            "first_name": profile.first_name or "Anonymous",
            "last_initial": f"{profile.last_name[0]}." if profile.last_name else None,
            "approximate_age": approximate_age(profile.date_of_birth, today),
            "location": {
                "city": profile.location.city or "Not specified",
                "region": region_for_city(profile.location.city),
            },
            "profile_summary": truncate_text(self._scrub(profile.bio, level)),
            "industry_interests": list(profile.industry_interests),
        }

        if level >= 2:
            view["skills_info"] = {
                "skills": list(profile.skills),
                "education": [edu.model_dump() for edu in profile.education],
                "certifications": list(profile.certifications),
                "work_preferences": {
                    "work_type": profile.work_type or "Not specified",
                    "salary_range": format_salary_range(profile.salary_range),
                    "industries": list(profile.industry_interests),
                },
                "career_goals": self._scrub(profile.career_goals, level),
            }

        if level >= 3:
            video = None
            if profile.video_profile is not None:
                video = {
                    "url": watermark_url(profile.video_profile.url, employer_id),
                    "duration": min(profile.video_profile.duration, VIDEO_PREVIEW_SECONDS),
                }
            view["portfolio_info"] = {
                "work_samples": [s.model_dump() for s in profile.work_samples],
                "achievements": extract_achievements(profile),
                "video_profile": video,
                "references": [
                    {"relationship": ref.relationship, "text": self._scrub(ref.text, level)}
                    for ref in profile.references
                ],
            }

        if level >= 4:
            address_parts = [profile.location.street, profile.location.city, profile.location.postcode]
            view["contact_info"] = {
                "email": profile.email,
                "phone": profile.phone,
                "full_address": ", ".join(p for p in address_parts if p),
            }

        return view

    def _scrub(self, text: str, level: int) -> str:
        """Contact details in free text stay hidden until the contact tier."""
        if not text or level >= MAX_LEVEL:
            return text
        return self.detector.redact(text, self.detector.classify(text))

    def _record_view(self, employer_id: str, candidate_id: str, action: ActivityAction, level: int) -> None:
        """Best-effort. A failed write never blocks the read."""
        try:
            self.activity_sink(employer_id, candidate_id, action.value, {"access_level": level})
            self.db.commit()
        except (SQLAlchemyError, PlacementGuardError) as e:
            self.db.rollback()
            logger.error(f"Failed to record {action.value} for {employer_id}->{candidate_id}: {e}")

    # =========================================================================
    # UPGRADES
    # =========================================================================

    @staticmethod
    def _validate_level(target_level) -> int:
        if isinstance(target_level, bool) or not isinstance(target_level, int):
            raise ValidationError(f"Access level must be an integer, got {target_level!r}")
        if target_level < MIN_LEVEL or target_level > MAX_LEVEL:
            raise ValidationError(f"Access level must be between {MIN_LEVEL} and {MAX_LEVEL}")
        return target_level

    @staticmethod
    def missing_requirements(grant: Optional[AccessGrantDB], target_level: int) -> List[str]:
        agreement_signed = bool(grant and grant.agreement_signed)
        payment_status = grant.payment_status if grant else PaymentStatus.NONE
        commitment_type = grant.commitment_type if grant else CommitmentType.NONE

        missing = []
        if target_level >= 2 and not agreement_signed:
            missing.append(REQUIREMENT_AGREEMENT)
        if target_level >= 3 and payment_status == PaymentStatus.NONE:
            missing.append(REQUIREMENT_PAYMENT)
        if target_level >= 4 and commitment_type == CommitmentType.NONE:
            missing.append(REQUIREMENT_COMMITMENT)
        return missing

    def can_upgrade_access(self, employer_id: str, candidate_id: str, target_level: int) -> UpgradeCheck:
        target_level = self._validate_level(target_level)
        grant = self.ledger.get_grant(employer_id, candidate_id)
        missing = self.missing_requirements(grant, target_level)
        return UpgradeCheck(allowed=not missing, missing=missing)

    def request_upgrade(
        self,
        employer_id: str,
        candidate_id: str,
        target_level: int,
        commitment: Optional[CommitmentType] = None,
        payment_reference: Optional[str] = None,
    ) -> int:
        """
        Raise the pair's level to `target_level`.

        Returns the resulting level. A target at or below the current
        level is a no-op. Raises PermissionDenied listing every unmet
        requirement; nothing is written in that case.
        """
        target_level = self._validate_level(target_level)

        try:
            if commitment is not None:
                self.ledger.accept_commitment(employer_id, candidate_id, commitment)

            current = self.ledger.current_level(employer_id, candidate_id)
            if target_level <= current:
                self.db.commit()
                return current

            now = self.ctx.now()
            result = {}

            def upgrade(grant: AccessGrantDB) -> None:
                result["from_level"] = grant.level
                if target_level <= grant.level:
                    return
                missing = self.missing_requirements(grant, target_level)
                if missing:
                    raise PermissionDenied(missing, target_level)
                grant.level = target_level
                grant.level_granted_at = now

            grant = self.ledger.mutate(employer_id, candidate_id, upgrade)
            if grant.level == target_level and result["from_level"] < target_level:
                self.ledger.append_event(
                    employer_id, candidate_id, ActivityAction.ACCESS_UPGRADED,
                    level=target_level,
                    metadata={
                        "from_level": result["from_level"],
                        "commitment_type": grant.commitment_type.value,
                        "payment_reference": payment_reference,
                    },
                    occurred_at=now,
                )
                logger.info(f"Access {employer_id}->{candidate_id} upgraded {result['from_level']} -> {target_level}")
            self.db.commit()
            return grant.level
        except Exception:
            self.db.rollback()
            raise

    # =========================================================================
    # SUMMARY
    # =========================================================================

    def get_access_summary(self, employer_id: str, candidate_id: str) -> Dict[str, Any]:
        grant = self.ledger.get_grant(employer_id, candidate_id)
        level = grant.level if grant else MIN_LEVEL
        next_level = level + 1 if level < MAX_LEVEL else None
        missing = self.missing_requirements(grant, next_level) if next_level else []

        return {
            "candidate_id": candidate_id,
            "current_level": level,
            "max_level": MAX_LEVEL,
            "next_level": next_level,
            "can_upgrade": next_level is not None and not missing,
            "missing_requirements": missing,
            "agreement_signed": bool(grant and grant.agreement_signed),
            "payment_status": (grant.payment_status if grant else PaymentStatus.NONE).value,
            "commitment_type": (grant.commitment_type if grant else CommitmentType.NONE).value,
            "restrictions": project_restrictions(level, bool(grant and grant.suspicious_activity)),
        }
