"""
Access API Routes

Staged candidate profiles, access levels and the commercial steps that
unlock them. Every route acts for the authenticated employer, except
report-suspicious which is filed by the candidate.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..auth import Principal, require_candidate, require_employer
from ..context import EngineContext
from ..dependencies import get_context, get_profile_store, raise_http
from ..errors import PlacementGuardError
from ..models.db_models import CommitmentType, PaymentStatus
from ..models.profiles import CandidateProfile
from ..services.access import AccessLedger, DisclosureService
from ..services.monitoring import ActivityMonitor
from ..services.profile_store import ProfileStore


router = APIRouter(prefix="/access/candidates", tags=["access"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class UpgradeRequest(BaseModel):
    """Request to raise the access level for one candidate."""
    target_level: int = Field(..., description="Requested level, 1-4")
    commitment: Optional[CommitmentType] = Field(None, description="Commitment accepted with this request")
    payment_reference: Optional[str] = Field(None, description="Reference of the payment backing the upgrade")


class PaymentRequest(BaseModel):
    """Payment standing reported by the billing service."""
    status: PaymentStatus = Field(..., description="Payment status for this candidate")
    reference: Optional[str] = Field(None, description="Billing reference")


class TrackInteractionRequest(BaseModel):
    action: str = Field(..., description="Activity action, e.g. PROFILE_VIEWED")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form event details")


class ReportRequest(BaseModel):
    """Candidate report against an employer."""
    employer_id: str = Field(..., description="Employer being reported")
    reason: str = Field(..., description="What happened")
    evidence: Optional[Dict[str, Any]] = Field(None, description="Screenshots, message ids, etc.")


def _disclosure(ctx: EngineContext) -> DisclosureService:
    monitor = ActivityMonitor(ctx)
    return DisclosureService(ctx, ledger=monitor.ledger, activity_sink=monitor.track_activity)


# =============================================================================
# EMPLOYER ENDPOINTS
# =============================================================================

@router.get("/{candidate_id}/profile", response_model=dict)
async def get_candidate_profile(
    candidate_id: str,
    ctx: EngineContext = Depends(get_context),
    profiles: ProfileStore = Depends(get_profile_store),
    principal: Principal = Depends(require_employer),
):
    """Candidate profile as visible at the employer's current level."""
    try:
        profile = profiles.get(candidate_id)
    except PlacementGuardError as e:
        raise_http(e)
    if profile is None:
        raise HTTPException(status_code=404, detail="Candidate not found")

    staged = _disclosure(ctx).get_staged_profile(principal.id, candidate_id, profile)
    return staged.to_dict()


@router.post("/{candidate_id}/profile", response_model=dict)
async def stage_candidate_profile(
    candidate_id: str,
    profile: CandidateProfile,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    """
    Stage a profile supplied by the caller.

    Used by front ends that already hold the full profile from the
    profile service.
    """
    if profile.candidate_id != candidate_id:
        raise HTTPException(status_code=400, detail="Profile does not match candidate id")

    staged = _disclosure(ctx).get_staged_profile(principal.id, candidate_id, profile)
    return staged.to_dict()


@router.get("/{candidate_id}/access-level", response_model=dict)
async def get_access_level(
    candidate_id: str,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    return DisclosureService(ctx).get_access_summary(principal.id, candidate_id)


@router.post("/{candidate_id}/request-upgrade", response_model=dict)
async def request_upgrade(
    candidate_id: str,
    request: UpgradeRequest,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    """
    Raise the access level.

    Returns 403 with the list of missing requirements when the
    prerequisites for the target level are not met.
    """
    service = DisclosureService(ctx)
    try:
        level = service.request_upgrade(
            principal.id, candidate_id, request.target_level,
            commitment=request.commitment,
            payment_reference=request.payment_reference,
        )
    except PlacementGuardError as e:
        raise_http(e)

    return {
        "candidate_id": candidate_id,
        "access_level": level,
        "summary": service.get_access_summary(principal.id, candidate_id),
    }


@router.post("/{candidate_id}/agreement", response_model=dict)
async def sign_agreement(
    candidate_id: str,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    try:
        grant = AccessLedger(ctx).sign_agreement(principal.id, candidate_id)
        ctx.db.commit()
    except PlacementGuardError as e:
        ctx.db.rollback()
        raise_http(e)

    return {
        "candidate_id": candidate_id,
        "agreement_signed": grant.agreement_signed,
        "agreement_signed_at": grant.agreement_signed_at.isoformat(),
    }


@router.post("/{candidate_id}/payment", response_model=dict)
async def record_payment(
    candidate_id: str,
    request: PaymentRequest,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    try:
        grant = AccessLedger(ctx).record_payment(
            principal.id, candidate_id, request.status, request.reference
        )
        ctx.db.commit()
    except PlacementGuardError as e:
        ctx.db.rollback()
        raise_http(e)

    return {
        "candidate_id": candidate_id,
        "payment_status": grant.payment_status.value,
        "payment_reference": grant.payment_reference,
    }


@router.post("/{candidate_id}/track-interaction", response_model=dict)
async def track_interaction(
    candidate_id: str,
    request: TrackInteractionRequest,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_employer),
):
    """Fire-and-forget. A tracking failure is logged, never returned as an error."""
    event = ActivityMonitor(ctx).track_activity(
        principal.id, candidate_id, request.action, request.metadata
    )
    return {"tracked": event is not None}


# =============================================================================
# CANDIDATE ENDPOINTS
# =============================================================================

@router.post("/{candidate_id}/report-suspicious", response_model=dict)
async def report_suspicious(
    candidate_id: str,
    request: ReportRequest,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_candidate),
):
    if principal.id != candidate_id:
        raise HTTPException(status_code=403, detail="Candidates can only report on their own behalf")

    try:
        return ActivityMonitor(ctx).report_suspicious(
            candidate_id, request.employer_id, request.reason, request.evidence
        )
    except PlacementGuardError as e:
        raise_http(e)
