"""
Enforcement API Routes

Admin endpoints over success fees and bypass penalties.
"""
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import Principal, require_admin
from ..context import EngineContext
from ..dependencies import get_context, raise_http
from ..errors import PlacementGuardError
from ..models.db_models import HireSource
from ..services.enforcement import EnforcementLedger, record_to_dict


router = APIRouter(prefix="/enforcement", tags=["enforcement"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class RecordHireRequest(BaseModel):
    """Confirmed hire, from the employer or from an external report."""
    employer_id: str = Field(..., description="Hiring employer")
    candidate_id: str = Field(..., description="Hired candidate")
    salary: float = Field(..., description="First-year salary")
    hire_date: datetime = Field(..., description="Start date of the hire")
    source: HireSource = Field(default=HireSource.PLATFORM, description="How the hire was made")
    job_title: Optional[str] = Field(None, description="Role title")


class MarkPaidRequest(BaseModel):
    payment_reference: Optional[str] = Field(None, description="Billing reference")


class DisputeRequest(BaseModel):
    reason: str = Field(..., description="Employer's grounds for disputing the fee")


class EvidenceRequest(BaseModel):
    evidence_type: str = Field(..., description="employee_confirmation, payroll_records, contract_upload or external_report")
    document_url: Optional[str] = Field(None, description="Location of the uploaded document")


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _apply(ctx: EngineContext, operation) -> dict:
    """Run one ledger operation and commit, translating engine errors."""
    try:
        record = operation(EnforcementLedger(ctx))
        ctx.db.commit()
    except PlacementGuardError as e:
        ctx.db.rollback()
        raise_http(e)
    return record_to_dict(record)


# =============================================================================
# ADMIN ENDPOINTS
# =============================================================================

@router.get("/overdue", response_model=dict)
async def get_overdue_fees(
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    """Unpaid records past their due date."""
    records = EnforcementLedger(ctx).get_overdue_fees()
    return {"count": len(records), "records": [record_to_dict(r) for r in records]}


@router.post("/hires", response_model=dict)
async def record_hire(
    request: RecordHireRequest,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    """
    Bill a confirmed hire.

    Returns an empty list when the hire falls outside the exclusive period.
    """
    try:
        records = EnforcementLedger(ctx).record_hire(
            request.employer_id,
            request.candidate_id,
            request.salary,
            _naive_utc(request.hire_date),
            source=request.source,
            job_title=request.job_title,
        )
        ctx.db.commit()
    except PlacementGuardError as e:
        ctx.db.rollback()
        raise_http(e)

    return {"count": len(records), "records": [record_to_dict(r) for r in records]}


@router.get("/employers/{employer_id}", response_model=dict)
async def get_employer_records(
    employer_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    ledger = EnforcementLedger(ctx)
    return {
        "records": [record_to_dict(r) for r in ledger.get_records_for_employer(employer_id)],
        "totals": ledger.calculate_total_owed(employer_id),
    }


@router.get("/{record_id}", response_model=dict)
async def get_record(
    record_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    try:
        return record_to_dict(EnforcementLedger(ctx).get_record(record_id))
    except PlacementGuardError as e:
        raise_http(e)


@router.post("/{record_id}/paid", response_model=dict)
async def mark_paid(
    record_id: str,
    request: MarkPaidRequest,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return _apply(ctx, lambda ledger: ledger.mark_paid(record_id, request.payment_reference))


@router.post("/{record_id}/dispute", response_model=dict)
async def raise_dispute(
    record_id: str,
    request: DisputeRequest,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return _apply(ctx, lambda ledger: ledger.raise_dispute(record_id, request.reason))


@router.post("/{record_id}/waive", response_model=dict)
async def waive(
    record_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return _apply(ctx, lambda ledger: ledger.waive(record_id))


@router.post("/{record_id}/refund", response_model=dict)
async def refund(
    record_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return _apply(ctx, lambda ledger: ledger.refund(record_id))


@router.post("/{record_id}/evidence", response_model=dict)
async def add_evidence(
    record_id: str,
    request: EvidenceRequest,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return _apply(
        ctx, lambda ledger: ledger.add_evidence(record_id, request.evidence_type, request.document_url)
    )
