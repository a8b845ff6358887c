"""
Scheduler API Routes

Internal endpoints for system-automatic tasks: cadence sweeps
(hourly activity patterns, daily overdue payments, weekly compliance)
and alert escalation.
"""
from fastapi import APIRouter, Depends, HTTPException, Header

from ..config import Settings
from ..context import EngineContext
from ..dependencies import get_context, get_settings
from ..models.db_models import AlertTrigger
from ..services.alerts import AlertEngine, AlertScheduler, SWEEP_INTERVALS


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(
    x_internal_key: str = Header(...),
    settings: Settings = Depends(get_settings),
):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != settings.internal_api_key:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


def _scheduler(ctx: EngineContext) -> AlertScheduler:
    return AlertScheduler(lambda: AlertEngine(ctx), ctx.clock)


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/sweep/{trigger}", response_model=dict)
async def run_sweep(
    trigger: AlertTrigger,
    ctx: EngineContext = Depends(get_context),
    _: bool = Depends(verify_internal_key),
):
    """
    Run one cadence sweep now, whether or not it is due.

    System-automatic - no user confirmation required.
    """
    if trigger not in SWEEP_INTERVALS:
        raise HTTPException(status_code=400, detail=f"{trigger.value} is not a scheduled trigger")

    return _scheduler(ctx).run_trigger(trigger)


@router.post("/tick", response_model=dict)
async def run_tick(
    ctx: EngineContext = Depends(get_context),
    _: bool = Depends(verify_internal_key),
):
    """
    Run every sweep that is due, then escalate stale critical alerts.

    Safe to call as often as the cron likes; last-run times are stored.
    """
    return _scheduler(ctx).tick()
