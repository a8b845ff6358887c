"""
Alert API Routes

Admin-only views over the alert log and the monitoring report.
"""
from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..auth import Principal, require_admin
from ..context import EngineContext
from ..dependencies import get_context, raise_http
from ..errors import PlacementGuardError
from ..services.alerts import AlertEngine, alert_to_dict
from ..services.monitoring import ActivityMonitor


router = APIRouter(prefix="/alerts", tags=["alerts"])


class ResolveAlertRequest(BaseModel):
    resolution_note: str = Field(..., description="What was done about the alert")


@router.get("", response_model=dict)
async def list_active_alerts(
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    """Pending, acknowledged and escalated alerts, newest first."""
    alerts = AlertEngine(ctx).list_active_alerts()
    return {"count": len(alerts), "alerts": [alert_to_dict(a) for a in alerts]}


@router.get("/stats", response_model=dict)
async def get_alert_stats(
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return AlertEngine(ctx).alert_stats()


@router.get("/monitoring-report", response_model=dict)
async def get_monitoring_report(
    hours: int = Query(24, ge=1, le=24 * 30, description="Report window in hours"),
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    return ActivityMonitor(ctx).generate_monitoring_report(timedelta(hours=hours))


@router.get("/employers/{employer_id}", response_model=dict)
async def get_employer_alerts(
    employer_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    alerts = AlertEngine(ctx).get_alerts_by_employer(employer_id)
    return {"employer_id": employer_id, "alerts": [alert_to_dict(a) for a in alerts]}


@router.get("/{alert_id}", response_model=dict)
async def get_alert(
    alert_id: str,
    ctx: EngineContext = Depends(get_context),
    _: Principal = Depends(require_admin),
):
    try:
        return alert_to_dict(AlertEngine(ctx).get_alert(alert_id))
    except PlacementGuardError as e:
        raise_http(e)


@router.post("/{alert_id}/acknowledge", response_model=dict)
async def acknowledge_alert(
    alert_id: str,
    ctx: EngineContext = Depends(get_context),
    admin: Principal = Depends(require_admin),
):
    try:
        alert = AlertEngine(ctx).acknowledge_alert(alert_id, admin.id)
    except PlacementGuardError as e:
        raise_http(e)
    return alert_to_dict(alert)


@router.post("/{alert_id}/resolve", response_model=dict)
async def resolve_alert(
    alert_id: str,
    request: ResolveAlertRequest,
    ctx: EngineContext = Depends(get_context),
    admin: Principal = Depends(require_admin),
):
    try:
        alert = AlertEngine(ctx).resolve_alert(alert_id, admin.id, request.resolution_note)
    except PlacementGuardError as e:
        raise_http(e)
    return alert_to_dict(alert)
