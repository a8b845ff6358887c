"""
Messaging API Routes

Classification preview and gated message delivery.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..auth import Principal, get_current_principal, require_role
from ..context import EngineContext
from ..dependencies import get_context
from ..services.detection import PatternDetector
from ..services.monitoring import ActivityMonitor


router = APIRouter(tags=["messages"])


class ClassifyRequest(BaseModel):
    text: str = Field(..., description="Message text to classify")


class SendMessageRequest(BaseModel):
    """Outgoing platform message."""
    content: str = Field(..., description="Message body")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Thread id, attachments, etc.")


@router.post("/moderation/classify", response_model=dict)
async def classify_text(
    request: ClassifyRequest,
    _: Principal = Depends(get_current_principal),
):
    """Classify text without recording anything."""
    return PatternDetector().classify(request.text).to_dict()


@router.post("/messages/{recipient_id}", response_model=dict)
async def send_message(
    recipient_id: str,
    request: SendMessageRequest,
    ctx: EngineContext = Depends(get_context),
    principal: Principal = Depends(require_role("employer", "candidate")),
):
    """
    Gate one message between an employer and a candidate.

    A blocked message comes back with delivered=false and no content.
    A redacted message is delivered in its redacted form only.
    """
    metadata = dict(request.metadata or {})
    metadata["sender_role"] = principal.role
    decision = ActivityMonitor(ctx).monitor_message(
        principal.id, recipient_id, request.content, metadata
    )
    return decision.to_dict()
