"""
Tracking webhook - invite email opens, proposal views and portal sign-ups.
Each first occurrence is stored and the deal is rescored in the background.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.api.auth import verify_webhook_token
from portalscore.database import get_db
from portalscore.schemas.requests import TrackingEventPayload
from portalscore.services.deal_events import INVITE_MILESTONES, record_invite_milestone
from portalscore.services.errors import NotFoundError
from portalscore.services.recalculate import trigger_recalculation

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/tracking")
async def tracking_webhook(
    payload: TrackingEventPayload,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Always 200 for handled events, including repeats and unknown invites."""
    if not verify_webhook_token(request):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    try:
        recommendation_id = await record_invite_milestone(
            db, payload.invite_id, payload.event, payload.occurred_at,
        )
    except NotFoundError:
        logger.warning("Tracking event %s for unknown invite %s", payload.event, payload.invite_id)
        return {"status": "ignored", "reason": "invite_not_found"}

    if recommendation_id is None:
        return {"status": "duplicate"}

    _, trigger_source = INVITE_MILESTONES[payload.event]
    trigger_recalculation(recommendation_id, trigger_source)
    return {"status": "accepted", "recommendation_id": str(recommendation_id)}
