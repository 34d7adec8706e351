"""
Admin pipeline API - deal facts, lifecycle actions, score history, the deal
list, archive analytics and the revenue summary. All endpoints require X-Admin-Key.
"""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.api.auth import require_admin_key
from portalscore.database import get_db
from portalscore.schemas.requests import (
    ArchiveRequest,
    CallScoreRequest,
    CommunicationRequest,
    InviteRequest,
    SnoozeRequest,
    StatusChangeRequest,
)
from portalscore.services import deal_events
from portalscore.services.batch_recalculate import (
    RunType,
    log_scoring_run,
    recalculate_all_active_deals,
)
from portalscore.services.errors import DealStateError, NotFoundError
from portalscore.services.pipeline_data import get_archive_analytics, get_pipeline_data
from portalscore.services.pipeline_revenue import get_pipeline_revenue_summary
from portalscore.services.recalculate import TriggerSource, as_uuid, recalculate_score
from portalscore.services.score_audit import get_score_audit, get_score_history
from portalscore.services.scoring_config import load_scoring_config, save_scoring_config

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin-pipeline"],
    dependencies=[Depends(require_admin_key)],
)


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (DealStateError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=f"Recalculation failed: {e}")


def _parse_id(recommendation_id: str):
    rec_uuid = as_uuid(recommendation_id)
    if rec_uuid is None:
        raise HTTPException(status_code=400, detail="Invalid recommendation ID")
    return rec_uuid


# === CALL SCORES ===

@router.get("/recommendations/{recommendation_id}/call-scores")
async def get_call_scores(
    recommendation_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        call_score = await deal_events.get_call_score(db, _parse_id(recommendation_id))
    except NotFoundError as e:
        raise _http_error(e)
    return {"call_score": call_score}


@router.post("/recommendations/{recommendation_id}/call-scores")
async def save_call_scores(
    recommendation_id: str,
    payload: CallScoreRequest,
    db: AsyncSession = Depends(get_db),
):
    """Create or replace the sales rep's call assessment, then rescore."""
    try:
        return await deal_events.upsert_call_score(
            db,
            _parse_id(recommendation_id),
            payload.model_dump(exclude={"created_by"}),
            created_by=payload.created_by,
        )
    except NotFoundError as e:
        raise _http_error(e)


# === COMMUNICATIONS ===

@router.post("/recommendations/{recommendation_id}/communications")
async def add_communication(
    recommendation_id: str,
    payload: CommunicationRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await deal_events.log_communication(
            db,
            _parse_id(recommendation_id),
            direction=payload.direction,
            contact_at=payload.contact_at,
            channel=payload.channel,
            source=payload.source,
            notes=payload.notes,
            external_message_id=payload.external_message_id,
        )
    except NotFoundError as e:
        raise _http_error(e)


# === INVITES ===

@router.post("/recommendations/{recommendation_id}/invites")
async def send_invite(
    recommendation_id: str,
    payload: InviteRequest,
    db: AsyncSession = Depends(get_db),
):
    """Record a portal invite. A draft deal becomes sent and is rescored."""
    try:
        return await deal_events.record_invite_sent(
            db, _parse_id(recommendation_id), payload.email, sent_at=payload.sent_at,
        )
    except NotFoundError as e:
        raise _http_error(e)


# === LIFECYCLE ===

@router.post("/recommendations/{recommendation_id}/status")
async def change_status(
    recommendation_id: str,
    payload: StatusChangeRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await deal_events.update_deal_status(
            db, _parse_id(recommendation_id), payload.status, reason=payload.reason,
        )
    except (NotFoundError, DealStateError) as e:
        raise _http_error(e)


@router.post("/recommendations/{recommendation_id}/archive")
async def archive_recommendation(
    recommendation_id: str,
    payload: ArchiveRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await deal_events.archive_deal(
            db,
            _parse_id(recommendation_id),
            reason=payload.reason,
            notes=payload.notes,
            performed_by=payload.performed_by,
        )
    except (NotFoundError, DealStateError) as e:
        raise _http_error(e)


@router.delete("/recommendations/{recommendation_id}/archive")
async def revive_recommendation(
    recommendation_id: str,
    reset_metrics: bool = Query(default=True),
    performed_by: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    """Revive an archived deal. Succeeds even if the follow-up rescore fails."""
    try:
        return await deal_events.revive_deal(
            db,
            _parse_id(recommendation_id),
            performed_by=performed_by,
            reset_metrics=reset_metrics,
        )
    except (NotFoundError, DealStateError) as e:
        raise _http_error(e)


@router.post("/recommendations/{recommendation_id}/snooze")
async def snooze_recommendation(
    recommendation_id: str,
    payload: SnoozeRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await deal_events.snooze_deal(
            db,
            _parse_id(recommendation_id),
            snoozed_until=payload.snoozed_until,
            reason=payload.reason,
            created_by=payload.created_by,
        )
    except (NotFoundError, DealStateError) as e:
        raise _http_error(e)


@router.delete("/recommendations/{recommendation_id}/snooze")
async def unsnooze_recommendation(
    recommendation_id: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await deal_events.unsnooze_deal(db, _parse_id(recommendation_id))
    except NotFoundError as e:
        raise _http_error(e)


# === SCORES ===

@router.get("/recommendations/{recommendation_id}/score-history")
async def score_history(
    recommendation_id: str,
    db: AsyncSession = Depends(get_db),
):
    rec_uuid = _parse_id(recommendation_id)
    try:
        await deal_events.get_recommendation(db, rec_uuid)
    except NotFoundError as e:
        raise _http_error(e)
    return {"history": await get_score_history(db, rec_uuid)}


@router.get("/recommendations/{recommendation_id}/score-audit")
async def score_audit(
    recommendation_id: str,
    db: AsyncSession = Depends(get_db),
):
    rec_uuid = _parse_id(recommendation_id)
    try:
        await deal_events.get_recommendation(db, rec_uuid)
    except NotFoundError as e:
        raise _http_error(e)
    return {"audit": await get_score_audit(db, rec_uuid)}


@router.post("/recommendations/{recommendation_id}/recalculate")
async def recalculate_recommendation(
    recommendation_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Manual rescore. Unlike event-driven rescoring, failures surface to the caller."""
    rec_uuid = _parse_id(recommendation_id)
    try:
        await deal_events.get_recommendation(db, rec_uuid)
        result = await recalculate_score(db, rec_uuid, TriggerSource.MANUAL_REFRESH)
    except NotFoundError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Manual recalculation failed for %s: %s", recommendation_id, str(e), exc_info=True)
        raise _http_error(e)

    return {
        "recalculated": result is not None,
        "score": result.model_dump() if result else None,
    }


# === PIPELINE ===

@router.get("/pipeline/summary")
async def pipeline_summary(
    current_mrr: float = Query(default=0.0, ge=0),
    active_clients: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    return await get_pipeline_revenue_summary(db, current_mrr, active_clients)


@router.get("/pipeline/deals")
async def pipeline_deals(
    archived: str = Query(default="active", pattern="^(active|archived|all)$"),
    rep_id: Optional[str] = Query(default=None),
    predicted_tier: Optional[str] = Query(default=None, pattern="^(good|better|best)$"),
    sent_after: Optional[datetime] = Query(default=None),
    sent_before: Optional[datetime] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Deal list with weighted and raw revenue totals."""
    try:
        return await get_pipeline_data(
            db,
            archived=archived,
            rep_id=rep_id,
            predicted_tier=predicted_tier,
            sent_after=sent_after,
            sent_before=sent_before,
        )
    except ValueError as e:
        raise _http_error(e)


@router.get("/pipeline/archive-analytics")
async def archive_analytics(
    archived_after: Optional[datetime] = Query(default=None),
    archived_before: Optional[datetime] = Query(default=None),
    rep_id: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await get_archive_analytics(
        db, archived_after=archived_after, archived_before=archived_before, rep_id=rep_id,
    )


@router.post("/pipeline/refresh-scores")
async def refresh_pipeline_scores():
    """Recalculate every active deal now."""
    result = await recalculate_all_active_deals(TriggerSource.MANUAL_REFRESH)
    await log_scoring_run(RunType.MANUAL, result)
    return result.model_dump()


# === SCORING CONFIG ===

@router.get("/pipeline/scoring-config")
async def get_scoring_config(db: AsyncSession = Depends(get_db)):
    config = await load_scoring_config(db)
    return config.model_dump()


@router.put("/pipeline/scoring-config")
async def update_scoring_config(
    payload: dict = Body(...),
    db: AsyncSession = Depends(get_db),
):
    """Store a full or partial config. Existing scores change on the next refresh."""
    try:
        config = await save_scoring_config(db, payload)
    except ValueError as e:
        raise _http_error(e)
    return config.model_dump()
