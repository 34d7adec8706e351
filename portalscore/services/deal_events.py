"""
Deal fact writers - every change to a scoring input goes through here and
schedules the matching recalculation.

Facts are committed before rescoring so a scoring failure never loses the
rep's input. Synchronous flows report a failed rescore in their return value;
tracking and lifecycle flows fire and forget.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.pipeline_history import PipelineArchiveHistory, PipelineSnoozeHistory
from portalscore.models.pipeline_score import PipelineScoreEvent
from portalscore.models.recommendation import (
    Recommendation,
    RecommendationCallScore,
    RecommendationCommunication,
    RecommendationInvite,
    SCOREABLE_STATUSES,
)
from portalscore.services.errors import DealStateError, NotFoundError
from portalscore.services.recalculate import (
    TriggerSource,
    as_uuid,
    recalculate_score,
    recalculate_with_retry,
    trigger_recalculation,
)
from portalscore.utils.scoring_math import ensure_utc, utcnow

logger = logging.getLogger(__name__)

ARCHIVE_REASONS = (
    "went_dark",
    "budget",
    "timing",
    "chose_competitor",
    "handling_in_house",
    "not_a_fit",
    "key_contact_left",
    "business_closed",
    "duplicate",
    "other",
)

INVITE_MILESTONES = {
    "email_opened": ("email_opened_at", TriggerSource.EMAIL_OPENED),
    "proposal_viewed": ("viewed_at", TriggerSource.PROPOSAL_VIEWED),
    "account_created": ("account_created_at", TriggerSource.ACCOUNT_CREATED),
}

# Fields cleared when a deal is revived with reset_metrics
SCORE_FIELDS = (
    "confidence_score",
    "confidence_percent",
    "weighted_monthly",
    "weighted_onetime",
    "base_score",
    "total_penalties",
    "total_bonus",
    "penalty_email_not_opened",
    "penalty_proposal_not_viewed",
    "penalty_silence",
    "last_scored_at",
)


async def get_recommendation(db: AsyncSession, recommendation_id) -> Recommendation:
    rec_uuid = as_uuid(recommendation_id)
    recommendation = await db.get(Recommendation, rec_uuid) if rec_uuid else None
    if recommendation is None:
        raise NotFoundError("Recommendation", str(recommendation_id))
    return recommendation


async def _rescore(db: AsyncSession, recommendation_id: uuid.UUID, trigger_source: str) -> dict:
    """Rescore in the caller's session after its facts are committed."""
    try:
        result = await recalculate_score(db, recommendation_id, trigger_source)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(
            "Rescore after %s failed for %s: %s", trigger_source, recommendation_id, str(e),
            exc_info=True,
            extra={"recommendation_id": str(recommendation_id), "trigger_source": trigger_source},
        )
        return {"score": None, "recalculation_error": str(e)}
    return {"score": result.model_dump() if result else None, "recalculation_error": None}


# === CALL SCORES ===

async def upsert_call_score(
    db: AsyncSession,
    recommendation_id,
    inputs: dict,
    created_by: Optional[str] = None,
) -> dict:
    recommendation = await get_recommendation(db, recommendation_id)

    call_score = (await db.execute(
        select(RecommendationCallScore).where(
            RecommendationCallScore.recommendation_id == recommendation.id
        )
    )).scalar_one_or_none()

    if call_score is None:
        call_score = RecommendationCallScore(recommendation_id=recommendation.id, created_by=created_by)
        db.add(call_score)

    for field in ("budget_clarity", "competition", "engagement", "plan_fit"):
        setattr(call_score, field, inputs.get(field))
    await db.commit()

    logger.info("Call score saved for %s", str(recommendation.id)[:8])
    return {
        "call_score": {
            "budget_clarity": call_score.budget_clarity,
            "competition": call_score.competition,
            "engagement": call_score.engagement,
            "plan_fit": call_score.plan_fit,
        },
        **await _rescore(db, recommendation.id, TriggerSource.CALL_SCORE_UPDATED),
    }


async def get_call_score(db: AsyncSession, recommendation_id) -> Optional[dict]:
    recommendation = await get_recommendation(db, recommendation_id)
    call_score = (await db.execute(
        select(RecommendationCallScore).where(
            RecommendationCallScore.recommendation_id == recommendation.id
        )
    )).scalar_one_or_none()
    if call_score is None:
        return None
    return {
        "budget_clarity": call_score.budget_clarity,
        "competition": call_score.competition,
        "engagement": call_score.engagement,
        "plan_fit": call_score.plan_fit,
        "created_by": call_score.created_by,
        "updated_at": call_score.updated_at.isoformat() if call_score.updated_at else None,
    }


# === COMMUNICATIONS ===

async def log_communication(
    db: AsyncSession,
    recommendation_id,
    direction: str,
    contact_at: datetime,
    channel: str = "email",
    source: str = "manual",
    notes: Optional[str] = None,
    external_message_id: Optional[str] = None,
) -> dict:
    recommendation = await get_recommendation(db, recommendation_id)

    if external_message_id:
        existing = (await db.execute(
            select(RecommendationCommunication.id).where(
                and_(
                    RecommendationCommunication.recommendation_id == recommendation.id,
                    RecommendationCommunication.external_message_id == external_message_id,
                )
            )
        )).scalar_one_or_none()
        if existing is not None:
            logger.info("Duplicate communication %s ignored", external_message_id)
            return {"duplicate": True, "communication_id": str(existing)}

    communication = RecommendationCommunication(
        recommendation_id=recommendation.id,
        direction=direction,
        channel=channel,
        contact_at=contact_at,
        source=source,
        notes=notes,
        external_message_id=external_message_id,
    )
    db.add(communication)
    await db.commit()

    trigger = (
        TriggerSource.HIGHLEVEL_SYNC if source == "highlevel_webhook"
        else TriggerSource.COMMUNICATION_LOGGED
    )
    return {
        "duplicate": False,
        "communication_id": str(communication.id),
        **await _rescore(db, recommendation.id, trigger),
    }


# === INVITES ===

async def record_invite_sent(
    db: AsyncSession,
    recommendation_id,
    email: str,
    sent_at: Optional[datetime] = None,
) -> dict:
    recommendation = await get_recommendation(db, recommendation_id)
    sent_at = sent_at or utcnow()

    invite = RecommendationInvite(recommendation_id=recommendation.id, email=email, sent_at=sent_at)
    db.add(invite)
    if recommendation.status == "draft":
        recommendation.status = "sent"
    if recommendation.sent_at is None:
        recommendation.sent_at = sent_at
    await db.commit()

    return {
        "invite_id": str(invite.id),
        **await _rescore(db, recommendation.id, TriggerSource.INVITE_SENT),
    }


async def record_invite_milestone(
    db: AsyncSession,
    invite_id,
    milestone: str,
    occurred_at: Optional[datetime] = None,
) -> Optional[uuid.UUID]:
    """
    Set a milestone timestamp if it is still empty and queue a rescore.
    Returns the recommendation id when the milestone was newly set,
    None when it was already recorded.
    """
    if milestone not in INVITE_MILESTONES:
        raise ValueError(f"Unknown invite milestone: {milestone}")
    column, trigger = INVITE_MILESTONES[milestone]

    invite_uuid = as_uuid(invite_id)
    invite = await db.get(RecommendationInvite, invite_uuid) if invite_uuid else None
    if invite is None:
        raise NotFoundError("Invite", str(invite_id))

    # Conditional update: first write wins even under concurrent webhooks
    result = await db.execute(
        update(RecommendationInvite)
        .where(
            and_(
                RecommendationInvite.id == invite.id,
                getattr(RecommendationInvite, column).is_(None),
            )
        )
        .values({column: occurred_at or utcnow()})
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount == 0:
        logger.debug("Invite %s already has %s", str(invite.id)[:8], column)
        return None

    db.add(PipelineScoreEvent(
        recommendation_id=invite.recommendation_id,
        event_type=trigger,
    ))
    await db.commit()
    logger.info("Invite %s: %s recorded", str(invite.id)[:8], milestone)
    return invite.recommendation_id


# === STATUS ===

async def update_deal_status(
    db: AsyncSession,
    recommendation_id,
    status: str,
    reason: Optional[str] = None,
) -> dict:
    recommendation = await get_recommendation(db, recommendation_id)
    now = utcnow()

    previous = recommendation.status
    recommendation.status = status
    if status == "sent" and recommendation.sent_at is None:
        recommendation.sent_at = now
    if status == "closed_lost":
        recommendation.closed_lost_at = now
        recommendation.closed_lost_reason = reason
    await db.commit()

    logger.info("Deal %s status %s -> %s", str(recommendation.id)[:8], previous, status)
    return {
        "status": status,
        "previous_status": previous,
        **await _rescore(db, recommendation.id, TriggerSource.STATUS_CHANGED),
    }


# === ARCHIVE / REVIVE ===

async def archive_deal(
    db: AsyncSession,
    recommendation_id,
    reason: str,
    notes: Optional[str] = None,
    performed_by: Optional[str] = None,
) -> dict:
    if reason not in ARCHIVE_REASONS:
        raise DealStateError(f"Invalid archive reason: {reason}")
    notes = (notes or "").strip() or None
    if reason == "other" and not notes:
        raise DealStateError("Notes are required when archive reason is 'other'")

    recommendation = await get_recommendation(db, recommendation_id)
    if recommendation.archived_at is not None:
        raise DealStateError("Deal is already archived", recommendation.status)
    if recommendation.is_terminal:
        raise DealStateError(
            f"Cannot archive a deal with status {recommendation.status}", recommendation.status,
        )

    now = utcnow()
    recommendation.archived_at = now
    recommendation.archive_reason = reason
    recommendation.archive_notes = notes
    db.add(PipelineArchiveHistory(
        recommendation_id=recommendation.id,
        action="archived",
        reason=reason,
        notes=notes,
        confidence_score_at_action=recommendation.confidence_score,
        performed_by=performed_by,
        created_at=now,
    ))
    await db.commit()

    trigger_recalculation(recommendation.id, TriggerSource.DEAL_ARCHIVED)
    logger.info("Deal %s archived (%s)", str(recommendation.id)[:8], reason)
    return {"archived": True, "archived_at": now.isoformat(), "reason": reason}


async def revive_deal(
    db: AsyncSession,
    recommendation_id,
    performed_by: Optional[str] = None,
    reset_metrics: bool = True,
) -> dict:
    """
    Bring an archived deal back. The scoring clock restarts at revived_at.
    Success is reported even if the immediate rescore fails twice; the
    daily sweep will pick the deal up because its score fields are empty.
    """
    recommendation = await get_recommendation(db, recommendation_id)
    if recommendation.archived_at is None:
        raise DealStateError("Deal is not archived", recommendation.status)

    now = utcnow()
    previous_score = recommendation.confidence_score
    recommendation.archived_at = None
    recommendation.archive_reason = None
    recommendation.archive_notes = None
    recommendation.revived_at = now

    if reset_metrics:
        for field in SCORE_FIELDS:
            setattr(recommendation, field, None)
        recommendation.snoozed_until = None
        recommendation.snoozed_at = None
        recommendation.snooze_reason = None

    db.add(PipelineArchiveHistory(
        recommendation_id=recommendation.id,
        action="revived",
        confidence_score_at_action=previous_score,
        performed_by=performed_by,
        created_at=now,
    ))
    await db.commit()

    result, error = await recalculate_with_retry(recommendation.id, TriggerSource.DEAL_REVIVED)
    logger.info(
        "Deal %s revived (reset_metrics=%s, rescored=%s)",
        str(recommendation.id)[:8], reset_metrics, result is not None,
    )
    return {
        "revived": True,
        "revived_at": now.isoformat(),
        "reset_metrics": reset_metrics,
        "score": result.model_dump() if result else None,
        "recalculation_error": error,
    }


# === SNOOZE ===

async def snooze_deal(
    db: AsyncSession,
    recommendation_id,
    snoozed_until: datetime,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
) -> dict:
    now = utcnow()
    snoozed_until = ensure_utc(snoozed_until)
    if snoozed_until <= now:
        raise DealStateError("Snooze date must be in the future")

    recommendation = await get_recommendation(db, recommendation_id)
    if recommendation.status not in SCOREABLE_STATUSES:
        raise DealStateError(
            f"Only sent or declined deals can be snoozed (status={recommendation.status})",
            recommendation.status,
        )

    recommendation.snoozed_until = snoozed_until
    recommendation.snoozed_at = now
    recommendation.snooze_reason = reason
    db.add(PipelineSnoozeHistory(
        recommendation_id=recommendation.id,
        snoozed_at=now,
        snoozed_until=snoozed_until,
        reason=reason,
        created_by=created_by,
    ))
    await db.commit()

    trigger_recalculation(recommendation.id, TriggerSource.DEAL_SNOOZED)
    return {"snoozed": True, "snoozed_until": snoozed_until.isoformat()}


async def unsnooze_deal(db: AsyncSession, recommendation_id) -> dict:
    recommendation = await get_recommendation(db, recommendation_id)
    recommendation.snoozed_until = None
    recommendation.snoozed_at = None
    recommendation.snooze_reason = None
    await db.commit()
    return {"snoozed": False}
