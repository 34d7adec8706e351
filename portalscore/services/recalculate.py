"""
Deal confidence recalculation entry points.

- recalculate_score: score one deal in the caller's session. Skips (returns
  None) for missing, terminal or archived deals; persistence errors propagate.
- trigger_recalculation: fire-and-forget in a detached task with its own
  session. Never raises into the caller.
- recalculate_with_retry: one retry after a short fixed delay, reporting
  the error instead of raising (used by the revive flow).
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.recommendation import Recommendation
from portalscore.schemas.scoring import ScoringResult
from portalscore.services.score_writer import write_score
from portalscore.services.scoring_engine import compute_pipeline_score
from portalscore.services.scoring_input import assemble_scoring_input

logger = logging.getLogger(__name__)

REVIVE_RETRY_DELAY_SECONDS = 0.5

# Strong references to in-flight detached tasks (the loop only keeps weak ones)
_background_tasks: set[asyncio.Task] = set()


class TriggerSource:
    """Audit tags stored verbatim on every history row."""
    INVITE_SENT = "invite_sent"
    CALL_SCORE_UPDATED = "call_score_updated"
    STATUS_CHANGED = "status_changed"
    COMMUNICATION_LOGGED = "communication_logged"
    HIGHLEVEL_SYNC = "highlevel_sync"
    EMAIL_OPENED = "email_opened"
    PROPOSAL_VIEWED = "proposal_viewed"
    ACCOUNT_CREATED = "account_created"
    TRACKING_EVENT = "tracking_event"
    DAILY_CRON = "daily_cron"
    MANUAL_REFRESH = "manual_refresh"
    DEAL_ARCHIVED = "deal_archived"
    DEAL_REVIVED = "deal_revived"
    DEAL_SNOOZED = "deal_snoozed"
    UNKNOWN = "unknown"


def as_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


async def recalculate_score(
    db: AsyncSession,
    recommendation_id: Union[str, uuid.UUID],
    trigger_source: str = TriggerSource.UNKNOWN,
    now: Optional[datetime] = None,
) -> Optional[ScoringResult]:
    rec_uuid = as_uuid(recommendation_id)
    recommendation = await db.get(Recommendation, rec_uuid) if rec_uuid else None
    if recommendation is None:
        logger.info("Skipping score for %s: recommendation not found", recommendation_id)
        return None

    if recommendation.is_terminal:
        logger.info(
            "Skipping score for %s: status is %s",
            str(rec_uuid)[:8], recommendation.status,
        )
        return None
    if recommendation.archived_at is not None:
        logger.info("Skipping score for %s: archived", str(rec_uuid)[:8])
        return None

    scoring_input = await assemble_scoring_input(db, recommendation, now=now)
    result = compute_pipeline_score(scoring_input)
    await write_score(db, rec_uuid, result, trigger_source, now=scoring_input.now)

    logger.info(
        "Scored %s: score=%d base=%s penalties=%s bonus=%s trigger=%s",
        str(rec_uuid)[:8], result.confidence_score, result.base_score,
        result.total_penalties, result.total_bonus, trigger_source,
        extra={"recommendation_id": str(rec_uuid), "trigger_source": trigger_source},
    )
    return result


async def recalculate_in_new_session(
    recommendation_id: Union[str, uuid.UUID],
    trigger_source: str = TriggerSource.UNKNOWN,
) -> Optional[ScoringResult]:
    """Score one deal in a dedicated session and commit."""
    from portalscore.database import async_session_factory

    async with async_session_factory() as db:
        result = await recalculate_score(db, recommendation_id, trigger_source)
        await db.commit()
        return result


async def recalculate_scores(
    recommendation_ids: list,
    trigger_source: str = TriggerSource.UNKNOWN,
) -> list:
    """
    Score many deals concurrently, one session each.
    Returns one entry per id: a ScoringResult, None (skipped) or the raised exception.
    """
    return await asyncio.gather(
        *(recalculate_in_new_session(rid, trigger_source) for rid in recommendation_ids),
        return_exceptions=True,
    )


async def _run_detached(recommendation_id: str, trigger_source: str) -> None:
    try:
        await recalculate_in_new_session(recommendation_id, trigger_source)
    except Exception as e:
        logger.error(
            "Background recalculation failed for %s (trigger=%s): %s",
            recommendation_id, trigger_source, str(e),
            exc_info=True,
            extra={"recommendation_id": str(recommendation_id), "trigger_source": trigger_source},
        )


def trigger_recalculation(
    recommendation_id: Union[str, uuid.UUID],
    trigger_source: str,
) -> asyncio.Task:
    """Schedule a recalculation without awaiting it. Failures are logged only."""
    task = asyncio.create_task(_run_detached(str(recommendation_id), trigger_source))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def recalculate_with_retry(
    recommendation_id: Union[str, uuid.UUID],
    trigger_source: str,
    retry_delay: float = REVIVE_RETRY_DELAY_SECONDS,
) -> tuple[Optional[ScoringResult], Optional[str]]:
    """
    Try once, wait retry_delay, try again. Returns (result, error_message);
    error_message is set only when both attempts raised.
    """
    try:
        return await recalculate_in_new_session(recommendation_id, trigger_source), None
    except Exception as e:
        logger.warning(
            "Recalculation failed for %s, retrying in %.1fs: %s",
            recommendation_id, retry_delay, str(e),
        )

    await asyncio.sleep(retry_delay)
    try:
        return await recalculate_in_new_session(recommendation_id, trigger_source), None
    except Exception as e:
        logger.error(
            "Recalculation retry failed for %s: %s", recommendation_id, str(e),
            exc_info=True,
        )
        return None, str(e)
