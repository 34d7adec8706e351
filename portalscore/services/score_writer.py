"""
Persists a computed deal score: mirror fields on the recommendation plus
one append-only history row, in the caller's transaction.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.pipeline_score import PipelineScoreHistory
from portalscore.models.recommendation import Recommendation
from portalscore.schemas.scoring import ScoringResult
from portalscore.services.errors import ScoreWriteError
from portalscore.services.scoring_engine import build_breakdown
from portalscore.utils.scoring_math import utcnow

logger = logging.getLogger(__name__)


async def write_score(
    db: AsyncSession,
    recommendation_id: uuid.UUID,
    result: ScoringResult,
    trigger_source: str,
    now: Optional[datetime] = None,
) -> PipelineScoreHistory:
    """
    Update the recommendation's score fields and append a history row.
    Raises ScoreWriteError when no recommendation has that id.
    """
    scored_at = now or utcnow()
    breakdown = result.penalty_breakdown

    recommendation = await db.get(Recommendation, recommendation_id)
    if recommendation is None:
        raise ScoreWriteError(str(recommendation_id))

    recommendation.confidence_score = result.confidence_score
    recommendation.confidence_percent = result.confidence_percent
    recommendation.weighted_monthly = result.weighted_monthly
    recommendation.weighted_onetime = result.weighted_onetime
    recommendation.base_score = result.base_score
    recommendation.total_penalties = result.total_penalties
    recommendation.total_bonus = result.total_bonus
    recommendation.penalty_email_not_opened = breakdown.email_not_opened
    recommendation.penalty_proposal_not_viewed = breakdown.proposal_not_viewed
    recommendation.penalty_silence = breakdown.silence
    recommendation.last_scored_at = scored_at

    history = PipelineScoreHistory(
        recommendation_id=recommendation_id,
        confidence_score=result.confidence_score,
        confidence_percent=result.confidence_percent,
        weighted_monthly=result.weighted_monthly,
        weighted_onetime=result.weighted_onetime,
        trigger_source=trigger_source,
        breakdown=build_breakdown(result),
        scored_at=scored_at,
    )
    db.add(history)
    await db.flush()
    return history
