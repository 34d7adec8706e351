"""
Score history reads: the raw timeline and an audit feed that explains
what moved between consecutive scoring runs.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.pipeline_score import PipelineScoreHistory
from portalscore.utils.scoring_math import round2

logger = logging.getLogger(__name__)

# (audit field name, path into the stored breakdown)
TRACKED_FIELDS = (
    ("base_score", ("base_score",)),
    ("penalty_email_not_opened", ("penalty_breakdown", "email_not_opened")),
    ("penalty_proposal_not_viewed", ("penalty_breakdown", "proposal_not_viewed")),
    ("penalty_silence", ("penalty_breakdown", "silence")),
    ("multi_invite_bonus", ("penalty_breakdown", "multi_invite_bonus")),
    ("total_bonus", ("total_bonus",)),
)


def _lookup(breakdown: dict, path: tuple) -> Optional[float]:
    value = breakdown
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _serialize(row: PipelineScoreHistory) -> dict:
    return {
        "id": str(row.id),
        "scored_at": row.scored_at.isoformat() if row.scored_at else None,
        "trigger_source": row.trigger_source,
        "confidence_score": row.confidence_score,
        "confidence_percent": float(row.confidence_percent or 0),
        "weighted_monthly": float(row.weighted_monthly or 0),
        "weighted_onetime": float(row.weighted_onetime or 0),
    }


def compute_deltas(previous: dict, current: dict) -> dict:
    """Differences between two serialized audit events (with breakdowns)."""
    deltas = {
        "score_delta": current["confidence_score"] - previous["confidence_score"],
        "weighted_mrr_delta": round2(current["weighted_monthly"] - previous["weighted_monthly"]),
        "changes": [],
    }

    prev_breakdown = previous.get("breakdown")
    curr_breakdown = current.get("breakdown")
    if not prev_breakdown or not curr_breakdown:
        return deltas

    for field, path in TRACKED_FIELDS:
        before = _lookup(prev_breakdown, path)
        after = _lookup(curr_breakdown, path)
        if before == after or before is None or after is None:
            continue
        deltas["changes"].append({
            "field": field,
            "from": before,
            "to": after,
            "delta": round2(after - before),
        })
    return deltas


async def _load_history(db: AsyncSession, recommendation_id: uuid.UUID) -> list[PipelineScoreHistory]:
    result = await db.execute(
        select(PipelineScoreHistory)
        .where(PipelineScoreHistory.recommendation_id == recommendation_id)
        .order_by(PipelineScoreHistory.scored_at.asc())
    )
    return list(result.scalars().all())


async def get_score_history(db: AsyncSession, recommendation_id: uuid.UUID) -> list[dict]:
    return [_serialize(row) for row in await _load_history(db, recommendation_id)]


async def get_score_audit(db: AsyncSession, recommendation_id: uuid.UUID) -> list[dict]:
    events: list[dict] = []
    for row in await _load_history(db, recommendation_id):
        event = _serialize(row)
        event["breakdown"] = row.breakdown
        if events:
            event["deltas"] = compute_deltas(events[-1], event)
        events.append(event)
    return events
