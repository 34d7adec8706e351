"""
Pipeline deal list and archive analytics for the admin pipeline view.

- get_pipeline_data: open (or archived) deals with their score breakdown,
  call assessment and engagement, plus totals across the filtered list
- get_archive_analytics: how much revenue archived deals took with them,
  broken down by archive reason

Both read scoreable deals only (sent or declined). Drafts were never in
the pipeline and accepted / closed-lost deals have left it.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_, desc, distinct, func, nulls_last
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.client import Client
from portalscore.models.recommendation import (
    Recommendation,
    RecommendationCallScore,
    RecommendationCommunication,
    RecommendationInvite,
    SCOREABLE_STATUSES,
)
from portalscore.services.pipeline_revenue import deal_age_days
from portalscore.utils.scoring_math import days_between, ensure_utc, round2, round_int, utcnow

logger = logging.getLogger(__name__)

ARCHIVED_FILTERS = ("active", "archived", "all")

_DATETIME_FIELDS = (
    "sent_at", "revived_at", "archived_at", "snoozed_until", "last_scored_at", "created_at",
    "last_communication_at", "last_inbound_at",
    "first_email_opened_at", "first_account_created_at", "first_proposal_viewed_at",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def _latest_contact(direction: Optional[str] = None):
    query = select(func.max(RecommendationCommunication.contact_at)).where(
        RecommendationCommunication.recommendation_id == Recommendation.id
    )
    if direction:
        query = query.where(RecommendationCommunication.direction == direction)
    return query.scalar_subquery()


def _first_milestone(column):
    return (
        select(func.min(column))
        .where(RecommendationInvite.recommendation_id == Recommendation.id)
        .scalar_subquery()
    )


# === DEAL LIST ===

def compute_aggregates(deals: list[dict]) -> dict:
    """
    Totals across a deal list. Unscored deals count toward raw revenue and
    deal_count but not toward weighted revenue or the confidence average.
    """
    total_weighted_mrr = 0.0
    total_raw_mrr = 0.0
    total_weighted_onetime = 0.0
    total_raw_onetime = 0.0
    confidence_sum = 0
    scored = 0

    for deal in deals:
        total_raw_mrr += float(deal.get("predicted_monthly") or 0)
        total_raw_onetime += float(deal.get("predicted_onetime") or 0)
        if deal.get("weighted_monthly") is not None:
            total_weighted_mrr += deal["weighted_monthly"]
        if deal.get("weighted_onetime") is not None:
            total_weighted_onetime += deal["weighted_onetime"]
        if deal.get("confidence_score") is not None:
            confidence_sum += deal["confidence_score"]
            scored += 1

    avg_confidence = confidence_sum / scored if scored else 0
    pipeline_confidence_pct = total_weighted_mrr / total_raw_mrr * 100 if total_raw_mrr > 0 else 0

    return {
        "total_weighted_mrr": round2(total_weighted_mrr),
        "total_raw_mrr": round2(total_raw_mrr),
        "total_weighted_onetime": round2(total_weighted_onetime),
        "total_raw_onetime": round2(total_raw_onetime),
        "deal_count": len(deals),
        "avg_confidence": round_int(avg_confidence),
        "pipeline_confidence_pct": round_int(pipeline_confidence_pct),
    }


async def get_pipeline_deals(
    db: AsyncSession,
    archived: str = "active",
    rep_id: Optional[str] = None,
    predicted_tier: Optional[str] = None,
    sent_after: Optional[datetime] = None,
    sent_before: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> list[dict]:
    """Deals ordered by confidence, highest first, unscored last."""
    if archived not in ARCHIVED_FILTERS:
        raise ValueError(f"Invalid archived filter: {archived}")
    now = now or utcnow()

    conditions = [Recommendation.status.in_(SCOREABLE_STATUSES)]
    if archived == "active":
        conditions.append(Recommendation.archived_at.is_(None))
    elif archived == "archived":
        conditions.append(Recommendation.archived_at.is_not(None))
    if rep_id:
        conditions.append(Recommendation.created_by == rep_id)
    if predicted_tier:
        conditions.append(Recommendation.predicted_tier == predicted_tier)
    if sent_after:
        conditions.append(Recommendation.sent_at >= sent_after)
    if sent_before:
        conditions.append(Recommendation.sent_at <= sent_before)

    result = await db.execute(
        select(
            Recommendation.id,
            Recommendation.client_id,
            Client.name.label("client_name"),
            Client.contact_email.label("client_email"),
            Recommendation.created_by.label("rep"),
            Recommendation.status,
            Recommendation.sent_at,
            Recommendation.revived_at,
            Recommendation.predicted_tier,
            func.coalesce(Recommendation.predicted_monthly, 0.0).label("predicted_monthly"),
            func.coalesce(Recommendation.predicted_onetime, 0.0).label("predicted_onetime"),
            Recommendation.confidence_score,
            Recommendation.confidence_percent,
            Recommendation.weighted_monthly,
            Recommendation.weighted_onetime,
            Recommendation.base_score,
            Recommendation.total_penalties,
            Recommendation.total_bonus,
            Recommendation.penalty_email_not_opened,
            Recommendation.penalty_proposal_not_viewed,
            Recommendation.penalty_silence,
            Recommendation.last_scored_at,
            Recommendation.snoozed_until,
            Recommendation.snooze_reason,
            Recommendation.archived_at,
            Recommendation.archive_reason,
            Recommendation.archive_notes,
            Recommendation.created_at,
            RecommendationCallScore.budget_clarity.label("call_budget_clarity"),
            RecommendationCallScore.competition.label("call_competition"),
            RecommendationCallScore.engagement.label("call_engagement"),
            RecommendationCallScore.plan_fit.label("call_plan_fit"),
            _latest_contact().label("last_communication_at"),
            _latest_contact("inbound").label("last_inbound_at"),
            _first_milestone(RecommendationInvite.email_opened_at).label("first_email_opened_at"),
            _first_milestone(RecommendationInvite.account_created_at).label("first_account_created_at"),
            _first_milestone(RecommendationInvite.viewed_at).label("first_proposal_viewed_at"),
        )
        .join(Client, Client.id == Recommendation.client_id)
        .outerjoin(
            RecommendationCallScore,
            RecommendationCallScore.recommendation_id == Recommendation.id,
        )
        .where(and_(*conditions))
        .order_by(nulls_last(desc(Recommendation.confidence_score)))
    )

    deals = []
    for row in result.all():
        deal = dict(row._mapping)
        deal["age_days"] = deal_age_days(deal["revived_at"], deal["sent_at"], now)
        deal["id"] = str(deal["id"])
        deal["client_id"] = str(deal["client_id"])
        for field in _DATETIME_FIELDS:
            deal[field] = _iso(deal[field])
        deals.append(deal)
    return deals


async def get_pipeline_reps(db: AsyncSession) -> list[str]:
    """Every rep with at least one deal in the pipeline, alphabetical."""
    result = await db.execute(
        select(distinct(Recommendation.created_by))
        .where(
            and_(
                Recommendation.status.in_(SCOREABLE_STATUSES),
                Recommendation.created_by.is_not(None),
            )
        )
        .order_by(Recommendation.created_by)
    )
    return list(result.scalars().all())


async def get_pipeline_data(db: AsyncSession, **filters) -> dict:
    deals = await get_pipeline_deals(db, **filters)
    aggregates = compute_aggregates(deals)
    logger.debug(
        "Pipeline data: %d deals, weighted_mrr=%s",
        aggregates["deal_count"], aggregates["total_weighted_mrr"],
    )
    return {
        "deals": deals,
        "aggregates": aggregates,
        "reps": await get_pipeline_reps(db),
    }


# === ARCHIVE ANALYTICS ===

def summarize_archived(deals: list[dict]) -> dict:
    """
    Pure aggregation over archived deal dicts with keys: archive_reason,
    predicted_monthly, predicted_onetime, sent_at, archived_at.

    Deals without a reason count toward the totals but not the breakdown.
    Reasons are ordered by count, ties alphabetically; the first is the top reason.
    """
    total = len(deals)
    lost_mrr = sum(float(d.get("predicted_monthly") or 0) for d in deals)
    lost_onetime = sum(float(d.get("predicted_onetime") or 0) for d in deals)

    days_to_archive = [
        days_between(d["sent_at"], d["archived_at"])
        for d in deals
        if d.get("sent_at") and d.get("archived_at")
    ]
    avg_days = sum(days_to_archive) / len(days_to_archive) if days_to_archive else 0

    counts: Counter = Counter()
    mrr_by_reason: dict[str, float] = {}
    onetime_by_reason: dict[str, float] = {}
    for deal in deals:
        reason = deal.get("archive_reason")
        if not reason:
            continue
        counts[reason] += 1
        mrr_by_reason[reason] = mrr_by_reason.get(reason, 0.0) + float(deal.get("predicted_monthly") or 0)
        onetime_by_reason[reason] = onetime_by_reason.get(reason, 0.0) + float(deal.get("predicted_onetime") or 0)

    breakdown = [
        {
            "reason": reason,
            "count": count,
            "mrr_lost": round2(mrr_by_reason[reason]),
            "onetime_lost": round2(onetime_by_reason[reason]),
            "percentage": round_int(count / total * 100) if total else 0,
        }
        for reason, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    ]
    top = breakdown[0] if breakdown else None

    return {
        "total_archived": total,
        "lost_mrr": round2(lost_mrr),
        "lost_onetime": round2(lost_onetime),
        "avg_days_to_archive": round_int(avg_days),
        "top_reason": top["reason"] if top else None,
        "top_reason_percentage": top["percentage"] if top else 0,
        "reasons_breakdown": breakdown,
    }


async def get_archive_analytics(
    db: AsyncSession,
    archived_after: Optional[datetime] = None,
    archived_before: Optional[datetime] = None,
    rep_id: Optional[str] = None,
) -> dict:
    """Date filters apply to archived_at, both ends inclusive."""
    conditions = [
        Recommendation.status.in_(SCOREABLE_STATUSES),
        Recommendation.archived_at.is_not(None),
    ]
    if archived_after:
        conditions.append(Recommendation.archived_at >= archived_after)
    if archived_before:
        conditions.append(Recommendation.archived_at <= archived_before)
    if rep_id:
        conditions.append(Recommendation.created_by == rep_id)

    result = await db.execute(
        select(
            Recommendation.archive_reason,
            Recommendation.predicted_monthly,
            Recommendation.predicted_onetime,
            Recommendation.sent_at,
            Recommendation.archived_at,
        ).where(and_(*conditions))
    )
    deals = [dict(row._mapping) for row in result.all()]

    analytics = summarize_archived(deals)
    logger.debug(
        "Archive analytics: %d archived, lost_mrr=%s",
        analytics["total_archived"], analytics["lost_mrr"],
    )
    return analytics
