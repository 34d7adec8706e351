"""
Pipeline revenue summary - buckets open deals and projects MRR.

Buckets, first match wins:
1. on_hold       snoozed_until in the future
2. closing_soon  confidence >= 70 and age >= 14 days
3. in_pipeline   confidence >= 30
4. at_risk       everything else

projected_mrr = current_mrr + closing_soon.weighted + in_pipeline.weighted.
At-risk and on-hold revenue never counts toward the projection.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, and_, desc, nulls_last
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.client import Client
from portalscore.models.recommendation import Recommendation, SCOREABLE_STATUSES
from portalscore.utils.scoring_math import ensure_utc, round2, round_int, utcnow, whole_days_between

logger = logging.getLogger(__name__)

CLOSING_SOON_MIN_CONFIDENCE = 70
CLOSING_SOON_MIN_AGE_DAYS = 14
IN_PIPELINE_MIN_CONFIDENCE = 30
CLOSING_SOON_DEALS_LIMIT = 10

BUCKETS = ("closing_soon", "in_pipeline", "at_risk", "on_hold")


def deal_age_days(revived_at: Optional[datetime], sent_at: Optional[datetime], now: datetime) -> int:
    """Whole days since the deal's current pipeline life began; 0 if never sent."""
    anchor = revived_at or sent_at
    if anchor is None:
        return 0
    return whole_days_between(anchor, now)


def classify_deal(
    confidence: Optional[int],
    age_days: int,
    snoozed_until: Optional[datetime],
    now: datetime,
) -> str:
    if snoozed_until is not None and ensure_utc(snoozed_until) > now:
        return "on_hold"
    score = confidence or 0
    if score >= CLOSING_SOON_MIN_CONFIDENCE and age_days >= CLOSING_SOON_MIN_AGE_DAYS:
        return "closing_soon"
    if score >= IN_PIPELINE_MIN_CONFIDENCE:
        return "in_pipeline"
    return "at_risk"


def _empty_bucket() -> dict:
    return {"deal_count": 0, "weighted_mrr": 0.0, "raw_mrr": 0.0, "_confidence_sum": 0}


def summarize_deals(
    deals: list[dict],
    current_mrr: float,
    active_client_count: int,
    now: datetime,
) -> dict:
    """
    Pure aggregation over deal dicts with keys: id, client_id, client_name, rep,
    confidence_score, predicted_monthly, weighted_monthly, sent_at, revived_at,
    snoozed_until, last_scored_at. Deals should arrive ordered by confidence desc.
    """
    buckets = {name: _empty_bucket() for name in BUCKETS}
    closing_soon_deals: list[dict] = []
    last_updated: Optional[datetime] = None

    for deal in deals:
        confidence = deal.get("confidence_score") or 0
        predicted = float(deal.get("predicted_monthly") or 0)
        weighted = float(deal.get("weighted_monthly") or 0)
        age = deal_age_days(deal.get("revived_at"), deal.get("sent_at"), now)

        scored_at = ensure_utc(deal.get("last_scored_at"))
        if scored_at is not None and (last_updated is None or scored_at > last_updated):
            last_updated = scored_at

        name = classify_deal(confidence, age, deal.get("snoozed_until"), now)
        bucket = buckets[name]
        bucket["deal_count"] += 1
        bucket["weighted_mrr"] += weighted
        bucket["raw_mrr"] += predicted
        bucket["_confidence_sum"] += confidence

        if name == "closing_soon" and len(closing_soon_deals) < CLOSING_SOON_DEALS_LIMIT:
            closing_soon_deals.append({
                "id": str(deal["id"]),
                "client_id": str(deal["client_id"]) if deal.get("client_id") else None,
                "client_name": deal.get("client_name"),
                "rep": deal.get("rep"),
                "predicted_monthly": round2(predicted),
                "confidence_score": confidence,
                "weighted_monthly": round2(weighted),
                "age_days": age,
            })

    for bucket in buckets.values():
        confidence_sum = bucket.pop("_confidence_sum")
        count = bucket["deal_count"]
        bucket["avg_confidence"] = round_int(confidence_sum / count) if count else 0
        bucket["weighted_mrr"] = round2(bucket["weighted_mrr"])
        bucket["raw_mrr"] = round2(bucket["raw_mrr"])

    projected = current_mrr + buckets["closing_soon"]["weighted_mrr"] + buckets["in_pipeline"]["weighted_mrr"]

    return {
        "current_mrr": round2(current_mrr),
        "active_client_count": active_client_count,
        **buckets,
        "projected_mrr": round2(projected),
        "potential_growth": round2(projected - current_mrr),
        "last_updated": last_updated.isoformat() if last_updated else None,
        "closing_soon_deals": closing_soon_deals,
    }


async def get_pipeline_revenue_summary(
    db: AsyncSession,
    current_mrr: float,
    active_client_count: int,
    now: Optional[datetime] = None,
) -> dict:
    now = now or utcnow()

    result = await db.execute(
        select(
            Recommendation.id,
            Recommendation.client_id,
            Client.name.label("client_name"),
            Recommendation.created_by.label("rep"),
            Recommendation.confidence_score,
            Recommendation.predicted_monthly,
            Recommendation.weighted_monthly,
            Recommendation.sent_at,
            Recommendation.revived_at,
            Recommendation.snoozed_until,
            Recommendation.last_scored_at,
        )
        .join(Client, Client.id == Recommendation.client_id)
        .where(
            and_(
                Recommendation.status.in_(SCOREABLE_STATUSES),
                Recommendation.archived_at.is_(None),
            )
        )
        .order_by(nulls_last(desc(Recommendation.confidence_score)))
    )
    deals = [dict(row._mapping) for row in result.all()]

    summary = summarize_deals(deals, current_mrr, active_client_count, now)
    logger.debug(
        "Pipeline summary: %d deals, projected_mrr=%s",
        len(deals), summary["projected_mrr"],
    )
    return summary
