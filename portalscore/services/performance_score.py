"""
Client performance score.

score = round(clamp(base x velocity_modifier, 0, 100)) where base is the
weighted average of per-metric points over the metrics the client has data
for. Per-metric points = clamp(round(50 + percent_change), 0, 100).

performance_score / score_updated_at on the client row are a read-through
cache refreshed when older than an hour. growth_stage is never written
while the client is still a prospect.
"""
import logging
import math
import uuid
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select, and_, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.client import Client
from portalscore.models.client_metrics import (
    ClientActivity,
    ClientAlert,
    ClientScoreHistory,
    MetricSnapshot,
)
from portalscore.services.performance_stages import (
    STAGE_CONFIGS,
    get_days_since,
    get_evaluation_label,
    get_growth_stage,
    get_score_status,
    get_stage_flags,
)
from portalscore.services.performance_velocity import calculate_velocity_result
from portalscore.services.performance_weights import (
    ALERT_TYPE_WEIGHTS,
    get_weights_for_plan,
    normalize_plan_type,
    redistribute_weights,
)
from portalscore.services.recalculate import as_uuid
from portalscore.utils.scoring_math import clamp, ensure_utc, round_int, utcnow

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 3600
HISTORY_MIN_INTERVAL = timedelta(hours=24)
PERIOD_DAYS = 30
SNAPSHOT_LOOKBEHIND_DAYS = 5
SNAPSHOT_LOOKAHEAD_DAYS = 10
IMPROVEMENT_LOOKBACK_DAYS = 365

# (metric key, snapshot metric_type, lower is better)
SNAPSHOT_METRICS = (
    ("keywords", "keyword_avg_position", True),
    ("visitors", "visitors", False),
    ("leads", "leads", False),
    ("ai_visibility", "ai_visibility", False),
    ("conversions", "conversions", False),
)

IMPROVEMENT_ACTIVITY_TYPES = ("seo_ranking", "traffic_milestone", "lead_generated", "social_engagement")


# === PURE SCORING ===

def delta_to_points(delta: float) -> int:
    if not math.isfinite(delta):
        return 50
    return round_int(clamp(50 + delta, 0, 100))


def calculate_delta(current: float, previous: float, lower_is_better: bool = False) -> float:
    """
    Percent change from previous to current. From a zero baseline any growth
    counts as a flat +25 and no growth as 0, whichever direction is better.
    """
    if previous == 0:
        return 25.0 if current > 0 else 0.0
    delta = (current - previous) / previous * 100
    return -delta if lower_is_better else delta


def calculate_alerts_score(alerts: list[dict]) -> int:
    """alerts: [{"type": ..., "count": ...}]. Sum of weight x count, doubled, capped at 100."""
    if not alerts:
        return 0
    total = 0.0
    for alert in alerts:
        weight = ALERT_TYPE_WEIGHTS.get(alert.get("type"), ALERT_TYPE_WEIGHTS["other_update"])
        total += weight * (alert.get("count") or 1)
    return min(100, round_int(total * 2))


def calculate_base_score(metric_scores: dict[str, dict], weights: dict[str, float]) -> float:
    """Weighted average of metric points, renormalized over the weights actually used."""
    total = 0.0
    used_weight = 0.0
    for metric, weight in weights.items():
        data = metric_scores.get(metric)
        if data is not None and weight:
            total += data["score"] * weight / 100
            used_weight += weight
    if used_weight > 0 and used_weight != 100:
        total = total / used_weight * 100
    return total


def calculate_final_score(base_score: float, velocity_modifier: float) -> int:
    return round_int(clamp(base_score * velocity_modifier, 0, 100))


def _days_since_alert(last_alert_at: Optional[datetime], now: datetime) -> Optional[int]:
    if last_alert_at is None:
        return None
    return int((now - ensure_utc(last_alert_at)).total_seconds() // 86400)


def generate_red_flags(
    metrics: dict[str, dict],
    last_alert_at: Optional[datetime],
    velocity: dict,
    now: datetime,
) -> list[str]:
    flags = []

    days_since_alert = _days_since_alert(last_alert_at, now)
    if days_since_alert is None:
        flags.append("No result alerts ever sent")
    elif days_since_alert > 30:
        flags.append(f"No result alerts sent in {days_since_alert} days")

    for metric, data in metrics.items():
        if data["delta"] < -20:
            flags.append(f"{metric.replace('_', ' ')} down {abs(round_int(data['delta']))}% this period")

    if not velocity["is_in_ramp_period"] and velocity["ratio"] < 0.5:
        flags.append("Account velocity significantly below expectations")

    return flags


def generate_recommendations(
    score: int,
    stage: str,
    metrics: dict[str, dict],
    last_alert_at: Optional[datetime],
    now: datetime,
) -> list[str]:
    recommendations = []

    if score < 40:
        recommendations.append("Schedule strategy review meeting")
        recommendations.append("Consider publishing intervention alert")

    days_since_alert = _days_since_alert(last_alert_at, now)
    if days_since_alert is None or days_since_alert > 14:
        recommendations.append("Send a result alert to re-engage")

    if "keywords" in metrics and metrics["keywords"]["delta"] < -10:
        recommendations.append("Review keyword strategy")
    if "visitors" in metrics and metrics["visitors"]["delta"] < -15:
        recommendations.append("Investigate traffic decline")

    if score >= 80 and stage == "harvesting":
        recommendations.append("Consider for case study")
        recommendations.append("Explore upsell opportunities")

    return recommendations


# === FACT QUERIES ===

async def _get_metric_value(
    db: AsyncSession,
    client_id: uuid.UUID,
    metric_type: str,
    period_start: date,
) -> Optional[float]:
    """Latest snapshot whose period starts within [start - 5d, start + 10d]."""
    result = await db.execute(
        select(MetricSnapshot.value)
        .where(
            and_(
                MetricSnapshot.client_id == client_id,
                MetricSnapshot.metric_type == metric_type,
                MetricSnapshot.period_start >= period_start - timedelta(days=SNAPSHOT_LOOKBEHIND_DAYS),
                MetricSnapshot.period_start <= period_start + timedelta(days=SNAPSHOT_LOOKAHEAD_DAYS),
            )
        )
        .order_by(desc(MetricSnapshot.period_start))
        .limit(1)
    )
    value = result.scalar_one_or_none()
    return float(value) if value is not None else None


async def _get_recent_alerts(db: AsyncSession, client_id: uuid.UUID, since: datetime) -> list[dict]:
    result = await db.execute(
        select(ClientAlert.alert_type, func.count(ClientAlert.id))
        .where(
            and_(
                ClientAlert.client_id == client_id,
                ClientAlert.status == "published",
                ClientAlert.published_at >= since,
            )
        )
        .group_by(ClientAlert.alert_type)
    )
    return [{"type": alert_type or "other_update", "count": count} for alert_type, count in result.all()]


async def _count_improvements(db: AsyncSession, client_id: uuid.UUID, since: datetime) -> int:
    alert_count = (await db.execute(
        select(func.count(ClientAlert.id)).where(
            and_(
                ClientAlert.client_id == client_id,
                ClientAlert.status == "published",
                ClientAlert.highlight_type == "success",
                ClientAlert.published_at >= since,
            )
        )
    )).scalar() or 0

    activity_count = (await db.execute(
        select(func.count(ClientActivity.id)).where(
            and_(
                ClientActivity.client_id == client_id,
                ClientActivity.activity_type.in_(IMPROVEMENT_ACTIVITY_TYPES),
                ClientActivity.created_at >= since,
            )
        )
    )).scalar() or 0

    return alert_count + activity_count


async def _get_last_alert(db: AsyncSession, client_id: uuid.UUID) -> tuple[Optional[datetime], Optional[str]]:
    row = (await db.execute(
        select(ClientAlert.published_at, ClientAlert.alert_type)
        .where(
            and_(
                ClientAlert.client_id == client_id,
                ClientAlert.status == "published",
                ClientAlert.published_at.is_not(None),
            )
        )
        .order_by(desc(ClientAlert.published_at))
        .limit(1)
    )).first()
    if row is None:
        return None, None
    return ensure_utc(row[0]), row[1]


# === ENGINE ===

async def calculate_client_performance(
    db: AsyncSession,
    client_id,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    now = ensure_utc(now) if now else utcnow()
    client_uuid = as_uuid(client_id)
    if client_uuid is None:
        return None
    client = await db.get(Client, client_uuid)
    if client is None:
        return None

    plan_type = normalize_plan_type(client.plan_type)
    weights = get_weights_for_plan(plan_type)
    excluded = set(client.excluded_metrics or [])

    current_start = now.date() - timedelta(days=PERIOD_DAYS)
    previous_end = current_start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=PERIOD_DAYS)

    metrics: dict[str, dict] = {}
    for key, metric_type, lower_is_better in SNAPSHOT_METRICS:
        if key in excluded:
            continue
        current = await _get_metric_value(db, client.id, metric_type, current_start)
        previous = await _get_metric_value(db, client.id, metric_type, previous_start)
        if current is None and previous is None:
            excluded.add(key)
            continue
        delta = calculate_delta(current or 0.0, previous or 0.0, lower_is_better)
        metrics[key] = {
            "current": current or 0.0,
            "previous": previous or 0.0,
            "delta": delta,
            "score": delta_to_points(delta),
        }

    if "alerts" not in excluded:
        recent_alerts = await _get_recent_alerts(db, client.id, now - timedelta(days=PERIOD_DAYS))
        metrics["alerts"] = {
            "current": sum(a["count"] for a in recent_alerts),
            "previous": 0,
            "delta": 0.0,
            "score": calculate_alerts_score(recent_alerts),
        }

    adjusted = redistribute_weights(weights, excluded) if excluded else weights
    for key, data in metrics.items():
        data["weight"] = adjusted.get(key, 0.0)
        data["contribution"] = data["score"] * data["weight"] / 100

    base_score = calculate_base_score(metrics, adjusted)

    tenure_start = client.start_date or client.created_at or now
    days_active = get_days_since(tenure_start, now)
    improvements = await _count_improvements(
        db, client.id, now - timedelta(days=IMPROVEMENT_LOOKBACK_DAYS),
    )
    velocity = calculate_velocity_result(improvements, days_active, plan_type)

    score = calculate_final_score(base_score, velocity["modifier"])
    stage = get_growth_stage(days_active)
    status = get_score_status(score)
    last_alert_at, last_alert_type = await _get_last_alert(db, client.id)

    return {
        "client_id": str(client.id),
        "client_name": client.name,
        "score": score,
        "growth_stage": stage,
        "stage_label": STAGE_CONFIGS[stage]["label"],
        "stage_icon": STAGE_CONFIGS[stage]["icon"],
        "status": status["status"],
        "status_color": status["hex"],
        "evaluation_label": get_evaluation_label(score, stage),
        "plan_type": plan_type,
        "tenure_months": velocity["months_active"],
        "mrr": float(client.monthly_spend or 0),
        "metrics": metrics,
        "velocity": velocity,
        "calculation": {
            "base_score": base_score,
            "velocity_modifier": velocity["modifier"],
            "final_score": score,
        },
        "flags": get_stage_flags(score, stage),
        "last_alert_at": last_alert_at.isoformat() if last_alert_at else None,
        "last_alert_type": last_alert_type,
        "red_flags": generate_red_flags(metrics, last_alert_at, velocity, now),
        "recommendations": generate_recommendations(score, stage, metrics, last_alert_at, now),
    }


# === CACHE + HISTORY ===

def is_prospect(client: Client) -> bool:
    return client.status == "prospect" or client.growth_stage == "prospect"


def is_cache_fresh(client: Client, now: datetime, ttl_seconds: int = CACHE_TTL_SECONDS) -> bool:
    if client.performance_score is None or client.score_updated_at is None:
        return False
    return (now - ensure_utc(client.score_updated_at)).total_seconds() < ttl_seconds


async def persist_performance_result(
    db: AsyncSession,
    client: Client,
    result: dict,
    now: datetime,
) -> bool:
    """Write the cache fields and maybe a history row. Returns True if history was appended."""
    client.performance_score = result["score"]
    client.score_updated_at = now
    if not is_prospect(client) and client.growth_stage != result["growth_stage"]:
        client.growth_stage = result["growth_stage"]
        client.stage_updated_at = now

    last = (await db.execute(
        select(ClientScoreHistory)
        .where(ClientScoreHistory.client_id == client.id)
        .order_by(desc(ClientScoreHistory.recorded_at))
        .limit(1)
    )).scalar_one_or_none()

    should_record = (
        last is None
        or last.score != result["score"]
        or ensure_utc(last.recorded_at) < now - HISTORY_MIN_INTERVAL
    )
    if should_record:
        db.add(ClientScoreHistory(
            client_id=client.id,
            score=result["score"],
            growth_stage=client.growth_stage,
            recorded_at=now,
        ))
    await db.flush()
    return should_record


async def refresh_client_performance(
    db: AsyncSession,
    client_id,
    now: Optional[datetime] = None,
) -> Optional[dict]:
    """Recalculate, write the cache fields, and return the full breakdown."""
    now = ensure_utc(now) if now else utcnow()
    result = await calculate_client_performance(db, client_id, now=now)
    if result is None:
        return None

    client = await db.get(Client, uuid.UUID(result["client_id"]))
    await persist_performance_result(db, client, result, now)
    logger.info(
        "Client %s performance score %d (%s)",
        result["client_id"][:8], result["score"], result["growth_stage"],
        extra={"client_id": result["client_id"]},
    )
    return result


async def update_client_performance_score(
    db: AsyncSession,
    client_id,
    now: Optional[datetime] = None,
) -> Optional[int]:
    result = await refresh_client_performance(db, client_id, now=now)
    return result["score"] if result else None


async def get_client_performance_score(
    db: AsyncSession,
    client_id,
    now: Optional[datetime] = None,
    ttl_seconds: int = CACHE_TTL_SECONDS,
) -> Optional[int]:
    """Cached score if fresh, otherwise recompute and store."""
    now = ensure_utc(now) if now else utcnow()
    client_uuid = as_uuid(client_id)
    if client_uuid is None:
        return None
    client = await db.get(Client, client_uuid)
    if client is None:
        return None
    if is_cache_fresh(client, now, ttl_seconds):
        return client.performance_score
    return await update_client_performance_score(db, client.id, now=now)
