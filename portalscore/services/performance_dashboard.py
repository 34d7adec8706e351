"""
Client performance dashboard - scores every active client and summarizes
the book of business by growth stage.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.client import Client
from portalscore.services.performance_score import get_client_performance_score
from portalscore.services.performance_stages import (
    STAGE_CONFIGS,
    STAGE_ORDER,
    get_days_since,
    get_growth_stage,
    get_score_status,
    get_stage_flags,
)
from portalscore.services.performance_weights import normalize_plan_type
from portalscore.utils.scoring_math import ensure_utc, round2, utcnow

logger = logging.getLogger(__name__)

SORT_OPTIONS = ("score_desc", "score_asc", "name", "stage", "mrr_desc")
UPSELL_STAGES = ("harvesting", "sprouting")


def _sort_rows(rows: list[dict], sort: str) -> list[dict]:
    if sort == "score_asc":
        return sorted(rows, key=lambda r: r["score"])
    if sort == "name":
        return sorted(rows, key=lambda r: (r["client_name"] or "").lower())
    if sort == "stage":
        return sorted(rows, key=lambda r: (STAGE_ORDER.index(r["growth_stage"]), -r["score"]))
    if sort == "mrr_desc":
        return sorted(rows, key=lambda r: r["mrr"], reverse=True)
    return sorted(rows, key=lambda r: r["score"], reverse=True)


def summarize_performance(rows: list[dict]) -> dict:
    """Totals and per-stage counts/averages over unfiltered rows."""
    total = len(rows)
    average = round2(sum(r["score"] for r in rows) / total) if total else 0.0

    by_stage = {}
    for stage in STAGE_ORDER:
        stage_rows = [r for r in rows if r["growth_stage"] == stage]
        by_stage[stage] = {
            "count": len(stage_rows),
            "avg_score": round2(sum(r["score"] for r in stage_rows) / len(stage_rows)) if stage_rows else 0.0,
        }

    return {
        "total_clients": total,
        "average_score": average,
        "by_stage": by_stage,
        "needs_attention": sum(1 for r in rows if 40 <= r["score"] < 60),
        "upsell_ready": sum(
            1 for r in rows if r["score"] >= 80 and r["growth_stage"] in UPSELL_STAGES
        ),
    }


def filter_rows(
    rows: list[dict],
    stage: Optional[str] = None,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    critical_only: bool = False,
) -> list[dict]:
    filtered = rows
    if stage:
        filtered = [r for r in filtered if r["growth_stage"] == stage]
    if status:
        filtered = [r for r in filtered if r["status_key"] == status]
    if plan:
        wanted = normalize_plan_type(plan)
        filtered = [r for r in filtered if r["plan_type"] == wanted]
    if critical_only:
        filtered = [
            r for r in filtered
            if any(flag["priority"] == "critical" for flag in r["flags"])
        ]
    return filtered


async def get_performance_dashboard(
    db: AsyncSession,
    stage: Optional[str] = None,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    sort: str = "score_desc",
    critical_only: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """Score all active clients (cached scores reused), then summarize, filter and sort."""
    now = ensure_utc(now) if now else utcnow()
    clients = (await db.execute(
        select(Client).where(Client.status == "active").order_by(Client.name)
    )).scalars().all()

    rows = []
    for client in clients:
        score = await get_client_performance_score(db, client.id, now=now)
        if score is None:
            continue
        days_active = get_days_since(client.start_date or client.created_at or now, now)
        growth_stage = get_growth_stage(days_active)
        score_status = get_score_status(score)
        rows.append({
            "client_id": str(client.id),
            "client_name": client.name,
            "score": score,
            "growth_stage": growth_stage,
            "stage_label": STAGE_CONFIGS[growth_stage]["label"],
            "status": score_status["status"],
            "status_key": score_status["key"],
            "status_color": score_status["hex"],
            "plan_type": normalize_plan_type(client.plan_type),
            "mrr": float(client.monthly_spend or 0),
            "flags": get_stage_flags(score, growth_stage),
            "score_updated_at": (
                ensure_utc(client.score_updated_at).isoformat() if client.score_updated_at else None
            ),
        })

    summary = summarize_performance(rows)
    filtered = filter_rows(rows, stage=stage, status=status, plan=plan, critical_only=critical_only)

    return {
        "summary": summary,
        "clients": _sort_rows(filtered, sort if sort in SORT_OPTIONS else "score_desc"),
    }
