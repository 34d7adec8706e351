"""
Admin performance API - client performance dashboard and per-client detail.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.api.auth import require_admin_key
from portalscore.database import get_db
from portalscore.services.performance_dashboard import SORT_OPTIONS, get_performance_dashboard
from portalscore.services.performance_score import refresh_client_performance
from portalscore.services.performance_stages import STAGE_ORDER
from portalscore.services.recalculate import as_uuid

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/admin/performance",
    tags=["admin-performance"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("")
async def performance_dashboard(
    stage: Optional[str] = None,
    status: Optional[str] = None,
    plan: Optional[str] = None,
    sort: str = Query(default="score_desc"),
    critical_only: bool = False,
    db: AsyncSession = Depends(get_db),
):
    if stage and stage not in STAGE_ORDER:
        raise HTTPException(status_code=400, detail=f"Unknown stage: {stage}")
    if sort not in SORT_OPTIONS:
        raise HTTPException(status_code=400, detail=f"Unknown sort: {sort}")
    return await get_performance_dashboard(
        db, stage=stage, status=status, plan=plan, sort=sort, critical_only=critical_only,
    )


@router.get("/{client_id}")
async def client_performance_detail(
    client_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Full breakdown for one client. Always recomputes and refreshes the cache."""
    client_uuid = as_uuid(client_id)
    if client_uuid is None:
        raise HTTPException(status_code=400, detail="Invalid client ID")

    result = await refresh_client_performance(db, client_uuid)
    if result is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return result
