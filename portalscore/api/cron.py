"""
Cron API - entry points for an external scheduler.
Authenticated with Authorization: Bearer <CRON_SECRET>.
"""
import asyncio
import logging
from fastapi import APIRouter, Depends, HTTPException

from portalscore.api.auth import require_cron_secret
from portalscore.config import get_settings
from portalscore.services.batch_recalculate import run_daily_batch_recalculation

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/v1/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.get("/pipeline-scores")
async def cron_pipeline_scores():
    """Drain the score event queue, then refresh stale deal scores."""
    settings = get_settings()
    try:
        summary = await run_daily_batch_recalculation(
            timeout_seconds=settings.pipeline_batch_timeout_seconds,
            batch_size=settings.pipeline_batch_size,
            batch_delay_ms=settings.pipeline_batch_delay_ms,
            stale_after_hours=settings.pipeline_stale_after_hours,
        )
    except asyncio.TimeoutError:
        raise HTTPException(status_code=504, detail="Pipeline scoring timed out")
    except Exception as e:
        logger.error("Cron pipeline scoring failed: %s", str(e), exc_info=True)
        raise HTTPException(status_code=500, detail="Pipeline scoring failed")

    return {"success": True, **summary}
