"""
Pipeline scorer - daily sweep that drains the score event queue and
refreshes stale deal confidence scores.

Same work as GET /api/v1/cron/pipeline-scores, for deployments without an
external scheduler. Disable with PIPELINE_SCORER_ENABLED=false when cron
drives it instead.
"""
import asyncio
import logging

from portalscore.config import get_settings
from portalscore.services.batch_recalculate import run_daily_batch_recalculation
from portalscore.utils.alerting import AlertType, send_alert
from portalscore.utils.logging import start_sweep_correlation
from portalscore.utils.redis import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "pipeline_scorer"


async def run_pipeline_scorer():
    """Main loop. Runs once per PIPELINE_SCORER_INTERVAL_SECONDS."""
    settings = get_settings()
    logger.info(
        "Pipeline scorer started (interval=%ds)", settings.pipeline_scorer_interval_seconds,
    )

    while True:
        await pipeline_scoring_cycle()
        await write_heartbeat(WORKER_NAME, settings.pipeline_scorer_interval_seconds * 2)
        await asyncio.sleep(settings.pipeline_scorer_interval_seconds)


async def pipeline_scoring_cycle() -> dict | None:
    """One daily run. Errors are logged and alerted, never raised into the loop."""
    settings = get_settings()
    start_sweep_correlation(WORKER_NAME)
    try:
        return await run_daily_batch_recalculation(
            timeout_seconds=settings.pipeline_batch_timeout_seconds,
            batch_size=settings.pipeline_batch_size,
            batch_delay_ms=settings.pipeline_batch_delay_ms,
            stale_after_hours=settings.pipeline_stale_after_hours,
        )
    except asyncio.TimeoutError:
        # Timeout alert is sent by run_daily_batch_recalculation
        logger.error("Pipeline scorer run timed out")
    except Exception as e:
        logger.error("Pipeline scorer error: %s", str(e), exc_info=True)
        await send_alert(
            AlertType.PIPELINE_SCORING_FAILED,
            f"Daily deal scoring failed: {str(e)[:200]}",
        )
    return None
