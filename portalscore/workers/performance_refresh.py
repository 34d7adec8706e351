"""
Performance refresh - recomputes client performance scores whose cached
value has gone stale so the dashboard rarely pays for a cold recompute.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, and_, or_

from portalscore.config import get_settings
from portalscore.utils.alerting import AlertType, send_alert
from portalscore.utils.logging import start_sweep_correlation
from portalscore.utils.redis import write_heartbeat
from portalscore.utils.scoring_math import utcnow

logger = logging.getLogger(__name__)

WORKER_NAME = "performance_refresh"
MAX_CLIENTS_PER_CYCLE = 200


async def run_performance_refresh():
    """Main loop. Runs every PERFORMANCE_REFRESH_INTERVAL_SECONDS."""
    settings = get_settings()
    logger.info(
        "Performance refresh started (interval=%ds)", settings.performance_refresh_interval_seconds,
    )

    while True:
        start_sweep_correlation(WORKER_NAME)
        try:
            refreshed = await refresh_stale_client_scores(
                ttl_seconds=settings.performance_cache_ttl_seconds,
            )
            if refreshed:
                logger.info("Performance refresh updated %d clients", refreshed)
        except Exception as e:
            logger.error("Performance refresh error: %s", str(e), exc_info=True)
            await send_alert(
                AlertType.PERFORMANCE_REFRESH_FAILED,
                f"Client performance refresh failed: {str(e)[:200]}",
            )

        await write_heartbeat(WORKER_NAME, settings.performance_refresh_interval_seconds * 2)
        await asyncio.sleep(settings.performance_refresh_interval_seconds)


async def refresh_stale_client_scores(
    ttl_seconds: int = 3600,
    now: Optional[datetime] = None,
) -> int:
    """Recompute active clients with no score or one older than the TTL. Returns count refreshed."""
    from portalscore.database import async_session_factory
    from portalscore.models.client import Client
    from portalscore.services.performance_score import update_client_performance_score

    now = now or utcnow()
    cutoff = now - timedelta(seconds=ttl_seconds)

    async with async_session_factory() as db:
        result = await db.execute(
            select(Client.id)
            .where(
                and_(
                    Client.status == "active",
                    or_(
                        Client.score_updated_at.is_(None),
                        Client.score_updated_at < cutoff,
                    ),
                )
            )
            .limit(MAX_CLIENTS_PER_CYCLE)
        )
        client_ids = [row[0] for row in result.all()]

    refreshed = 0
    for client_id in client_ids:
        try:
            async with async_session_factory() as db:
                score = await update_client_performance_score(db, client_id, now=now)
                await db.commit()
            if score is not None:
                refreshed += 1
        except Exception as e:
            logger.warning(
                "Performance refresh failed for client %s: %s", str(client_id)[:8], str(e),
                extra={"client_id": str(client_id)},
            )
    return refreshed
