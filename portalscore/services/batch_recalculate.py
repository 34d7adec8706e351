"""
Batch deal recalculation - the scheduled sweeps.

- process_score_event_queue: drain deals queued by tracking webhooks
- batch_recalculate_stale_scores: rescore active deals not scored in 23h
- recalculate_all_active_deals: rescore everything active (after config edits)

Each id is scored in its own session. Ids are processed in batches of 25
run concurrently, with a 200ms pause between batches. One failing deal
never stops the sweep; it is counted and reported.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, or_, and_, nulls_first
from sqlalchemy.ext.asyncio import AsyncSession

from portalscore.models.pipeline_score import PipelineScoreEvent, PipelineScoringRun
from portalscore.models.recommendation import Recommendation, SCOREABLE_STATUSES
from portalscore.schemas.scoring import BatchResult
from portalscore.services.recalculate import TriggerSource, recalculate_scores
from portalscore.utils.alerting import AlertType, send_alert
from portalscore.utils.scoring_math import utcnow

logger = logging.getLogger(__name__)

BATCH_SIZE = 25
BATCH_DELAY_MS = 200
STALE_AFTER_HOURS = 23
ERROR_RATE_ALERT_THRESHOLD = 0.5
MAX_LOGGED_ERRORS = 50
DEFAULT_TIMEOUT_SECONDS = 300


class RunType:
    DAILY_CRON = "daily_cron"
    EVENT_QUEUE = "event_queue"
    MANUAL = "manual"


async def run_batches(
    recommendation_ids: list,
    trigger_source: str,
    batch_size: int = BATCH_SIZE,
    batch_delay_ms: int = BATCH_DELAY_MS,
) -> BatchResult:
    """Score ids in concurrent batches and tally the outcomes."""
    started = time.monotonic()
    result = BatchResult()
    total_batches = (len(recommendation_ids) + batch_size - 1) // batch_size

    for start in range(0, len(recommendation_ids), batch_size):
        batch = recommendation_ids[start:start + batch_size]
        logger.debug(
            "Scoring batch %d/%d (%d items, trigger=%s)",
            start // batch_size + 1, total_batches, len(batch), trigger_source,
        )

        outcomes = await recalculate_scores(batch, trigger_source)
        for rid, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                result.failed += 1
                result.errors.append({"recommendation_id": str(rid), "error": str(outcome)})
                logger.error(
                    "Failed to score %s: %s", rid, str(outcome),
                    extra={"recommendation_id": str(rid), "trigger_source": trigger_source},
                )
            elif outcome is None:
                result.skipped += 1
            else:
                result.succeeded += 1

        if start + batch_size < len(recommendation_ids):
            await asyncio.sleep(batch_delay_ms / 1000)

    result.processed = result.succeeded + result.failed + result.skipped
    result.duration_ms = int((time.monotonic() - started) * 1000)
    return result


async def _check_error_rate(result: BatchResult, run_type: str) -> None:
    if result.error_rate > ERROR_RATE_ALERT_THRESHOLD:
        await send_alert(
            AlertType.PIPELINE_SCORING_HIGH_ERROR_RATE,
            f"Deal scoring {run_type}: {result.failed}/{result.processed} failed "
            f"({result.error_rate:.0%})",
            severity="warning",
            extra={
                "run_type": run_type,
                "error_rate": round(result.error_rate, 2),
                "first_errors": result.errors[:10],
            },
        )


async def select_pending_events(db: AsyncSession) -> tuple[list, list]:
    """Return (distinct recommendation ids, event row ids) for unprocessed events."""
    rows = (await db.execute(
        select(PipelineScoreEvent.id, PipelineScoreEvent.recommendation_id)
        .where(PipelineScoreEvent.processed_at.is_(None))
        .order_by(PipelineScoreEvent.triggered_at)
    )).all()

    recommendation_ids: list = []
    seen = set()
    for _, rec_id in rows:
        if rec_id not in seen:
            seen.add(rec_id)
            recommendation_ids.append(rec_id)
    return recommendation_ids, [event_id for event_id, _ in rows]


async def mark_events_processed(db: AsyncSession, event_ids: list, now: datetime) -> None:
    if not event_ids:
        return
    await db.execute(
        update(PipelineScoreEvent)
        .where(PipelineScoreEvent.id.in_(event_ids))
        .values(processed_at=now)
        .execution_options(synchronize_session=False)
    )


async def select_stale_recommendation_ids(
    db: AsyncSession,
    now: datetime,
    stale_after_hours: int = STALE_AFTER_HOURS,
) -> list:
    cutoff = now - timedelta(hours=stale_after_hours)
    rows = await db.execute(
        select(Recommendation.id)
        .where(
            and_(
                Recommendation.status.in_(SCOREABLE_STATUSES),
                Recommendation.archived_at.is_(None),
                or_(
                    Recommendation.last_scored_at.is_(None),
                    Recommendation.last_scored_at < cutoff,
                ),
            )
        )
        .order_by(nulls_first(Recommendation.last_scored_at.asc()))
    )
    return list(rows.scalars().all())


async def select_active_recommendation_ids(db: AsyncSession) -> list:
    rows = await db.execute(
        select(Recommendation.id).where(
            and_(
                Recommendation.status.in_(SCOREABLE_STATUSES),
                Recommendation.archived_at.is_(None),
            )
        )
    )
    return list(rows.scalars().all())


async def process_score_event_queue(
    batch_size: int = BATCH_SIZE,
    batch_delay_ms: int = BATCH_DELAY_MS,
) -> BatchResult:
    from portalscore.database import async_session_factory

    async with async_session_factory() as db:
        recommendation_ids, event_ids = await select_pending_events(db)

    if not recommendation_ids:
        logger.info("No queued score events to process")
        return BatchResult()

    logger.info("Processing %d deals from the score event queue", len(recommendation_ids))
    result = await run_batches(
        recommendation_ids, TriggerSource.TRACKING_EVENT, batch_size, batch_delay_ms,
    )

    # Only the rows read above: events queued during the sweep wait for the next one
    async with async_session_factory() as db:
        await mark_events_processed(db, event_ids, utcnow())
        await db.commit()

    await _check_error_rate(result, RunType.EVENT_QUEUE)
    logger.info(
        "Event queue processed in %dms: %d succeeded, %d skipped, %d failed",
        result.duration_ms, result.succeeded, result.skipped, result.failed,
        extra={"run_type": RunType.EVENT_QUEUE},
    )
    return result


async def batch_recalculate_stale_scores(
    batch_size: int = BATCH_SIZE,
    batch_delay_ms: int = BATCH_DELAY_MS,
    stale_after_hours: int = STALE_AFTER_HOURS,
) -> BatchResult:
    from portalscore.database import async_session_factory

    async with async_session_factory() as db:
        recommendation_ids = await select_stale_recommendation_ids(db, utcnow(), stale_after_hours)

    if not recommendation_ids:
        logger.info("No stale deal scores to recalculate")
        return BatchResult()

    logger.info("Recalculating %d stale deal scores", len(recommendation_ids))
    result = await run_batches(
        recommendation_ids, TriggerSource.DAILY_CRON, batch_size, batch_delay_ms,
    )
    await _check_error_rate(result, RunType.DAILY_CRON)
    logger.info(
        "Stale scores recalculated in %dms: %d succeeded, %d skipped, %d failed",
        result.duration_ms, result.succeeded, result.skipped, result.failed,
        extra={"run_type": RunType.DAILY_CRON},
    )
    return result


async def recalculate_all_active_deals(
    trigger_source: str = TriggerSource.MANUAL_REFRESH,
    batch_size: int = BATCH_SIZE,
    batch_delay_ms: int = BATCH_DELAY_MS,
) -> BatchResult:
    from portalscore.database import async_session_factory

    async with async_session_factory() as db:
        recommendation_ids = await select_active_recommendation_ids(db)

    if not recommendation_ids:
        logger.info("No active deals to recalculate")
        return BatchResult()

    logger.info("Recalculating all %d active deals (trigger=%s)", len(recommendation_ids), trigger_source)
    result = await run_batches(recommendation_ids, trigger_source, batch_size, batch_delay_ms)
    await _check_error_rate(result, RunType.MANUAL)
    return result


async def log_scoring_run(run_type: str, result: BatchResult) -> None:
    """Store the run summary. Failure to log never fails the run."""
    try:
        from portalscore.database import async_session_factory

        async with async_session_factory() as db:
            db.add(PipelineScoringRun(
                run_type=run_type,
                processed=result.processed,
                succeeded=result.succeeded,
                failed=result.failed,
                skipped=result.skipped,
                duration_ms=result.duration_ms,
                errors=result.errors[:MAX_LOGGED_ERRORS],
                completed_at=utcnow(),
            ))
            await db.commit()
    except Exception as e:
        logger.warning("Failed to log scoring run (%s): %s", run_type, str(e))


async def _daily_run(batch_size: int, batch_delay_ms: int, stale_after_hours: int) -> dict:
    queue_result = await process_score_event_queue(batch_size, batch_delay_ms)
    await log_scoring_run(RunType.EVENT_QUEUE, queue_result)

    stale_result = await batch_recalculate_stale_scores(batch_size, batch_delay_ms, stale_after_hours)
    await log_scoring_run(RunType.DAILY_CRON, stale_result)

    return {
        "event_queue": queue_result.model_dump(),
        "stale_scores": stale_result.model_dump(),
    }


async def run_daily_batch_recalculation(
    timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
    batch_size: int = BATCH_SIZE,
    batch_delay_ms: int = BATCH_DELAY_MS,
    stale_after_hours: int = STALE_AFTER_HOURS,
) -> dict:
    """Queue sweep then stale sweep, bounded by an overall timeout."""
    started = time.monotonic()
    try:
        summary = await asyncio.wait_for(
            _daily_run(batch_size, batch_delay_ms, stale_after_hours),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        await send_alert(
            AlertType.PIPELINE_SCORING_TIMEOUT,
            f"Daily deal scoring exceeded {timeout_seconds}s and was cancelled",
        )
        raise

    summary["total_duration_ms"] = int((time.monotonic() - started) * 1000)
    logger.info(
        "Daily deal scoring complete in %dms", summary["total_duration_ms"],
        extra={"run_type": RunType.DAILY_CRON},
    )
    return summary
