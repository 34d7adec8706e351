"""
Operational alerting - raised when a background scoring sweep goes wrong.

Alert channels:
1. Structured log (always) - at ERROR or CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-type cooldowns stored in Redis (survives restarts),
with an in-memory fallback when Redis is unavailable.
"""
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes (default)

# The daily sweep fires once a day; a repeat within the hour is the same incident.
ALERT_COOLDOWN_OVERRIDES: dict[str, int] = {
    "pipeline_scoring_high_error_rate": 3600,
    "pipeline_scoring_timeout": 3600,
}

_local_cooldowns: dict[str, float] = {}  # alert_type -> monotonic expiry


def _get_cooldown_seconds(alert_type: str) -> int:
    return ALERT_COOLDOWN_OVERRIDES.get(alert_type, ALERT_COOLDOWN_SECONDS)


class AlertType:
    """Alert type constants."""
    PIPELINE_SCORING_HIGH_ERROR_RATE = "pipeline_scoring_high_error_rate"
    PIPELINE_SCORING_TIMEOUT = "pipeline_scoring_timeout"
    PIPELINE_SCORING_FAILED = "pipeline_scoring_failed"
    PERFORMANCE_REFRESH_FAILED = "performance_refresh_failed"


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type to prevent alert storms.
    """
    if not await _acquire_cooldown(alert_type):
        return

    from portalscore.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _acquire_cooldown(alert_type: str) -> bool:
    """
    Atomically check-and-set alert cooldown. Returns True if alert should be sent.

    Uses Redis SET NX EX; falls back to an in-memory dict when Redis is down.
    """
    cooldown = _get_cooldown_seconds(alert_type)

    try:
        from portalscore.utils.redis import get_redis, KEY_PREFIX
        redis = await get_redis()
        cooldown_key = f"{KEY_PREFIX}:alert_cooldown:{alert_type}"
        acquired = await redis.set(cooldown_key, "1", nx=True, ex=cooldown)
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        expiry = _local_cooldowns.get(alert_type, 0)
        if now < expiry:
            return False
        _local_cooldowns[alert_type] = now + cooldown
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        from portalscore.config import get_settings
        settings = get_settings()

        webhook_url = settings.alert_webhook_url
        if not webhook_url:
            return

        import httpx

        severity_emoji = {
            "critical": "\U0001f6a8",
            "error": "❌",
            "warning": "⚠️",
        }.get(severity, "ℹ️")
        content = f"{severity_emoji} **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the system
        logger.warning("Failed to send webhook alert: %s", str(e))
