"""
Shared Redis connection - alert cooldowns and worker heartbeats.
Redis is never on the scoring path: callers catch failures and carry on.
"""
import logging
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

KEY_PREFIX = "portalscore"

# Redis client (lazily initialized)
_redis_client = None


async def get_redis():
    """Get or create Redis connection."""
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis
        from portalscore.config import get_settings
        _redis_client = aioredis.from_url(
            get_settings().redis_url,
            decode_responses=True,
        )
    return _redis_client


def worker_health_key(worker_name: str) -> str:
    return f"{KEY_PREFIX}:worker_health:{worker_name}"


async def write_heartbeat(worker_name: str, ttl_seconds: int) -> None:
    """Store a worker heartbeat timestamp. Failures are logged at debug and ignored."""
    try:
        redis = await get_redis()
        await redis.set(
            worker_health_key(worker_name),
            datetime.now(timezone.utc).isoformat(),
            ex=ttl_seconds,
        )
    except Exception as e:
        logger.debug("Heartbeat write failed for %s: %s", worker_name, str(e))
