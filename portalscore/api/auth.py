"""
Shared-secret auth dependencies for admin, cron and webhook callers.
"""
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from portalscore.config import get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def require_admin_key(
    x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """Dependency for every admin route. Compares X-Admin-Key in constant time."""
    settings = get_settings()
    if not settings.admin_api_key:
        logger.error("ADMIN_API_KEY not set - rejecting admin request")
        raise HTTPException(status_code=503, detail="Admin access not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=401, detail="Invalid admin key")


async def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> None:
    """Dependency for scheduler-invoked routes: Authorization: Bearer <CRON_SECRET>."""
    settings = get_settings()
    if not settings.cron_secret:
        logger.error("CRON_SECRET not set - rejecting cron request")
        raise HTTPException(status_code=503, detail="Cron access not configured")
    if credentials is None or not hmac.compare_digest(credentials.credentials, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def verify_webhook_token(request: Request) -> bool:
    """
    Check ?token= or X-Webhook-Token against WEBHOOK_SECRET.

    An unset secret accepts traffic with a warning outside production and
    rejects it in production.
    """
    settings = get_settings()
    secret = settings.webhook_secret

    if not secret:
        if settings.app_env == "production":
            logger.error("WEBHOOK_SECRET not set in production - rejecting webhook")
            return False
        logger.warning("WEBHOOK_SECRET not set - accepting webhook without verification")
        return True

    token = request.query_params.get("token", "")
    if not token:
        token = request.headers.get("X-Webhook-Token", "")
    if not token:
        logger.warning("Webhook missing verification token")
        return False

    return hmac.compare_digest(token, secret)
