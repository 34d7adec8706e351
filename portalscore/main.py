"""
Portal scoring service - deal confidence and client performance scores
for the agency admin portal.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from portalscore.config import get_settings
from portalscore.database import dispose_engine
from portalscore.api.router import api_router
from portalscore.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("portalscore")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Portal scoring service starting up (env=%s)", settings.app_env)

    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set - admin endpoints will reject all requests.")
    if not settings.webhook_secret:
        logger.warning("WEBHOOK_SECRET not set - tracking webhooks are unauthenticated.")

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    if settings.pipeline_scorer_enabled:
        from portalscore.workers.pipeline_scorer import run_pipeline_scorer
        worker_tasks.append(asyncio.create_task(run_pipeline_scorer()))
    else:
        logger.info("Pipeline scorer disabled (PIPELINE_SCORER_ENABLED=false)")

    if settings.performance_refresh_enabled:
        from portalscore.workers.performance_refresh import run_performance_refresh
        worker_tasks.append(asyncio.create_task(run_performance_refresh()))
    else:
        logger.info("Performance refresh disabled (PERFORMANCE_REFRESH_ENABLED=false)")

    yield

    logger.info("Shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        done, pending = await asyncio.wait(worker_tasks, timeout=10.0)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    await dispose_engine()
    logger.info("Shutdown complete - all %d workers stopped", len(worker_tasks))


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="Portal Scoring",
        description="Deal confidence and client performance scoring",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            settings.app_base_url,
        ],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-Correlation-ID",
            "X-Admin-Key", "X-Webhook-Token", "Accept", "Origin",
        ],
    )

    # Added after CORS so it runs on every request
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "portalscore.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
