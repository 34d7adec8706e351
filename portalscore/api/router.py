"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from portalscore.api.health import router as health_router
from portalscore.api.pipeline import router as pipeline_router
from portalscore.api.performance import router as performance_router
from portalscore.api.cron import router as cron_router
from portalscore.api.webhooks import router as webhooks_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(pipeline_router)
api_router.include_router(performance_router)
api_router.include_router(cron_router)
api_router.include_router(webhooks_router)
