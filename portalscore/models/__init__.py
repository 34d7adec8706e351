"""
Database models - import all models here so Alembic can discover them.
"""
from portalscore.models.client import Client
from portalscore.models.recommendation import (
    Recommendation,
    RecommendationCallScore,
    RecommendationInvite,
    RecommendationCommunication,
)
from portalscore.models.pipeline_score import (
    PipelineScoreHistory,
    PipelineScoreEvent,
    PipelineScoringRun,
)
from portalscore.models.pipeline_history import PipelineArchiveHistory, PipelineSnoozeHistory
from portalscore.models.setting import Setting
from portalscore.models.client_metrics import (
    MetricSnapshot,
    ClientAlert,
    ClientActivity,
    ClientScoreHistory,
)

__all__ = [
    "Client",
    "Recommendation",
    "RecommendationCallScore",
    "RecommendationInvite",
    "RecommendationCommunication",
    "PipelineScoreHistory",
    "PipelineScoreEvent",
    "PipelineScoringRun",
    "PipelineArchiveHistory",
    "PipelineSnoozeHistory",
    "Setting",
    "MetricSnapshot",
    "ClientAlert",
    "ClientActivity",
    "ClientScoreHistory",
]
