"""
Deal confidence audit tables: per-run score snapshots, the pending
recalculation queue fed by tracking webhooks, and batch run logs.
All three are append-only from the engine's point of view.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Float, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from portalscore.database import Base


class PipelineScoreHistory(Base):
    __tablename__ = "pipeline_score_history"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    recommendation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False
    )
    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_percent: Mapped[float] = mapped_column(Float, nullable=False)
    weighted_monthly: Mapped[float] = mapped_column(Float, default=0.0)
    weighted_onetime: Mapped[float] = mapped_column(Float, default=0.0)
    trigger_source: Mapped[str] = mapped_column(String(50), default="unknown")
    breakdown: Mapped[Optional[dict]] = mapped_column(JSONB)
    scored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_score_history_recommendation_scored", "recommendation_id", "scored_at"),
    )

    def __repr__(self) -> str:
        return f"<PipelineScoreHistory {self.confidence_score} trigger={self.trigger_source}>"


class PipelineScoreEvent(Base):
    """Pending recalculation request. processed_at NULL means not yet drained."""
    __tablename__ = "pipeline_score_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    recommendation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    triggered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_score_events_processed_at", "processed_at"),
    )


class PipelineScoringRun(Base):
    __tablename__ = "pipeline_scoring_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    run_type: Mapped[str] = mapped_column(String(20), nullable=False)  # daily_cron, event_queue, manual
    processed: Mapped[int] = mapped_column(Integer, default=0)
    succeeded: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    errors: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_scoring_runs_completed_at", "completed_at"),
    )

    def __repr__(self) -> str:
        return f"<PipelineScoringRun {self.run_type} {self.succeeded}/{self.processed}>"
