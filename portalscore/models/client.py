"""
Client model - an agency client (or prospect) whose marketing performance is scored.
performance_score / score_updated_at are a cached derivation, refreshed hourly on read.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional
from sqlalchemy import String, Float, Integer, Date, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from portalscore.database import Base


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(
        String(20), default="active", nullable=False
    )  # prospect, onboarding, active, paused, churned

    # Plan
    plan_type: Mapped[Optional[str]] = mapped_column(
        String(50)
    )  # seo, paid_media, ai_optimization, full_service (free-form names normalized on read)
    monthly_spend: Mapped[float] = mapped_column(Float, default=0.0)
    excluded_metrics: Mapped[Optional[list]] = mapped_column(JSONB, default=list)
    start_date: Mapped[Optional[date]] = mapped_column(Date)

    # Performance cache
    growth_stage: Mapped[Optional[str]] = mapped_column(
        String(20)
    )  # seedling, sprouting, blooming, harvesting, prospect
    performance_score: Mapped[Optional[int]] = mapped_column(Integer)
    score_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    stage_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_clients_status", "status"),
        Index("ix_clients_growth_stage", "growth_stage"),
    )

    def __repr__(self) -> str:
        return f"<Client {self.name} status={self.status} score={self.performance_score}>"
