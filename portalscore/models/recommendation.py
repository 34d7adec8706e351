"""
Recommendation (deal) model and the facts the confidence engine scores from.

Lifecycle: draft -> sent -> accepted | declined | closed_lost.
Archived deals keep their status; archived_at marks them out of the active pipeline.
Confidence fields are derived: only the score writer (and the revive-with-reset
flow, which clears them) ever sets them.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Float, Integer, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from portalscore.database import Base

TERMINAL_STATUSES = ("accepted", "closed_lost")
SCOREABLE_STATUSES = ("sent", "declined")


class Recommendation(Base):
    __tablename__ = "recommendations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(255))  # rep

    status: Mapped[str] = mapped_column(
        String(20), default="draft", nullable=False
    )  # draft, sent, declined, accepted, closed_lost
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    revived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archive_reason: Mapped[Optional[str]] = mapped_column(String(50))
    archive_notes: Mapped[Optional[str]] = mapped_column(Text)
    closed_lost_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    closed_lost_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Pricing
    predicted_tier: Mapped[Optional[str]] = mapped_column(String(10))  # good, better, best
    predicted_monthly: Mapped[float] = mapped_column(Float, default=0.0)
    predicted_onetime: Mapped[float] = mapped_column(Float, default=0.0)

    # Derived confidence (last run)
    confidence_score: Mapped[Optional[int]] = mapped_column(Integer)
    confidence_percent: Mapped[Optional[float]] = mapped_column(Float)
    weighted_monthly: Mapped[Optional[float]] = mapped_column(Float)
    weighted_onetime: Mapped[Optional[float]] = mapped_column(Float)
    base_score: Mapped[Optional[float]] = mapped_column(Float)
    total_penalties: Mapped[Optional[float]] = mapped_column(Float)
    total_bonus: Mapped[Optional[float]] = mapped_column(Float)
    penalty_email_not_opened: Mapped[Optional[float]] = mapped_column(Float)
    penalty_proposal_not_viewed: Mapped[Optional[float]] = mapped_column(Float)
    penalty_silence: Mapped[Optional[float]] = mapped_column(Float)
    last_scored_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Snooze
    snoozed_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    snoozed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    snooze_reason: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_recommendations_client_id", "client_id"),
        Index("ix_recommendations_status", "status"),
        Index("ix_recommendations_last_scored_at", "last_scored_at"),
    )

    @property
    def scoring_anchor(self) -> Optional[datetime]:
        """Start of the deal's current pipeline life: revival resets the clock."""
        return self.revived_at or self.sent_at

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Recommendation {str(self.id)[:8]} status={self.status} confidence={self.confidence_score}>"


class RecommendationCallScore(Base):
    """Rep-entered discovery call assessment. One row per recommendation."""
    __tablename__ = "recommendation_call_scores"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    recommendation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False
    )
    budget_clarity: Mapped[Optional[str]] = mapped_column(String(20))  # clear, vague, none, no_budget
    competition: Mapped[Optional[str]] = mapped_column(String(20))  # none, some, many
    engagement: Mapped[Optional[str]] = mapped_column(String(20))  # high, medium, low
    plan_fit: Mapped[Optional[str]] = mapped_column(String(20))  # strong, medium, weak, poor
    created_by: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("recommendation_id", name="uq_call_scores_recommendation"),
    )


class RecommendationInvite(Base):
    """
    A proposal invite sent to one contact. Milestone timestamps are
    first-write-wins: later tracking events never move them.
    """
    __tablename__ = "recommendation_invites"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    recommendation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    email_opened_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    account_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_invites_recommendation_id", "recommendation_id"),
    )


class RecommendationCommunication(Base):
    """Inbound/outbound contact with the prospect, logged by reps or CRM sync."""
    __tablename__ = "recommendation_communications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    recommendation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)  # inbound, outbound
    channel: Mapped[str] = mapped_column(
        String(10), default="email"
    )  # email, sms, chat, call, other
    contact_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(
        String(30), default="manual"
    )  # highlevel_webhook, manual, system
    external_message_id: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_communications_recommendation_contact", "recommendation_id", "contact_at"),
        Index("ix_communications_external_id", "external_message_id"),
    )
