"""Deal pipeline scoring - recommendations, scoring facts, audit tables, settings.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _recommendation_fk() -> sa.Column:
    return sa.Column(
        "recommendation_id", postgresql.UUID(as_uuid=True),
        sa.ForeignKey("recommendations.id", ondelete="CASCADE"), nullable=False,
    )


def upgrade() -> None:
    # Recommendations (deals)
    op.create_table(
        "recommendations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("created_by", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("revived_at", sa.DateTime(timezone=True)),
        sa.Column("archived_at", sa.DateTime(timezone=True)),
        sa.Column("archive_reason", sa.String(50)),
        sa.Column("archive_notes", sa.Text),
        sa.Column("closed_lost_at", sa.DateTime(timezone=True)),
        sa.Column("closed_lost_reason", sa.Text),
        sa.Column("predicted_tier", sa.String(10)),
        sa.Column("predicted_monthly", sa.Float, server_default="0"),
        sa.Column("predicted_onetime", sa.Float, server_default="0"),
        sa.Column("confidence_score", sa.Integer),
        sa.Column("confidence_percent", sa.Float),
        sa.Column("weighted_monthly", sa.Float),
        sa.Column("weighted_onetime", sa.Float),
        sa.Column("base_score", sa.Float),
        sa.Column("total_penalties", sa.Float),
        sa.Column("total_bonus", sa.Float),
        sa.Column("penalty_email_not_opened", sa.Float),
        sa.Column("penalty_proposal_not_viewed", sa.Float),
        sa.Column("penalty_silence", sa.Float),
        sa.Column("last_scored_at", sa.DateTime(timezone=True)),
        sa.Column("snoozed_until", sa.DateTime(timezone=True)),
        sa.Column("snoozed_at", sa.DateTime(timezone=True)),
        sa.Column("snooze_reason", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_recommendations_client_id", "recommendations", ["client_id"])
    op.create_index("ix_recommendations_status", "recommendations", ["status"])
    op.create_index("ix_recommendations_last_scored_at", "recommendations", ["last_scored_at"])

    # Call scores (one per recommendation)
    op.create_table(
        "recommendation_call_scores",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("budget_clarity", sa.String(20)),
        sa.Column("competition", sa.String(20)),
        sa.Column("engagement", sa.String(20)),
        sa.Column("plan_fit", sa.String(20)),
        sa.Column("created_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("recommendation_id", name="uq_call_scores_recommendation"),
    )

    # Invites
    op.create_table(
        "recommendation_invites",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        sa.Column("email_opened_at", sa.DateTime(timezone=True)),
        sa.Column("viewed_at", sa.DateTime(timezone=True)),
        sa.Column("account_created_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_invites_recommendation_id", "recommendation_invites", ["recommendation_id"])

    # Communications
    op.create_table(
        "recommendation_communications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("channel", sa.String(10), server_default="email"),
        sa.Column("contact_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(30), server_default="manual"),
        sa.Column("external_message_id", sa.String(255)),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_communications_recommendation_contact", "recommendation_communications",
        ["recommendation_id", "contact_at"],
    )
    op.create_index("ix_communications_external_id", "recommendation_communications", ["external_message_id"])

    # Score history
    op.create_table(
        "pipeline_score_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("confidence_score", sa.Integer, nullable=False),
        sa.Column("confidence_percent", sa.Float, nullable=False),
        sa.Column("weighted_monthly", sa.Float, server_default="0"),
        sa.Column("weighted_onetime", sa.Float, server_default="0"),
        sa.Column("trigger_source", sa.String(50), server_default="unknown"),
        sa.Column("breakdown", postgresql.JSONB),
        sa.Column("scored_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_score_history_recommendation_scored", "pipeline_score_history",
        ["recommendation_id", "scored_at"],
    )

    # Pending recalculation queue
    op.create_table(
        "pipeline_score_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_score_events_processed_at", "pipeline_score_events", ["processed_at"])

    # Batch run log
    op.create_table(
        "pipeline_scoring_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("run_type", sa.String(20), nullable=False),
        sa.Column("processed", sa.Integer, server_default="0"),
        sa.Column("succeeded", sa.Integer, server_default="0"),
        sa.Column("failed", sa.Integer, server_default="0"),
        sa.Column("skipped", sa.Integer, server_default="0"),
        sa.Column("duration_ms", sa.Integer, server_default="0"),
        sa.Column("errors", postgresql.JSONB, server_default="[]"),
        sa.Column("completed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_scoring_runs_completed_at", "pipeline_scoring_runs", ["completed_at"])

    # Archive / snooze audit
    op.create_table(
        "pipeline_archive_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(50)),
        sa.Column("notes", sa.Text),
        sa.Column("confidence_score_at_action", sa.Integer),
        sa.Column("performed_by", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_archive_history_recommendation_id", "pipeline_archive_history", ["recommendation_id"])

    op.create_table(
        "pipeline_snooze_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        _recommendation_fk(),
        sa.Column("snoozed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text),
        sa.Column("created_by", sa.String(255)),
    )
    op.create_index("ix_snooze_history_recommendation_id", "pipeline_snooze_history", ["recommendation_id"])

    # Runtime settings (scoring config lives under key pipeline_scoring_config)
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", postgresql.JSONB),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_table("pipeline_snooze_history")
    op.drop_table("pipeline_archive_history")
    op.drop_table("pipeline_scoring_runs")
    op.drop_table("pipeline_score_events")
    op.drop_table("pipeline_score_history")
    op.drop_table("recommendation_communications")
    op.drop_table("recommendation_invites")
    op.drop_table("recommendation_call_scores")
    op.drop_table("recommendations")
