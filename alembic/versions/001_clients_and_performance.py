"""Clients and client performance tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Clients
    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("contact_email", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("plan_type", sa.String(50)),
        sa.Column("monthly_spend", sa.Float, server_default="0"),
        sa.Column("excluded_metrics", postgresql.JSONB, server_default="[]"),
        sa.Column("start_date", sa.Date),
        sa.Column("growth_stage", sa.String(20)),
        sa.Column("performance_score", sa.Integer),
        sa.Column("score_updated_at", sa.DateTime(timezone=True)),
        sa.Column("stage_updated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_clients_status", "clients", ["status"])
    op.create_index("ix_clients_growth_stage", "clients", ["growth_stage"])

    # Metric snapshots
    op.create_table(
        "metric_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("metric_type", sa.String(30), nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date),
        sa.Column("value", sa.Float, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_metric_snapshots_client_type_period", "metric_snapshots",
        ["client_id", "metric_type", "period_start"],
    )

    # Client alerts
    op.create_table(
        "client_alerts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("alert_type", sa.String(30), server_default="other_update"),
        sa.Column("status", sa.String(20), server_default="draft"),
        sa.Column("highlight_type", sa.String(20)),
        sa.Column("title", sa.String(255)),
        sa.Column("message", sa.Text),
        sa.Column("published_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_client_alerts_client_published", "client_alerts", ["client_id", "published_at"])

    # Client activity
    op.create_table(
        "client_activity",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_client_activity_client_created", "client_activity", ["client_id", "created_at"])

    # Client score history
    op.create_table(
        "client_score_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("score", sa.Integer, nullable=False),
        sa.Column("growth_stage", sa.String(20)),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_client_score_history_client_recorded", "client_score_history",
        ["client_id", "recorded_at"],
    )


def downgrade() -> None:
    op.drop_table("client_score_history")
    op.drop_table("client_activity")
    op.drop_table("client_alerts")
    op.drop_table("metric_snapshots")
    op.drop_table("clients")
