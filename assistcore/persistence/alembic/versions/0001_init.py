"""init

Revision ID: 0001_init
Revises: 
Create Date: 2026-10-17 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

from assistcore.core.config import EMBED_DIM

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Ensure pgvector is enabled for every environment, not just manual setup.
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "account_plans",
        sa.Column("account_id", sa.String(), primary_key=True),
        sa.Column("tier", sa.String(), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        # NULL means unlimited daily calls.
        sa.Column("daily_call_limit", sa.Integer(), nullable=True),
        sa.Column("storage_mb", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("features_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "usage_counters",
        sa.Column("account_id", sa.String(), primary_key=True),
        sa.Column("usage_date", sa.Date(), primary_key=True),
        sa.Column("total_calls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # Retention pruning scans by day across accounts.
    op.create_index("ix_usage_counters_usage_date", "usage_counters", ["usage_date"])

    op.create_table(
        "usage_breakdowns",
        sa.Column("account_id", sa.String(), primary_key=True),
        sa.Column("usage_date", sa.Date(), primary_key=True),
        sa.Column("call_type", sa.String(), primary_key=True),
        sa.Column("calls", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_usage_breakdowns_usage_date", "usage_breakdowns", ["usage_date"])

    op.create_table(
        "memories",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("memory_type", sa.String(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(EMBED_DIM), nullable=False),
        sa.Column("importance_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("memory_date", sa.Date(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_memories_account_created", "memories", ["account_id", "created_at"])
    op.create_index("ix_memories_account_type", "memories", ["account_id", "memory_type"])
    # HNSW keeps cosine nearest-neighbour lookups fast as memories grow.
    op.execute(
        "CREATE INDEX ix_memories_embedding_hnsw ON memories "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    op.create_table(
        "risk_alerts",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("alert_type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", sa.Integer(), nullable=False),
        sa.Column(
            "related_schedule_ids",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("suggested_action", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("alert_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("severity BETWEEN 1 AND 5", name="ck_risk_alerts_severity"),
    )
    op.create_index("ix_risk_alerts_account_created", "risk_alerts", ["account_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_risk_alerts_account_created", table_name="risk_alerts")
    op.drop_table("risk_alerts")
    op.execute("DROP INDEX IF EXISTS ix_memories_embedding_hnsw")
    op.drop_index("ix_memories_account_type", table_name="memories")
    op.drop_index("ix_memories_account_created", table_name="memories")
    op.drop_table("memories")
    op.drop_index("ix_usage_breakdowns_usage_date", table_name="usage_breakdowns")
    op.drop_table("usage_breakdowns")
    op.drop_index("ix_usage_counters_usage_date", table_name="usage_counters")
    op.drop_table("usage_counters")
    op.drop_table("account_plans")
