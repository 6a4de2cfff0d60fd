"""Initial batch lifecycle schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── batch_records ─────────────────────────────────────────
    op.create_table(
        "batch_records",
        sa.Column("batch_id", sa.String(64), primary_key=True),
        sa.Column("farmer_id", sa.String(64), nullable=False),
        sa.Column("distributor_id", sa.String(64)),
        sa.Column("crop_type", sa.String(100), nullable=False),
        sa.Column("total_quantity", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("avg_quality_score", sa.Float()),
        sa.Column("harvest_date", sa.Date()),
        sa.Column("status", sa.String(40), server_default="PLANTED"),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rejected_by", sa.String(64)),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_batch_records_farmer_id", "batch_records", ["farmer_id"])
    op.create_index("ix_batch_records_distributor_id", "batch_records", ["distributor_id"])
    op.create_index("ix_batch_records_status", "batch_records", ["status"])
    op.create_index("ix_batch_records_created_at", "batch_records", ["created_at"])

    # ── crops ─────────────────────────────────────────────────
    op.create_table(
        "crops",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "batch_id", sa.String(64),
            sa.ForeignKey("batch_records.batch_id"), nullable=False,
        ),
        sa.Column("farmer_id", sa.String(64), nullable=False),
        sa.Column("crop_name", sa.String(100)),
        sa.Column("quantity", sa.String(32)),
        sa.Column("location", sa.String(255)),
        sa.Column("expected_harvest_date", sa.Date()),
        sa.Column("quality_grade", sa.String(20)),
        sa.Column("price", sa.Numeric(12, 2)),
        sa.Column("status", sa.String(40)),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_crops_batch_id", "crops", ["batch_id"])

    # ── batch_traces (append-only) ────────────────────────────
    op.create_table(
        "batch_traces",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("farmer_id", sa.String(64)),
        sa.Column("label", sa.String(500), nullable=False),
        sa.Column("changed_by", sa.String(64)),
        sa.Column("timestamp", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_batch_traces_batch_id", "batch_traces", ["batch_id"])
    op.create_index("ix_batch_traces_timestamp", "batch_traces", ["timestamp"])

    # ── listings ──────────────────────────────────────────────
    op.create_table(
        "listings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("crop_id", sa.String(36), nullable=False),
        sa.Column("farmer_id", sa.String(64), nullable=False),
        sa.Column("distributor_id", sa.String(64)),
        sa.Column("quantity", sa.Numeric(12, 2), server_default="0"),
        sa.Column("base_price", sa.Numeric(12, 2), server_default="0"),
        sa.Column("price", sa.Numeric(12, 2), server_default="0"),
        sa.Column("farmer_profit", sa.Numeric(12, 2), server_default="0"),
        sa.Column("distributor_profit", sa.Numeric(12, 2), server_default="0"),
        sa.Column("status", sa.String(20), server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime()),
        sa.UniqueConstraint("batch_id", "crop_id", name="uq_listings_batch_crop"),
    )
    op.create_index("ix_listings_batch_id", "listings", ["batch_id"])
    op.create_index("ix_listings_farmer_id", "listings", ["farmer_id"])
    op.create_index("ix_listings_distributor_id", "listings", ["distributor_id"])
    op.create_index("ix_listings_status", "listings", ["status"])

    # ── notifications ─────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("user_role", sa.String(20), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text()),
        sa.Column("notification_type", sa.String(40), nullable=False),
        sa.Column("entity_id", sa.String(64)),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    # ── outbox_events ─────────────────────────────────────────
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("delivered_at", sa.DateTime()),
    )
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])
    op.create_index("ix_outbox_events_created_at", "outbox_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("notifications")
    op.drop_table("listings")
    op.drop_table("batch_traces")
    op.drop_table("crops")
    op.drop_table("batch_records")
