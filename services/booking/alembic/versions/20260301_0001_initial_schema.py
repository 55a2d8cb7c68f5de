"""initial schema

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None

JSONB = postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("booking_number", sa.String(32), nullable=False),
        sa.Column("booking_type", sa.String(20), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("professional_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("selected_subproject_index", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'rfq'")),
        sa.Column("rfq_data", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("customer_blocks", JSONB, nullable=True),
        sa.Column("quote", JSONB, nullable=True),
        sa.Column("post_booking_data", JSONB, nullable=True),
        sa.Column("scheduled_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_execution_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_buffer_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_buffer_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_buffer_unit", sa.String(10), nullable=True),
        sa.Column("scheduled_start_time", sa.String(5), nullable=True),
        sa.Column("scheduled_end_time", sa.String(5), nullable=True),
        sa.Column("actual_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_team_members", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("booking_number"),
        sa.CheckConstraint(
            "(booking_type = 'professional' AND professional_id IS NOT NULL AND project_id IS NULL)"
            " OR (booking_type = 'project' AND project_id IS NOT NULL)",
            name="ck_bookings_type_reference",
        ),
    )
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"], unique=False)
    op.create_index("ix_bookings_professional_id", "bookings", ["professional_id"], unique=False)
    op.create_index("ix_bookings_project_id", "bookings", ["project_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_schedule", "bookings", ["scheduled_start_date", "scheduled_buffer_end_date"], unique=False)

    op.create_table(
        "booking_payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("client_secret", sa.String(255), nullable=True),
        sa.Column("charge_id", sa.String(255), nullable=True),
        sa.Column("transfer_id", sa.String(255), nullable=True),
        sa.Column("platform_commission", sa.Numeric(12, 2), nullable=True),
        sa.Column("professional_payout", sa.Numeric(12, 2), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("authorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispute_id", sa.String(255), nullable=True),
        sa.Column("dispute_reason", sa.String(255), nullable=True),
        sa.Column("dispute_amount_pending", sa.Numeric(12, 2), nullable=True),
        sa.Column("dispute_status", sa.String(64), nullable=True),
        sa.Column("dispute_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refund_source", sa.String(32), nullable=True),
        sa.Column("refund_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("booking_id"),
        sa.UniqueConstraint("payment_intent_id"),
    )

    op.create_table(
        "booking_status_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_booking_status_history_booking_id", "booking_status_history", ["booking_id"], unique=False)

    op.create_table(
        "resources",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False, server_default=sa.text("'professional'")),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("display_name", sa.String(200), nullable=True),
        sa.Column("availability_schedule", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("timezone", sa.String(64), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_resources_owner_id", "resources", ["owner_id"], unique=False)

    op.create_table(
        "resource_blocked_ranges",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("resource_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("block_type", sa.String(20), nullable=False, server_default=sa.text("'manual'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["resource_id"], ["resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("start_date <= end_date", name="ck_blocked_ranges_start_before_end"),
    )
    op.create_index("ix_resource_blocked_ranges_resource_id", "resource_blocked_ranges", ["resource_id"], unique=False)
    op.create_index("ix_resource_blocked_ranges_reason", "resource_blocked_ranges", ["reason"], unique=False)
    op.create_index("ix_resource_blocked_ranges_booking_id", "resource_blocked_ranges", ["booking_id"], unique=False)
    op.create_index(
        "ix_blocked_ranges_resource_interval",
        "resource_blocked_ranges",
        ["resource_id", "start_date", "end_date"],
        unique=False,
    )

    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("professional_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(200), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("execution_duration", JSONB, nullable=True),
        sa.Column("buffer_duration", JSONB, nullable=True),
        sa.Column("preparation_duration", JSONB, nullable=True),
        sa.Column("resources", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("min_resources", sa.Integer(), nullable=True),
        sa.Column("subprojects", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("post_booking_questions", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_professional_id", "projects", ["professional_id"], unique=False)

    op.create_table(
        "payout_accounts",
        sa.Column("professional_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", sa.String(255), nullable=False),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("account_status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("professional_id"),
        sa.UniqueConstraint("account_id"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'processing'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("provider_created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_webhook_events_expires_at", "webhook_events", ["expires_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_webhook_events_expires_at", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("payout_accounts")
    op.drop_index("ix_projects_professional_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_blocked_ranges_resource_interval", table_name="resource_blocked_ranges")
    op.drop_index("ix_resource_blocked_ranges_booking_id", table_name="resource_blocked_ranges")
    op.drop_index("ix_resource_blocked_ranges_reason", table_name="resource_blocked_ranges")
    op.drop_index("ix_resource_blocked_ranges_resource_id", table_name="resource_blocked_ranges")
    op.drop_table("resource_blocked_ranges")
    op.drop_index("ix_resources_owner_id", table_name="resources")
    op.drop_table("resources")
    op.drop_index("ix_booking_status_history_booking_id", table_name="booking_status_history")
    op.drop_table("booking_status_history")
    op.drop_index("ix_bookings_schedule", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_project_id", table_name="bookings")
    op.drop_index("ix_bookings_professional_id", table_name="bookings")
    op.drop_index("ix_bookings_customer_id", table_name="bookings")
    op.drop_table("bookings")
