"""Create bookings, webhook_logs, availability_cache and oauth_tokens

Revision ID: 3b7e2c91d4a0
Revises:
Create Date: 2026-10-19 09:12:31.204117

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op  # type: ignore[attr-defined]
from sync_guesty.config import SCHEMA

# revision identifiers, used by Alembic.
revision = "3b7e2c91d4a0"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_reference", sa.String(32), nullable=False, unique=True),
        sa.Column("property_key", sa.String(32), nullable=False, index=True),
        sa.Column("guest_first_name", sa.String(), nullable=False),
        sa.Column("guest_last_name", sa.String(), nullable=False),
        sa.Column("guest_email", sa.String(), nullable=False),
        sa.Column("guest_phone", sa.String(), nullable=True),
        sa.Column("guest_country", sa.String(), nullable=True),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("check_out_date", sa.Date(), nullable=False),
        sa.Column("adults", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("children", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("booking_source", sa.String(16), nullable=False, server_default="website"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("stripe_payment_intent_id", sa.String(), nullable=True, unique=True),
        sa.Column("stripe_charge_id", sa.String(), nullable=True),
        sa.Column("guesty_reservation_id", sa.String(), nullable=True, unique=True),
        sa.Column("guesty_sync_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("guesty_sync_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("guesty_sync_error", sa.Text(), nullable=True),
        sa.Column("guesty_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.CheckConstraint("check_in_date < check_out_date", name="ck_bookings_stay_dates"),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_bookings_guesty_sync_status", "bookings", ["guesty_sync_status"], schema=SCHEMA
    )

    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("event_id", sa.String(), nullable=True),
        sa.Column("event_type", sa.String(), nullable=False, index=True),
        sa.Column("payload", JSON, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="received"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("notice", sa.Text(), nullable=True),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_webhook_logs_source_event_id", "webhook_logs", ["source", "event_id"], schema=SCHEMA
    )

    op.create_table(
        "availability_cache",
        sa.Column("property_key", sa.String(32), primary_key=True),
        sa.Column("blocked_dates", JSON, nullable=False),
        sa.Column("range_start", sa.String(10), nullable=False),
        sa.Column("range_end", sa.String(10), nullable=False),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )

    op.create_table(
        "oauth_tokens",
        sa.Column("provider", sa.String(32), primary_key=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("oauth_tokens", schema=SCHEMA)
    op.drop_table("availability_cache", schema=SCHEMA)
    op.drop_index("ix_webhook_logs_source_event_id", table_name="webhook_logs", schema=SCHEMA)
    op.drop_table("webhook_logs", schema=SCHEMA)
    op.drop_index("ix_bookings_guesty_sync_status", table_name="bookings", schema=SCHEMA)
    op.drop_table("bookings", schema=SCHEMA)
