"""Initial schema — accounts, scheduling data, billing, compliance requests, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("user_id", postgresql.UUID(as_uuid=True)),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("related_record_id", postgresql.UUID(as_uuid=True), comment="Compliance request or user the entry refers to"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_user_id", "audit_log", ["user_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])

    op.create_table(
        "users",
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20)),
        sa.Column("timezone", sa.String(100)),
        sa.Column("calendar_provider", sa.String(20)),
        sa.Column("password_hash", sa.Text()),
        sa.Column("email_verified", sa.Boolean()),
        sa.Column("email_verification_token", sa.String(255)),
        sa.Column("password_reset_token", sa.String(255)),
        sa.Column("stripe_customer_id", sa.String(255)),
        sa.Column("stripe_subscription_id", sa.String(255)),
        sa.Column("marketing_consent", sa.Boolean()),
        sa.Column("data_processing_consent", sa.Boolean()),
        sa.Column("consent_timestamp", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean()),
        sa.Column("processing_restricted", sa.Boolean()),
        sa.Column("anonymized_at", sa.DateTime(timezone=True), comment="Set once PII has been overwritten"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_anonymized_at", "users", ["anonymized_at"])

    # ── Tables with FK to users ────────────────────────────────────────

    op.create_table(
        "user_settings",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("branding_color", sa.String(7)),
        sa.Column("booking_horizon_days", sa.Integer()),
        sa.Column("meeting_duration", sa.Integer()),
        sa.Column("email_notifications", sa.Boolean()),
        sa.Column("sms_notifications", sa.Boolean()),
        sa.Column("google_analytics_id", sa.String(50)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )

    op.create_table(
        "bookings",
        sa.Column("host_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "attendee_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id"),
            comment="Set when the attendee has an account",
        ),
        sa.Column("attendee_name", sa.String(100), nullable=False),
        sa.Column("attendee_email", sa.String(255), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("calendar_event_id", sa.String(255)),
        sa.Column("status", sa.String(20)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"])
    op.create_index("ix_bookings_attendee_id", "bookings", ["attendee_id"])

    op.create_table(
        "availability_rules",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False, comment="0=Sunday … 6=Saturday"),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("buffer_minutes", sa.Integer()),
        sa.Column("max_bookings_per_day", sa.Integer()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_availability_rules_user_id", "availability_rules", ["user_id"])

    op.create_table(
        "calendar_tokens",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("scope", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_calendar_tokens_user_id", "calendar_tokens", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id")),
        sa.Column("type", sa.String(20), nullable=False, comment="email or sms"),
        sa.Column("channel", sa.String(50)),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("content", sa.Text()),
        sa.Column("status", sa.String(20)),
        sa.Column("sent_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "billing_history",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("stripe_invoice_id", sa.String(255)),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3)),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("description", sa.String(500)),
        sa.Column("billing_reason", sa.String(50)),
        sa.Column("period_start", sa.DateTime(timezone=True)),
        sa.Column("period_end", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_billing_history_user_id", "billing_history", ["user_id"])

    op.create_table(
        "usage_records",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("metric_name", sa.String(100), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit", sa.String(50)),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("idempotency_key", sa.String(255)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_usage_records_user_id", "usage_records", ["user_id"])

    op.create_table(
        "compliance_requests",
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("request_type", sa.String(40), nullable=False, comment="RequestType enum value"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("verification_token", sa.String(255), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "options",
            postgresql.JSONB(astext_type=sa.Text()),
            comment="Intake options: export format, rectifications",
        ),
        sa.Column("export_url", sa.String(500)),
        sa.Column("export_format", sa.String(10)),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("deletion_scheduled_at", sa.DateTime(timezone=True)),
        sa.Column("executed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("verification_token"),
    )
    op.create_index("ix_compliance_requests_user_id", "compliance_requests", ["user_id"])
    op.create_index("ix_compliance_requests_status", "compliance_requests", ["status"])
    op.create_index(
        "ix_compliance_requests_deletion_scheduled_at", "compliance_requests", ["deletion_scheduled_at"]
    )
    op.create_index(
        "ix_compliance_requests_due",
        "compliance_requests",
        ["request_type", "status", "deletion_scheduled_at"],
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("compliance_requests")
    op.drop_table("usage_records")
    op.drop_table("billing_history")
    op.drop_table("notifications")
    op.drop_table("calendar_tokens")
    op.drop_table("availability_rules")
    op.drop_table("bookings")
    op.drop_table("user_settings")
    op.drop_table("users")
    op.drop_table("audit_log")
