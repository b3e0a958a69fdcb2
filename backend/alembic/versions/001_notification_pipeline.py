"""Notification pipeline: notifications, delivery_jobs, preference_profiles, notification_templates,
scheduler_leases.

delivery_jobs carries the state-machine invariants as check constraints; (status, scheduled_for) backs
the per-tick selection of due jobs. dedupe_key is unique so digest generation is idempotent per period.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=True),
        sa.Column("type", sa.String(48), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("priority", sa.String(8), nullable=False, server_default="medium"),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("data", _JSON, nullable=False),
        sa.CheckConstraint("NOT is_read OR read_at IS NOT NULL", name="ck_notifications_read_at"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_expires_at", "notifications", ["expires_at"])
    op.create_index("ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"])
    op.create_index("ix_notifications_recipient_unread", "notifications", ["recipient_id", "is_read"])

    op.create_table(
        "delivery_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("recipient_email", sa.String(320), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False, server_default="email"),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("priority", sa.String(8), nullable=False, server_default="medium"),
        sa.Column("priority_rank", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("scheduled_for", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("template_name", sa.String(64), nullable=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("dedupe_key", sa.String(160), nullable=True),
        sa.Column("provider_message_id", sa.String(255), nullable=True),
        sa.Column("notification_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("dedupe_key", name="uq_delivery_jobs_dedupe_key"),
        sa.CheckConstraint("attempts >= 0 AND attempts <= max_attempts", name="ck_delivery_jobs_attempts"),
        sa.CheckConstraint(
            "status <> 'sent' OR (sent_at IS NOT NULL AND failure_reason IS NULL)",
            name="ck_delivery_jobs_sent",
        ),
        sa.CheckConstraint("status <> 'failed' OR attempts = max_attempts", name="ck_delivery_jobs_failed"),
    )
    op.create_index("ix_delivery_jobs_status_scheduled", "delivery_jobs", ["status", "scheduled_for"])
    op.create_index("ix_delivery_jobs_recipient_id", "delivery_jobs", ["recipient_id"])
    op.create_index("ix_delivery_jobs_category", "delivery_jobs", ["category"])
    op.create_index("ix_delivery_jobs_notification_id", "delivery_jobs", ["notification_id"])

    op.create_table(
        "preference_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_categories", _JSON, nullable=False),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("push_categories", _JSON, nullable=False),
        sa.Column("in_app_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("in_app_categories", _JSON, nullable=False),
        sa.Column("frequency", sa.String(16), nullable=False, server_default="immediate"),
        sa.Column("quiet_hours_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("quiet_start", sa.String(5), nullable=False, server_default="22:00"),
        sa.Column("quiet_end", sa.String(5), nullable=False, server_default="08:00"),
        sa.Column("quiet_timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_preference_profiles_user_id", "preference_profiles", ["user_id"], unique=True)
    op.create_index("ix_preference_profiles_frequency", "preference_profiles", ["frequency"])

    op.create_table(
        "notification_templates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("type", sa.String(48), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("category", sa.String(16), nullable=False),
        sa.Column("email_subject", sa.String(255), nullable=True),
        sa.Column("email_template", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_templates_type", "notification_templates", ["type"], unique=True)

    op.create_table(
        "scheduler_leases",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("owner", sa.String(128), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("scheduler_leases")
    op.drop_index("ix_notification_templates_type", table_name="notification_templates")
    op.drop_table("notification_templates")
    op.drop_index("ix_preference_profiles_frequency", table_name="preference_profiles")
    op.drop_index("ix_preference_profiles_user_id", table_name="preference_profiles")
    op.drop_table("preference_profiles")
    op.drop_index("ix_delivery_jobs_notification_id", table_name="delivery_jobs")
    op.drop_index("ix_delivery_jobs_category", table_name="delivery_jobs")
    op.drop_index("ix_delivery_jobs_recipient_id", table_name="delivery_jobs")
    op.drop_index("ix_delivery_jobs_status_scheduled", table_name="delivery_jobs")
    op.drop_table("delivery_jobs")
    op.drop_index("ix_notifications_recipient_unread", table_name="notifications")
    op.drop_index("ix_notifications_recipient_created", table_name="notifications")
    op.drop_index("ix_notifications_expires_at", table_name="notifications")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_recipient_id", table_name="notifications")
    op.drop_table("notifications")
