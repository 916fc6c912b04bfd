"""Create notification_preferences and notification_jobs.

Revision ID: 001
Revises:
Create Date: 2026-10-18

The users / trainers / clients / appointments tables belong to the
platform schema and already exist; this revision only adds the tables
owned by the notification service.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notification_preferences",
        sa.Column("preference_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("schedule_time", sa.Text(), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.user_id"],
            name=op.f("fk_notification_preferences_user_id_users"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("preference_id", name=op.f("pk_notification_preferences")),
        sa.UniqueConstraint(
            "user_id",
            "notification_type",
            "channel",
            name=op.f("uq_notification_preferences_user_id"),
        ),
    )
    op.create_index(
        "idx_notification_preferences_type",
        "notification_preferences",
        ["notification_type", "enabled"],
        unique=False,
    )

    op.create_table(
        "notification_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("recipient", sa.Text(), nullable=False),
        sa.Column("subject", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("dedup_key", sa.Text(), nullable=True),
        sa.Column("scheduled_for", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("max_attempts", sa.Integer(), server_default="3", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.Text(), nullable=True),
        sa.Column("locked_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("sent_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_notification_jobs")),
        sa.CheckConstraint(
            "attempts <= max_attempts",
            name=op.f("ck_notification_jobs_attempts_within_budget"),
        ),
        sa.CheckConstraint(
            "(status = 'sent') = (sent_at IS NOT NULL)",
            name=op.f("ck_notification_jobs_sent_at_iff_sent"),
        ),
    )
    op.create_index(
        "idx_notification_jobs_due",
        "notification_jobs",
        ["channel", "status", "scheduled_for"],
        unique=False,
    )
    op.create_index(
        "idx_notification_jobs_user_created",
        "notification_jobs",
        ["user_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "uq_notification_jobs_dedup_active",
        "notification_jobs",
        ["dedup_key", "user_id", "channel"],
        unique=True,
        postgresql_where=sa.text("status <> 'dead'"),
    )


def downgrade() -> None:
    op.drop_index("uq_notification_jobs_dedup_active", table_name="notification_jobs")
    op.drop_index("idx_notification_jobs_user_created", table_name="notification_jobs")
    op.drop_index("idx_notification_jobs_due", table_name="notification_jobs")
    op.drop_table("notification_jobs")
    op.drop_index("idx_notification_preferences_type", table_name="notification_preferences")
    op.drop_table("notification_preferences")
