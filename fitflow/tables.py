"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB

from .enums import (
    appointment_status_enum,
    channel_enum,
    job_status_enum,
    notification_type_enum,
)

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


# =====================================================
# 1. USERS
# =====================================================
users = Table(
    "users",
    metadata,
    Column("user_id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("email", Text),
    Column("phone", Text),  # E.164, e.g. "+14165550100"
    Column("push_token", Text),  # Device token for push delivery
    Column("timezone", Text),  # IANA id, e.g. "America/Toronto"
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    Index("idx_users_email", "email"),
)


# =====================================================
# 2. TRAINERS
# =====================================================
trainers = Table(
    "trainers",
    metadata,
    Column("trainer_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("business_name", Text),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id"),
)


# =====================================================
# 3. CLIENTS
# =====================================================
clients = Table(
    "clients",
    metadata,
    Column("client_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id"),
)


# =====================================================
# 4. APPOINTMENTS
# =====================================================
appointments = Table(
    "appointments",
    metadata,
    Column("appointment_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "trainer_id",
        Integer,
        ForeignKey("trainers.trainer_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("class_type", Text, nullable=False),  # e.g. "Personal Training"
    Column("location", Text),  # Studio name or "Virtual"
    Column("start_time", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True), nullable=False),
    Column("status", appointment_status_enum, nullable=False, server_default="scheduled"),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Index("idx_appointments_trainer_start", "trainer_id", "start_time"),
    Index("idx_appointments_start_time", "start_time"),
)


# =====================================================
# 5. APPOINTMENT_PARTICIPANTS
# =====================================================
appointment_participants = Table(
    "appointment_participants",
    metadata,
    Column(
        "appointment_id",
        Integer,
        ForeignKey("appointments.appointment_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "client_id",
        Integer,
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("attended", Boolean),
)


# =====================================================
# 6. SESSION_NOTES
# =====================================================
session_notes = Table(
    "session_notes",
    metadata,
    Column("note_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "client_id",
        Integer,
        ForeignKey("clients.client_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "trainer_id",
        Integer,
        ForeignKey("trainers.trainer_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("session_date", Date, nullable=False),
    Column("subjective", Text),
    Column("objective", Text),
    Column("assessment", Text),
    Column("plan", Text),
    Column("private_notes", Text),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Index("idx_session_notes_client_date", "client_id", "session_date"),
)


# =====================================================
# 7. NOTIFICATION_PREFERENCES
# =====================================================
# Owned by the preference store; the notification pipeline only reads it.
notification_preferences = Table(
    "notification_preferences",
    metadata,
    Column("preference_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "user_id",
        Integer,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("notification_type", notification_type_enum, nullable=False),
    Column("channel", channel_enum, nullable=False),
    Column("enabled", Boolean, nullable=False, server_default=true()),
    Column("schedule_time", Text),  # "HH:MM" local wall-clock time
    Column("timezone", Text),  # IANA id
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    UniqueConstraint("user_id", "notification_type", "channel"),
    Index("idx_notification_preferences_type", "notification_type", "enabled"),
)


# =====================================================
# 8. NOTIFICATION_JOBS
# =====================================================
# Durable ledger of every notification job. Rows are never deleted.
notification_jobs = Table(
    "notification_jobs",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True),
    Column("user_id", Integer, nullable=False),
    Column("notification_type", notification_type_enum, nullable=False),
    Column("channel", channel_enum, nullable=False),
    Column("recipient", Text, nullable=False),
    Column("subject", Text),
    Column("content", Text, nullable=False),
    Column("metadata", JSONType, nullable=False),
    # Trigger idempotency key, e.g. "appointment_reminder:17:24h"
    Column("dedup_key", Text),
    Column("scheduled_for", DateTime(timezone=True), nullable=False),
    Column("status", job_status_enum, nullable=False),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("max_attempts", Integer, nullable=False, server_default="3"),
    Column("last_error", Text),
    Column("provider_message_id", Text),
    Column("locked_at", DateTime(timezone=True)),
    Column("sent_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("idx_notification_jobs_due", "channel", "status", "scheduled_for"),
    Index("idx_notification_jobs_user_created", "user_id", "created_at"),
    # At most one live job per trigger event and channel
    Index(
        "uq_notification_jobs_dedup_active",
        "dedup_key",
        "user_id",
        "channel",
        unique=True,
        postgresql_where=text("status <> 'dead'"),
        sqlite_where=text("status <> 'dead'"),
    ),
    CheckConstraint("attempts <= max_attempts", name="attempts_within_budget"),
    CheckConstraint("(status = 'sent') = (sent_at IS NOT NULL)", name="sent_at_iff_sent"),
)
