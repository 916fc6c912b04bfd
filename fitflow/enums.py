"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class NotificationType(str, enum.Enum):
    daily_summary = "daily_summary"
    appointment_reminder = "appointment_reminder"
    payment_receipt = "payment_receipt"
    session_summary = "session_summary"
    marketing = "marketing"


class Channel(str, enum.Enum):
    email = "email"
    sms = "sms"
    push = "push"


class JobStatus(str, enum.Enum):
    pending = "pending"
    in_flight = "in_flight"
    sent = "sent"
    failed = "failed"
    dead = "dead"
    cancelled = "cancelled"


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


# =====================================================
# SQLAlchemy Enum Types
# Stored as VARCHAR so the same schema works on every dialect
# =====================================================

notification_type_enum = SQLEnum(
    NotificationType, name="notification_type", native_enum=False, length=32
)
channel_enum = SQLEnum(Channel, name="notification_channel", native_enum=False, length=16)
job_status_enum = SQLEnum(
    JobStatus, name="notification_job_status", native_enum=False, length=16
)
appointment_status_enum = SQLEnum(
    AppointmentStatus, name="appointment_status", native_enum=False, length=16
)
