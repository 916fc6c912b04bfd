"""
Notification delivery pipeline for email, SMS and push.

Public API:
    init_pipeline(...) / get_pipeline() - Process-wide pipeline
    NotificationPipeline.queue_notification(spec) - Queue one job
    NotificationPipeline.notify_user(...) - One job per enabled channel
    init_scheduler(pipeline) / shutdown_scheduler() - Recurring triggers

High-level actions:
    queue_notification(...) - Queue on an explicit channel
    notify_payment_receipt(...) - Payment receipt
    notify_session_summary(note_id) - Session summary for the client
    notify_appointment_booked(appointment_id) - Booking confirmation
    notify_progress_insights(client_id) - Progress across recent sessions
    notify_test(user_id, type, channel) - Test message on one channel
    cancel_notification(job_id) - Cancel a pending job
"""

from .actions import (
    cancel_notification,
    notify_appointment_booked,
    notify_payment_receipt,
    notify_progress_insights,
    notify_session_summary,
    notify_test,
    queue_notification,
)
from .errors import (
    DuplicateJob,
    Exhausted,
    GenerationUnavailable,
    InvalidJob,
    NotificationError,
    StaleTransition,
    TransportError,
)
from .jobs import JobSpec, JobStore, NotificationJob
from .pipeline import NotificationPipeline, get_pipeline, init_pipeline, shutdown_pipeline
from .scheduler import (
    init_scheduler,
    schedule_appointment_reminders,
    schedule_daily_summaries,
    shutdown_scheduler,
)

__all__ = [
    # Pipeline
    "NotificationPipeline",
    "init_pipeline",
    "get_pipeline",
    "shutdown_pipeline",
    "JobSpec",
    "JobStore",
    "NotificationJob",
    # Scheduler
    "init_scheduler",
    "shutdown_scheduler",
    "schedule_daily_summaries",
    "schedule_appointment_reminders",
    # High-level actions
    "queue_notification",
    "notify_payment_receipt",
    "notify_session_summary",
    "notify_appointment_booked",
    "notify_progress_insights",
    "notify_test",
    "cancel_notification",
    # Errors
    "NotificationError",
    "InvalidJob",
    "DuplicateJob",
    "TransportError",
    "StaleTransition",
    "Exhausted",
    "GenerationUnavailable",
]
