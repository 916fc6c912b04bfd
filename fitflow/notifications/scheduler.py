"""
APScheduler-based triggers for scheduled notifications.

Two recurring jobs run on the pipeline's event loop:

    daily_summaries        once a day, queues tomorrow's schedule for trainers
    appointment_reminders  hourly, queues reminders for appointments entering
                           a lead-time window

The triggers only create jobs (scheduled_for = the local send instant); the
delivery queue holds them until they are due. Both triggers are idempotent
through dedup keys, so a double run or an overlapping window never creates a
second live job for the same event.
"""

import logging
from datetime import datetime, timedelta, timezone

import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fitflow.config import (
    get_daily_summary_default_time,
    get_daily_summary_lookahead_days,
    get_daily_summary_trigger_hour,
    get_reminder_interval_minutes,
    get_reminder_lead_times,
    is_ai_summaries_enabled,
)
from fitflow.database import get_connection
from fitflow.enums import NotificationType
from fitflow.notifications.context import (
    get_client_history,
    get_daily_summary_context,
    trainer_display_name,
)
from fitflow.notifications.pipeline import NotificationPipeline
from fitflow.notifications.preferences import (
    get_users_with_enabled_preference,
    resolve_preferences,
)
from fitflow.notifications.summary import (
    TextGenerator,
    build_appointment_reminder,
    build_daily_summary,
    default_generator,
)
from fitflow.queries import get_display_name, get_upcoming_appointments, get_user_contact
from fitflow.timezone import ensure_utc, local_date, next_send_time, utcnow

logger = logging.getLogger(__name__)


_scheduler: AsyncIOScheduler | None = None


# =============================================================================
# Scheduler initialization and shutdown
# =============================================================================


def init_scheduler(pipeline: NotificationPipeline) -> AsyncIOScheduler:
    """
    Initialize and start the APScheduler with the notification triggers.

    Must be called from a running event loop.
    """
    global _scheduler

    if _scheduler is not None:
        return _scheduler

    _scheduler = AsyncIOScheduler(
        timezone=timezone.utc,
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 3600,  # Allow 1 hour late execution
        },
    )

    _scheduler.add_job(
        _run_daily_summaries,
        trigger="cron",
        hour=get_daily_summary_trigger_hour(),
        minute=0,
        id="daily_summaries",
        replace_existing=True,
        kwargs={"pipeline": pipeline},
    )
    _scheduler.add_job(
        _run_appointment_reminders,
        trigger="interval",
        minutes=get_reminder_interval_minutes(),
        id="appointment_reminders",
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc),
        kwargs={"pipeline": pipeline},
    )

    _scheduler.start()
    logger.info("Notification scheduler started")
    return _scheduler


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Notification scheduler stopped")


def get_trigger_generator() -> TextGenerator | None:
    """LLM generator for trigger runs, or None when AI summaries are disabled."""
    return default_generator() if is_ai_summaries_enabled() else None


async def _run_daily_summaries(pipeline: NotificationPipeline) -> None:
    await schedule_daily_summaries(pipeline, generate=get_trigger_generator())


async def _run_appointment_reminders(pipeline: NotificationPipeline) -> None:
    await schedule_appointment_reminders(pipeline, generate=get_trigger_generator())


# =============================================================================
# Daily recurring-summary trigger
# =============================================================================


def daily_summary_dedup_key(user_id: int, send_date) -> str:
    return f"daily_summary:{user_id}:{send_date.isoformat()}"


async def schedule_daily_summaries(
    pipeline: NotificationPipeline,
    now: datetime | None = None,
    generate: TextGenerator | None = None,
) -> dict[str, int]:
    """
    Queue daily summaries for every trainer with the notification enabled.

    Each enabled channel is scheduled at its own local send time (the
    channel's schedule, else DAILY_SUMMARY_DEFAULT_TIME in the user's
    timezone). The summary covers the day after the trigger run's local date,
    so a 07:00 send the next morning covers that same day.

    Returns:
        {"created": jobs created, "skipped": channels/users skipped}
    """
    now = ensure_utc(now or utcnow())
    counts = {"created": 0, "skipped": 0}

    try:
        async with get_connection(pipeline.engine) as conn:
            user_ids = await get_users_with_enabled_preference(
                conn, NotificationType.daily_summary
            )
    except Exception as e:
        logger.error(f"Failed to load daily summary recipients: {e}")
        sentry_sdk.capture_exception(e)
        return counts

    for user_id in user_ids:
        try:
            created, skipped = await _schedule_daily_summary_for_user(
                pipeline, user_id, now, generate
            )
        except Exception as e:
            logger.exception(f"Failed to schedule daily summary for user {user_id}")
            sentry_sdk.capture_exception(e)
            created, skipped = 0, 1
        counts["created"] += created
        counts["skipped"] += skipped

    logger.info(
        f"Daily summaries: created {counts['created']} job(s), skipped {counts['skipped']}"
    )
    return counts


async def _schedule_daily_summary_for_user(
    pipeline: NotificationPipeline,
    user_id: int,
    now: datetime,
    generate: TextGenerator | None,
) -> tuple[int, int]:
    default_time = get_daily_summary_default_time()
    lookahead = timedelta(days=get_daily_summary_lookahead_days())

    # Work out, per channel, when to send and which day to cover
    plans = []
    contexts = {}
    skipped = 0
    async with get_connection(pipeline.engine) as conn:
        preferences = await resolve_preferences(conn, user_id, NotificationType.daily_summary)
        user = await get_user_contact(conn, user_id)
        if not user:
            return 0, 1

        for preference in preferences:
            schedule = preference.schedule
            send_time = schedule.time if schedule else default_time
            tz_name = (schedule.timezone if schedule else None) or user.get("timezone")

            ready_at = next_send_time(send_time, tz_name, now)
            send_date = local_date(ready_at, tz_name)
            dedup_key = daily_summary_dedup_key(user_id, send_date)
            if await pipeline.store.has_active_job(dedup_key, user_id, preference.channel):
                logger.debug(f"{dedup_key} already queued for {preference.channel.value}")
                skipped += 1
                continue

            summary_day = local_date(now, tz_name) + lookahead
            if (summary_day, tz_name) not in contexts:
                contexts[(summary_day, tz_name)] = await get_daily_summary_context(
                    conn, user_id, summary_day, tz_name
                )
            if contexts[(summary_day, tz_name)] is None:
                logger.debug(f"User {user_id} has nothing to summarise for {summary_day}")
                skipped += 1
                continue

            plans.append((preference, ready_at, dedup_key, summary_day, tz_name))

    # Render outside the connection; generation may be slow
    created = 0
    rendered = {}
    for preference, ready_at, dedup_key, summary_day, tz_name in plans:
        context = contexts[(summary_day, tz_name)]
        if (summary_day, tz_name) not in rendered:
            rendered[(summary_day, tz_name)] = await build_daily_summary(
                recipient_name=trainer_display_name(context["trainer"]),
                day=summary_day,
                appointments=context["appointments"],
                client_notes=context["client_notes"],
                timezone=tz_name,
                generate=generate,
            )

        job_ids = await pipeline.notify_user(
            user_id,
            NotificationType.daily_summary,
            rendered[(summary_day, tz_name)],
            preferences=[preference],
            scheduled_for=ready_at,
            dedup_key=dedup_key,
            metadata={
                "summary_date": summary_day.isoformat(),
                "appointment_count": len(context["appointments"]),
            },
        )
        created += len(job_ids)
        skipped += 0 if job_ids else 1

    return created, skipped


# =============================================================================
# Reminder-window trigger
# =============================================================================


def lead_label(lead: timedelta) -> str:
    """Compact label for a lead time: 24h, 1h, 30m."""
    minutes = int(lead.total_seconds() // 60)
    if minutes % 60 == 0:
        return f"{minutes // 60}h"
    return f"{minutes}m"


def reminder_dedup_key(appointment_id: int, lead: timedelta) -> str:
    return f"appointment_reminder:{appointment_id}:{lead_label(lead)}"


def reminder_windows(
    now: datetime,
    leads: list[timedelta],
) -> list[tuple[timedelta, datetime, datetime]]:
    """
    (lead, window_start, window_end) for each lead time.

    Windows are (now + next shorter lead, now + lead], so together they
    partition the horizon and an appointment falls in exactly one.
    """
    windows = []
    previous = timedelta(0)
    for lead in sorted(leads):
        windows.append((lead, now + previous, now + lead))
        previous = lead
    return windows


async def schedule_appointment_reminders(
    pipeline: NotificationPipeline,
    now: datetime | None = None,
    generate: TextGenerator | None = None,
) -> dict[str, int]:
    """
    Queue reminders for appointments inside each lead-time window.

    Returns:
        {"created": jobs created, "skipped": participants/channels skipped}
    """
    now = ensure_utc(now or utcnow())
    counts = {"created": 0, "skipped": 0}

    for lead, window_start, window_end in reminder_windows(now, get_reminder_lead_times()):
        try:
            async with get_connection(pipeline.engine) as conn:
                upcoming = await get_upcoming_appointments(conn, window_start, window_end)
        except Exception as e:
            logger.error(f"Failed to load appointments for {lead_label(lead)} reminders: {e}")
            sentry_sdk.capture_exception(e)
            continue

        for appointment in upcoming:
            for participant in appointment["participants"]:
                try:
                    created, skipped = await _schedule_reminder_for_participant(
                        pipeline, appointment, participant, lead, now, generate
                    )
                except Exception as e:
                    logger.exception(
                        f"Failed to schedule reminder for appointment "
                        f"{appointment['appointment_id']}, user {participant['user_id']}"
                    )
                    sentry_sdk.capture_exception(e)
                    created, skipped = 0, 1
                counts["created"] += created
                counts["skipped"] += skipped

    logger.info(
        f"Appointment reminders: created {counts['created']} job(s), skipped {counts['skipped']}"
    )
    return counts


async def _schedule_reminder_for_participant(
    pipeline: NotificationPipeline,
    appointment: dict,
    participant: dict,
    lead: timedelta,
    now: datetime,
    generate: TextGenerator | None,
) -> tuple[int, int]:
    user_id = participant["user_id"]
    dedup_key = reminder_dedup_key(appointment["appointment_id"], lead)

    async with get_connection(pipeline.engine) as conn:
        preferences = await resolve_preferences(
            conn, user_id, NotificationType.appointment_reminder
        )
        if not preferences:
            return 0, 1

        fresh = [
            p
            for p in preferences
            if not await pipeline.store.has_active_job(dedup_key, user_id, p.channel)
        ]
        skipped = len(preferences) - len(fresh)
        if not fresh:
            return 0, skipped

        user = await get_user_contact(conn, user_id)
        history = await get_client_history(conn, participant["client_id"])

    if not user:
        return 0, skipped + len(fresh)

    content = await build_appointment_reminder(
        recipient_name=get_display_name(user),
        appointment=appointment,
        timezone=user.get("timezone"),
        previous_sessions=history["previous_sessions"],
        last_plan=history["last_plan"],
        generate=generate,
    )
    job_ids = await pipeline.notify_user(
        user_id,
        NotificationType.appointment_reminder,
        content,
        preferences=fresh,
        scheduled_for=max(now, appointment["start_time"] - lead),
        dedup_key=dedup_key,
        metadata={
            "appointment_id": appointment["appointment_id"],
            "lead": lead_label(lead),
        },
    )
    return len(job_ids), skipped + len(fresh) - len(job_ids)
