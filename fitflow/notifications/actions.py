"""
High-level notification actions.

These functions are called by business logic (booking, billing, session
notes, account settings) to send notifications. They fetch what the message
needs, render it and hand it to the pipeline singleton. Delivery itself is
asynchronous; the returned job ids can be looked up in the history.
"""

import logging
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from fitflow.config import is_ai_summaries_enabled
from fitflow.database import get_connection
from fitflow.enums import Channel, NotificationType
from fitflow.notifications.errors import InvalidJob, StaleTransition
from fitflow.notifications.jobs import JobSpec
from fitflow.notifications.pipeline import get_pipeline, recipient_for_channel
from fitflow.notifications.summary import (
    build_booking_confirmation,
    build_payment_receipt,
    build_progress_insights,
    build_session_summary,
    default_generator,
)
from fitflow.notifications.templates import render
from fitflow.queries import (
    get_appointment,
    get_display_name,
    get_recent_session_notes,
    get_session_note,
    get_user_contact,
)
from fitflow.tables import clients
from fitflow.timezone import utcnow

logger = logging.getLogger(__name__)

PROGRESS_SESSION_WINDOW = 5

CHANNEL_LABELS = {Channel.email: "email", Channel.sms: "SMS", Channel.push: "push"}


async def _client_user(conn: AsyncConnection, client_id: int) -> dict[str, Any] | None:
    result = await conn.execute(select(clients.c.user_id).where(clients.c.client_id == client_id))
    user_id = result.scalar_one_or_none()
    return await get_user_contact(conn, user_id) if user_id else None


async def queue_notification(
    user_id: int,
    notification_type: NotificationType,
    channel: Channel,
    recipient: str,
    content: str,
    subject: str | None = None,
    metadata: dict[str, Any] | None = None,
    scheduled_for: datetime | None = None,
    max_attempts: int | None = None,
) -> uuid.UUID:
    """
    Queue a single notification on an explicit channel.

    Raises:
        InvalidJob: missing recipient/content, or email without subject
    """
    return await get_pipeline().queue_notification(
        JobSpec(
            user_id=user_id,
            notification_type=notification_type,
            channel=channel,
            recipient=recipient,
            content=content,
            subject=subject,
            metadata=dict(metadata or {}),
            scheduled_for=scheduled_for,
            max_attempts=max_attempts,
        )
    )


async def notify_payment_receipt(
    user_id: int,
    amount_cents: int,
    currency: str,
    description: str,
    reference: str,
    paid_at: datetime | None = None,
    receipt_url: str | None = None,
) -> list[uuid.UUID]:
    """
    Send a payment receipt on the user's enabled channels.

    Args:
        user_id: Paying user
        amount_cents: Amount in minor units
        currency: ISO currency code, e.g. "usd"
        description: What was paid for, e.g. "10-session package"
        reference: Payment reference; also makes the receipt idempotent
        paid_at: When the payment succeeded (defaults to now)
        receipt_url: Optional link to the provider's receipt page
    """
    pipeline = get_pipeline()
    async with get_connection(pipeline.engine) as conn:
        user = await get_user_contact(conn, user_id)
    if not user:
        logger.warning(f"User {user_id} not found for payment receipt {reference}")
        return []

    content = build_payment_receipt(
        recipient_name=get_display_name(user),
        amount_cents=amount_cents,
        currency=currency,
        description=description,
        reference=reference,
        paid_at=paid_at or utcnow(),
        timezone=user.get("timezone"),
        receipt_url=receipt_url,
    )
    return await pipeline.notify_user(
        user_id,
        NotificationType.payment_receipt,
        content,
        dedup_key=f"payment_receipt:{reference}",
        metadata={"reference": reference, "amount_cents": amount_cents, "currency": currency},
    )


async def notify_session_summary(note_id: int) -> list[uuid.UUID]:
    """Send the client a summary of a session note (AI-enriched when enabled)."""
    pipeline = get_pipeline()
    async with get_connection(pipeline.engine) as conn:
        note = await get_session_note(conn, note_id)
        if not note:
            logger.warning(f"Session note {note_id} not found")
            return []
        user = await _client_user(conn, note["client_id"])

    if not user:
        logger.warning(f"No user for client {note['client_id']} (session note {note_id})")
        return []

    content = await build_session_summary(
        recipient_name=get_display_name(user),
        session_note=note,
        generate=default_generator() if is_ai_summaries_enabled() else None,
    )
    return await pipeline.notify_user(
        user["user_id"],
        NotificationType.session_summary,
        content,
        dedup_key=f"session_summary:{note_id}",
        metadata={"note_id": note_id, "client_id": note["client_id"]},
    )


async def notify_progress_insights(client_id: int) -> list[uuid.UUID]:
    """
    Send the client an analysis of their recent sessions.

    Nothing is sent until the client has at least three recorded sessions.
    Follows the client's session_summary preferences; one message per
    latest session note.
    """
    pipeline = get_pipeline()
    async with get_connection(pipeline.engine) as conn:
        user = await _client_user(conn, client_id)
        notes = await get_recent_session_notes(conn, client_id, limit=PROGRESS_SESSION_WINDOW)

    if not user:
        logger.warning(f"No user for client {client_id} (progress insights)")
        return []

    content = await build_progress_insights(
        recipient_name=get_display_name(user),
        session_notes=notes,
        generate=default_generator() if is_ai_summaries_enabled() else None,
    )
    if content is None:
        logger.debug(f"Client {client_id} has {len(notes)} session(s), no progress insights yet")
        return []

    latest_note_id = notes[0]["note_id"]
    return await pipeline.notify_user(
        user["user_id"],
        NotificationType.session_summary,
        content,
        dedup_key=f"progress_insights:{client_id}:{latest_note_id}",
        metadata={"client_id": client_id, "kind": "progress_insights", "sessions": len(notes)},
    )


async def notify_appointment_booked(appointment_id: int) -> list[uuid.UUID]:
    """
    Send an immediate booking confirmation to every participant.

    Confirmations follow the participants' appointment_reminder preferences.
    """
    pipeline = get_pipeline()
    async with get_connection(pipeline.engine) as conn:
        appointment = await get_appointment(conn, appointment_id)
        if not appointment:
            logger.warning(f"Appointment {appointment_id} not found for booking confirmation")
            return []
        users = [
            await get_user_contact(conn, participant["user_id"])
            for participant in appointment["participants"]
        ]

    job_ids = []
    for user in users:
        if not user:
            continue
        content = build_booking_confirmation(
            recipient_name=get_display_name(user),
            appointment=appointment,
            timezone=user.get("timezone"),
        )
        job_ids += await pipeline.notify_user(
            user["user_id"],
            NotificationType.appointment_reminder,
            content,
            dedup_key=f"appointment_booked:{appointment_id}",
            metadata={"appointment_id": appointment_id, "kind": "booking_confirmation"},
        )
    return job_ids


async def notify_test(
    user_id: int,
    notification_type: NotificationType | str,
    channel: Channel | str,
) -> uuid.UUID:
    """
    Queue a test message so a user can check one channel.

    The message goes to the channel asked for whether or not the user has it
    enabled for notification_type.

    Raises:
        InvalidJob: unknown type or channel, or no address for the channel
        LookupError: the user does not exist
    """
    try:
        notification_type = NotificationType(notification_type)
        channel = Channel(channel)
    except ValueError as e:
        raise InvalidJob(str(e)) from e

    pipeline = get_pipeline()
    async with get_connection(pipeline.engine) as conn:
        user = await get_user_contact(conn, user_id)
    if not user:
        raise LookupError(f"User {user_id} not found")

    recipient = recipient_for_channel(user, channel)
    if not recipient:
        raise InvalidJob(f"User {user_id} has no {channel.value} address")

    content = render(
        "test_notification",
        {
            "name": get_display_name(user),
            "label": notification_type.value.replace("_", " "),
            "channel": CHANNEL_LABELS[channel],
        },
    )
    subject, body = content.for_channel(channel)
    job_id = await pipeline.queue_notification(
        JobSpec(
            user_id=user_id,
            notification_type=notification_type,
            channel=channel,
            recipient=recipient,
            subject=subject,
            content=body,
            metadata={"kind": "test"},
        )
    )
    logger.info(f"Queued test {notification_type.value} notification {job_id} for user {user_id}")
    return job_id


async def cancel_notification(job_id: uuid.UUID) -> bool:
    """
    Cancel a notification that has not been sent yet.

    Returns:
        True if cancelled, False if it was already in flight or finished
    """
    try:
        await get_pipeline().cancel(job_id)
    except StaleTransition as e:
        logger.info(f"Could not cancel job {job_id}: {e}")
        return False
    return True
