"""
Notification pipeline - the inbound API of the notification system.

Ties the job store, delivery queue and dispatcher together:

    queue_notification(spec)     create one job and queue it
    notify_user(user_id, ...)    one job per enabled channel
    cancel(job_id)               pending -> cancelled
    recover()                    release stale claims, rebuild the queue

While the workers run, a background sweep re-scans the job store every
NOTIFICATION_RECOVERY_INTERVAL_SECONDS, so jobs created by another process
(a triggers-only service or a one-shot trigger run) are delivered too.

A module-level singleton (init_pipeline / get_pipeline) is used by main.py,
the scheduler and the high-level actions.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Mapping

import sentry_sdk
from sqlalchemy.ext.asyncio import AsyncEngine

from fitflow.config import (
    get_lease_seconds,
    get_recovery_interval_seconds,
    get_retry_base_delay,
    get_retry_max_delay,
)
from fitflow.database import get_connection, get_engine
from fitflow.enums import Channel, JobStatus, NotificationType
from fitflow.notifications.channels import Transport, default_transports
from fitflow.notifications.delivery_queue import DeliveryQueue
from fitflow.notifications.dispatcher import Dispatcher
from fitflow.notifications.errors import DuplicateJob, InvalidJob, StaleTransition
from fitflow.notifications.jobs import JobSpec, JobStore, NotificationJob
from fitflow.notifications.preferences import ChannelPreference, resolve_preferences
from fitflow.notifications.templates import RenderedContent
from fitflow.queries import get_user_contact
from fitflow.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)


_pipeline: "NotificationPipeline | None" = None


def recipient_for_channel(user: dict[str, Any], channel: Channel) -> str | None:
    """Address for a channel from a user's contact details."""
    field = {
        Channel.email: "email",
        Channel.sms: "phone",
        Channel.push: "push_token",
    }[channel]
    value = user.get(field)
    return value.strip() if value and value.strip() else None


class NotificationPipeline:
    """
    Args:
        engine: Async engine (defaults to the module engine)
        transports: Transport per channel (defaults to SendGrid + Twilio)
        max_attempts: Attempt budget for specs that don't set one
        base_delay, max_delay: Retry backoff in seconds
        send_timeout: Seconds allowed per transport call
        concurrency: Workers per channel
        lease_seconds: Age after which an in_flight claim is considered abandoned
        sweep_interval: Seconds between recovery sweeps while the workers run
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        transports: Mapping[Channel, Transport] | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        send_timeout: float | None = None,
        concurrency: Mapping[Channel, int] | None = None,
        lease_seconds: float | None = None,
        sweep_interval: float | None = None,
    ):
        self.engine = engine or get_engine()
        self.store = JobStore(self.engine)
        self.queue = DeliveryQueue(
            base_delay=base_delay if base_delay is not None else get_retry_base_delay(),
            max_delay=max_delay if max_delay is not None else get_retry_max_delay(),
        )
        self.dispatcher = Dispatcher(
            self.store,
            self.queue,
            transports if transports is not None else default_transports(),
            concurrency=concurrency,
            send_timeout=send_timeout,
        )
        self.max_attempts = max_attempts
        self.lease = timedelta(
            seconds=lease_seconds if lease_seconds is not None else get_lease_seconds()
        )
        self.sweep_interval = (
            sweep_interval if sweep_interval is not None else get_recovery_interval_seconds()
        )
        self._sweep_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Rebuild the queue from the job store, then start the workers and the sweep."""
        await self.recover()
        self.dispatcher.start()
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop(), name="recovery-sweep")

    async def stop(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self.dispatcher.stop()

    # ------------------------------------------------------------------
    # Inbound API
    # ------------------------------------------------------------------

    async def queue_notification(self, spec: JobSpec) -> uuid.UUID:
        """
        Persist a job and hand it to the delivery queue.

        Returns:
            The job id

        Raises:
            InvalidJob: nothing is persisted or queued
            DuplicateJob: a live job with the same dedup_key exists
        """
        if spec.max_attempts is None and self.max_attempts is not None:
            spec.max_attempts = self.max_attempts
        job = await self.store.create(spec)
        self.queue.enqueue(job.channel, job.id, job.scheduled_for)
        return job.id

    async def notify_user(
        self,
        user_id: int,
        notification_type: NotificationType,
        content: RenderedContent,
        preferences: list[ChannelPreference] | None = None,
        scheduled_for: datetime | None = None,
        dedup_key: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> list[uuid.UUID]:
        """
        Queue one job per enabled channel for a user.

        Channels the user has no usable address for are skipped, as are
        channels that already have a non-dead job with the same dedup_key.

        Args:
            preferences: Channels to use; resolved from the user's
                preferences when None
        """
        async with get_connection(self.engine) as conn:
            if preferences is None:
                preferences = await resolve_preferences(conn, user_id, notification_type)
            if not preferences:
                logger.debug(f"User {user_id} has {notification_type.value} disabled")
                return []
            user = await get_user_contact(conn, user_id)

        if not user:
            logger.warning(f"User {user_id} not found for {notification_type.value} notification")
            return []

        job_ids = []
        for preference in preferences:
            channel = preference.channel
            recipient = recipient_for_channel(user, channel)
            if not recipient:
                logger.info(f"User {user_id} has no {channel.value} address, skipping")
                continue
            if dedup_key and await self.store.has_active_job(dedup_key, user_id, channel):
                logger.debug(f"Job {dedup_key} already exists for user {user_id} ({channel.value})")
                continue

            subject, body = content.for_channel(channel)
            try:
                job_id = await self.queue_notification(
                    JobSpec(
                        user_id=user_id,
                        notification_type=notification_type,
                        channel=channel,
                        recipient=recipient,
                        subject=subject,
                        content=body,
                        metadata=dict(metadata or {}),
                        scheduled_for=scheduled_for,
                        dedup_key=dedup_key,
                    )
                )
            except DuplicateJob as e:
                # Lost a race with a concurrent trigger run
                logger.debug(str(e))
                continue
            except InvalidJob as e:
                logger.warning(f"Not notifying user {user_id} by {channel.value}: {e}")
                continue
            job_ids.append(job_id)

        return job_ids

    async def cancel(self, job_id: uuid.UUID) -> NotificationJob:
        """
        Cancel a pending job.

        Raises:
            StaleTransition: the job is in flight or already finished
        """
        job = await self.store.cancel(job_id)
        self.queue.discard(job_id)
        return job

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recover(
        self,
        now: datetime | None = None,
        include_future: bool = True,
    ) -> dict[str, int]:
        """
        Release abandoned claims and re-admit pending jobs to the queue.

        In-flight jobs claimed longer ago than the lease go back to pending
        (or to dead if their attempt budget is spent). With include_future
        every pending job is queued (startup); otherwise only due ones
        (periodic sweep).

        Returns:
            Counts: {"released", "dead", "enqueued"}
        """
        now = ensure_utc(now or utcnow())
        released = dead = enqueued = 0

        for job in await self.store.list_stale_in_flight(now - self.lease):
            error = f"Claim expired after {self.lease.total_seconds():.0f}s"
            try:
                if job.attempts < job.max_attempts:
                    await self.store.transition(
                        job.id,
                        JobStatus.in_flight,
                        JobStatus.pending,
                        scheduled_for=now,
                        last_error=error,
                    )
                    released += 1
                else:
                    await self.store.transition(
                        job.id, JobStatus.in_flight, JobStatus.dead, last_error=error
                    )
                    dead += 1
                    logger.error(f"Job {job.id} is dead after {job.attempts} attempts: {error}")
                    sentry_sdk.capture_message(
                        f"Notification job {job.id} dead after {job.attempts} attempts: {error}",
                        level="error",
                    )
            except StaleTransition as e:
                logger.debug(f"Job {job.id} changed during recovery: {e}")

        for channel in Channel:
            if include_future:
                jobs = await self.store.list_pending(channel)
            else:
                jobs = await self.store.list_due(channel, now)
            for job in jobs:
                if self.queue.enqueue(channel, job.id, job.scheduled_for):
                    enqueued += 1

        if released or dead or enqueued:
            logger.info(
                f"Recovery: released {released}, dead {dead}, enqueued {enqueued} job(s)"
            )
        return {"released": released, "dead": dead, "enqueued": enqueued}

    async def sweep(self) -> dict[str, int] | None:
        """Periodic recovery: only due jobs. Errors are logged, never raised."""
        try:
            return await self.recover(include_future=False)
        except Exception as e:
            logger.error(f"Recovery sweep failed: {e}")
            sentry_sdk.capture_exception(e)
            return None

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            await self.sweep()


# =============================================================================
# Singleton
# =============================================================================


def init_pipeline(**kwargs: Any) -> NotificationPipeline:
    """Create the process-wide pipeline (idempotent)."""
    global _pipeline
    if _pipeline is None:
        _pipeline = NotificationPipeline(**kwargs)
    return _pipeline


def get_pipeline() -> NotificationPipeline:
    if _pipeline is None:
        raise RuntimeError("Notification pipeline not initialized (call init_pipeline first)")
    return _pipeline


async def shutdown_pipeline() -> None:
    global _pipeline
    if _pipeline is not None:
        await _pipeline.stop()
        _pipeline = None
