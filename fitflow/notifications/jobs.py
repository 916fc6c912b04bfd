"""
Durable job store for notification jobs.

The notification_jobs table is the single source of truth for job status
and the audit record of every notification ever queued (rows are never
deleted).

All concurrency safety comes from transition(), a compare-and-set UPDATE.
Two workers racing for the same job both issue

    UPDATE notification_jobs SET status = 'in_flight'
    WHERE id = :id AND status = 'pending'

and exactly one of them sees a row count of 1. The loser gets
StaleTransition and must walk away.

State machine:

    pending ──► in_flight ──► sent
       │            │
       │            ├──► pending   (retry with backoff)
       │            └──► dead      (attempt budget exhausted)
       └──► cancelled
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from fitflow.config import get_max_attempts
from fitflow.database import get_connection, get_engine, get_transaction
from fitflow.enums import Channel, JobStatus, NotificationType
from fitflow.notifications.channels.sms import is_e164
from fitflow.notifications.errors import (
    DuplicateJob,
    Exhausted,
    InvalidJob,
    StaleTransition,
)
from fitflow.tables import notification_jobs
from fitflow.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.pending: {JobStatus.in_flight, JobStatus.cancelled},
    JobStatus.in_flight: {JobStatus.sent, JobStatus.pending, JobStatus.dead},
}

# Columns a transition may set besides status
TRANSITION_FIELDS = {"last_error", "sent_at", "provider_message_id", "scheduled_for"}


@dataclass
class JobSpec:
    """Everything needed to create a job. Validated before insert."""

    user_id: int
    notification_type: NotificationType
    channel: Channel
    recipient: str
    content: str
    subject: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    scheduled_for: datetime | None = None
    max_attempts: int | None = None
    dedup_key: str | None = None

    def validate(self) -> None:
        """
        Raise InvalidJob if this cannot become a deliverable job.

        Also coerces string channel / notification_type values to enums.
        """
        try:
            self.channel = Channel(self.channel)
            self.notification_type = NotificationType(self.notification_type)
        except ValueError as e:
            raise InvalidJob(str(e)) from e

        if not (self.recipient or "").strip():
            raise InvalidJob("recipient is required")
        if self.channel == Channel.sms and not is_e164(self.recipient.strip()):
            raise InvalidJob(f"SMS recipient not in E.164 format: {self.recipient!r}")
        if self.channel == Channel.email and not (self.subject or "").strip():
            raise InvalidJob("subject is required for email notifications")
        if not (self.content or "").strip():
            raise InvalidJob("content is required")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise InvalidJob("max_attempts must be at least 1")


@dataclass
class NotificationJob:
    """A row of notification_jobs."""

    id: uuid.UUID
    user_id: int
    notification_type: NotificationType
    channel: Channel
    recipient: str
    subject: str | None
    content: str
    metadata: dict[str, Any]
    dedup_key: str | None
    scheduled_for: datetime
    status: JobStatus
    attempts: int
    max_attempts: int
    last_error: str | None
    provider_message_id: str | None
    locked_at: datetime | None
    sent_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "NotificationJob":
        def _dt(value: datetime | None) -> datetime | None:
            return ensure_utc(value) if value is not None else None

        return cls(
            id=row["id"],
            user_id=row["user_id"],
            notification_type=NotificationType(row["notification_type"]),
            channel=Channel(row["channel"]),
            recipient=row["recipient"],
            subject=row["subject"],
            content=row["content"],
            metadata=dict(row["metadata"] or {}),
            dedup_key=row["dedup_key"],
            scheduled_for=_dt(row["scheduled_for"]),
            status=JobStatus(row["status"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            last_error=row["last_error"],
            provider_message_id=row["provider_message_id"],
            locked_at=_dt(row["locked_at"]),
            sent_at=_dt(row["sent_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    @property
    def attempts_left(self) -> int:
        return self.max_attempts - self.attempts


class JobStore:
    """Async access to the notification_jobs ledger."""

    def __init__(self, engine: AsyncEngine | None = None):
        self.engine = engine or get_engine()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, spec: JobSpec) -> NotificationJob:
        """
        Insert a new job in pending.

        Raises:
            InvalidJob: email without subject, empty recipient or content,
                SMS recipient not in E.164
            DuplicateJob: a non-dead job with the same dedup key, user and
                channel exists (partial unique index on non-dead rows)
        """
        spec.validate()
        now = utcnow()
        values = {
            "id": uuid.uuid4(),
            "user_id": spec.user_id,
            "notification_type": spec.notification_type,
            "channel": spec.channel,
            "recipient": spec.recipient.strip(),
            "subject": spec.subject,
            "content": spec.content,
            "metadata": dict(spec.metadata or {}),
            "dedup_key": spec.dedup_key,
            "scheduled_for": ensure_utc(spec.scheduled_for or now),
            "status": JobStatus.pending,
            "attempts": 0,
            "max_attempts": spec.max_attempts or get_max_attempts(),
            "last_error": None,
            "provider_message_id": None,
            "locked_at": None,
            "sent_at": None,
            "created_at": now,
            "updated_at": now,
        }
        try:
            async with get_transaction(self.engine) as conn:
                await conn.execute(insert(notification_jobs).values(**values))
        except IntegrityError as e:
            if spec.dedup_key is None:
                raise
            raise DuplicateJob(spec.dedup_key, spec.user_id, spec.channel) from e

        job = NotificationJob.from_row(values)
        logger.info(
            f"Created {job.notification_type.value} job {job.id} "
            f"({job.channel.value}) for user {job.user_id}, due {job.scheduled_for.isoformat()}"
        )
        return job

    async def transition(
        self,
        job_id: uuid.UUID,
        from_status: JobStatus,
        to_status: JobStatus,
        **fields: Any,
    ) -> NotificationJob:
        """
        Compare-and-set the job status.

        Args:
            job_id: Job to update
            from_status: Status the caller believes the job is in
            to_status: Target status (must be an allowed edge)
            **fields: last_error, sent_at, provider_message_id, scheduled_for

        Returns:
            The updated job

        Raises:
            StaleTransition: the job is not in from_status (or does not exist)
            ValueError: illegal edge or unknown field
        """
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
            raise ValueError(
                f"Illegal transition {from_status.value} -> {to_status.value}"
            )
        unknown = set(fields) - TRANSITION_FIELDS
        if unknown:
            raise ValueError(f"Cannot set {sorted(unknown)} during a transition")
        if "sent_at" in fields and to_status != JobStatus.sent:
            raise ValueError("sent_at can only be set when moving to sent")

        now = utcnow()
        values: dict[str, Any] = {**fields, "status": to_status, "updated_at": now}
        if to_status == JobStatus.sent:
            values["sent_at"] = ensure_utc(fields.get("sent_at") or now)
        else:
            values["sent_at"] = None
        if to_status == JobStatus.in_flight:
            values["locked_at"] = now
        elif from_status == JobStatus.in_flight:
            values["locked_at"] = None
        if values.get("scheduled_for") is not None:
            values["scheduled_for"] = ensure_utc(values["scheduled_for"])

        async with get_transaction(self.engine) as conn:
            result = await conn.execute(
                update(notification_jobs)
                .where(
                    and_(
                        notification_jobs.c.id == job_id,
                        notification_jobs.c.status == from_status,
                    )
                )
                .values(**values)
            )
            if result.rowcount != 1:
                current = await self._get(conn, job_id)
                raise StaleTransition(
                    job_id, from_status.value, current.status.value if current else None
                )
            job = await self._get(conn, job_id)

        logger.debug(f"Job {job_id}: {from_status.value} -> {to_status.value}")
        return job

    async def increment_attempt(self, job_id: uuid.UUID) -> int:
        """
        Atomically bump attempts, never past max_attempts.

        Returns:
            The new attempt count

        Raises:
            Exhausted: attempts already equals max_attempts
            LookupError: no such job
        """
        async with get_transaction(self.engine) as conn:
            result = await conn.execute(
                update(notification_jobs)
                .where(
                    and_(
                        notification_jobs.c.id == job_id,
                        notification_jobs.c.attempts < notification_jobs.c.max_attempts,
                    )
                )
                .values(
                    attempts=notification_jobs.c.attempts + 1,
                    updated_at=utcnow(),
                )
            )
            job = await self._get(conn, job_id)

        if job is None:
            raise LookupError(f"Job {job_id} not found")
        if result.rowcount != 1:
            raise Exhausted(job_id)
        return job.attempts

    async def cancel(self, job_id: uuid.UUID) -> NotificationJob:
        """
        Cancel a job that has not been claimed yet.

        Raises:
            StaleTransition: the job is already in flight or finished
        """
        job = await self.transition(job_id, JobStatus.pending, JobStatus.cancelled)
        logger.info(f"Cancelled job {job_id}")
        return job

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, job_id: uuid.UUID) -> NotificationJob | None:
        async with get_connection(self.engine) as conn:
            return await self._get(conn, job_id)

    async def list_due(
        self,
        channel: Channel,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[NotificationJob]:
        """
        Pending jobs for a channel whose scheduled_for has arrived.

        Oldest-due first, so a burst of new jobs cannot starve older ones.
        """
        now = ensure_utc(now or utcnow())
        query = (
            select(notification_jobs)
            .where(
                and_(
                    notification_jobs.c.status == JobStatus.pending,
                    notification_jobs.c.channel == channel,
                    notification_jobs.c.scheduled_for <= now,
                )
            )
            .order_by(
                notification_jobs.c.scheduled_for.asc(),
                notification_jobs.c.created_at.asc(),
            )
        )
        if limit is not None:
            query = query.limit(limit)
        return await self._fetch_jobs(query)

    async def list_pending(self, channel: Channel) -> list[NotificationJob]:
        """All pending jobs for a channel, including ones scheduled in the future."""
        query = (
            select(notification_jobs)
            .where(
                and_(
                    notification_jobs.c.status == JobStatus.pending,
                    notification_jobs.c.channel == channel,
                )
            )
            .order_by(notification_jobs.c.scheduled_for.asc())
        )
        return await self._fetch_jobs(query)

    async def list_stale_in_flight(self, older_than: datetime) -> list[NotificationJob]:
        """In-flight jobs claimed before older_than (their worker likely died)."""
        query = select(notification_jobs).where(
            and_(
                notification_jobs.c.status == JobStatus.in_flight,
                notification_jobs.c.locked_at < ensure_utc(older_than),
            )
        )
        return await self._fetch_jobs(query)

    async def has_active_job(
        self,
        dedup_key: str,
        user_id: int,
        channel: Channel,
    ) -> bool:
        """True if a non-dead job with this dedup key already exists."""
        async with get_connection(self.engine) as conn:
            result = await conn.execute(
                select(notification_jobs.c.id)
                .where(
                    and_(
                        notification_jobs.c.dedup_key == dedup_key,
                        notification_jobs.c.user_id == user_id,
                        notification_jobs.c.channel == channel,
                        notification_jobs.c.status != JobStatus.dead,
                    )
                )
                .limit(1)
            )
            return result.first() is not None

    async def _fetch_jobs(self, query) -> list[NotificationJob]:
        async with get_connection(self.engine) as conn:
            result = await conn.execute(query)
            return [NotificationJob.from_row(row) for row in result.mappings()]

    @staticmethod
    async def _get(conn: AsyncConnection, job_id: uuid.UUID) -> NotificationJob | None:
        result = await conn.execute(
            select(notification_jobs).where(notification_jobs.c.id == job_id)
        )
        row = result.mappings().first()
        return NotificationJob.from_row(row) if row else None
