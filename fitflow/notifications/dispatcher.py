"""
Notification dispatcher - worker pools that deliver queued jobs.

Each channel gets its own pool of asyncio tasks. A worker takes a job id from
the delivery queue, claims it in the job store, calls the channel transport
and records the outcome. The compare-and-set claim is the only coordination
between workers, so a job that is ticketed twice is still delivered once.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Mapping

import sentry_sdk

from fitflow.config import get_send_timeout, get_worker_concurrency
from fitflow.enums import Channel, JobStatus
from fitflow.notifications.channels import Transport
from fitflow.notifications.delivery_queue import DeliveryQueue
from fitflow.notifications.errors import Exhausted, StaleTransition, TransportError
from fitflow.notifications.jobs import JobStore, NotificationJob
from fitflow.timezone import utcnow

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Runs worker tasks per channel.

    Args:
        store: Job store holding the authoritative job status
        queue: Delivery queue the workers pull from
        transports: Transport per channel; a channel without one fails every try
        concurrency: Worker count per channel (defaults from config)
        send_timeout: Seconds allowed for a single transport call
    """

    def __init__(
        self,
        store: JobStore,
        queue: DeliveryQueue,
        transports: Mapping[Channel, Transport],
        concurrency: Mapping[Channel, int] | None = None,
        send_timeout: float | None = None,
    ):
        self.store = store
        self.queue = queue
        self.transports = dict(transports)
        self.concurrency = dict(
            concurrency or {channel: get_worker_concurrency(channel) for channel in Channel}
        )
        self.send_timeout = send_timeout if send_timeout is not None else get_send_timeout()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self._tasks:
            return
        for channel, count in self.concurrency.items():
            for i in range(count):
                task = asyncio.create_task(
                    self._worker(channel), name=f"{channel.value}-worker-{i}"
                )
                self._tasks.append(task)
        logger.info(
            "Dispatcher started: "
            + ", ".join(f"{c.value}={n}" for c, n in self.concurrency.items())
        )

    async def stop(self) -> None:
        """Cancel the workers and wait for them to exit."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Dispatcher stopped")

    async def _worker(self, channel: Channel) -> None:
        while True:
            job_id = await self.queue.take(channel)
            try:
                await self.process(job_id)
            except Exception as e:
                # The job stays in_flight; the recovery sweep releases it once its lease expires
                logger.exception(f"Unexpected error processing job {job_id}")
                sentry_sdk.capture_exception(e)

    async def process(self, job_id: uuid.UUID) -> JobStatus | None:
        """
        Run one delivery attempt for a job.

        Returns:
            The status the job ended in (sent, pending for retry, dead),
            or None if another worker owned the job.
        """
        try:
            job = await self.store.transition(job_id, JobStatus.pending, JobStatus.in_flight)
        except StaleTransition as e:
            logger.debug(f"Skipping job {job_id}: {e}")
            return None

        try:
            job.attempts = await self.store.increment_attempt(job_id)
        except Exhausted:
            return await self._mark_dead(job, job.last_error or "Attempt budget exhausted")

        message_id, error = await self._deliver(job)
        if error is None:
            return await self._mark_sent(job, message_id)

        logger.warning(
            f"Job {job_id} ({job.channel.value}) attempt {job.attempts}/{job.max_attempts} "
            f"failed: {error}"
        )
        if job.attempts < job.max_attempts:
            return await self._schedule_retry(job, error)
        return await self._mark_dead(job, error)

    async def _deliver(self, job: NotificationJob) -> tuple[str | None, str | None]:
        """Call the transport. Returns (provider_message_id, error)."""
        transport = self.transports.get(job.channel)
        if transport is None:
            return None, f"No transport configured for channel {job.channel.value}"

        try:
            message_id = await asyncio.wait_for(transport.send(job), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            return None, f"Transport timed out after {self.send_timeout}s"
        except TransportError as e:
            return None, str(e)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            return None, f"{type(e).__name__}: {e}"
        return message_id, None

    async def _mark_sent(self, job: NotificationJob, message_id: str | None) -> JobStatus | None:
        try:
            await self.store.transition(
                job.id,
                JobStatus.in_flight,
                JobStatus.sent,
                sent_at=utcnow(),
                provider_message_id=message_id or None,
            )
        except StaleTransition as e:
            logger.warning(f"Job {job.id} was delivered but could not be marked sent: {e}")
            return None
        logger.info(
            f"Sent {job.notification_type.value} job {job.id} via {job.channel.value} "
            f"(attempt {job.attempts})"
        )
        return JobStatus.sent

    async def _schedule_retry(self, job: NotificationJob, error: str) -> JobStatus | None:
        now = utcnow()
        retry_at = now + timedelta(seconds=self.queue.backoff_delay(job.attempts))
        try:
            await self.store.transition(
                job.id,
                JobStatus.in_flight,
                JobStatus.pending,
                scheduled_for=retry_at,
                last_error=error,
            )
        except StaleTransition as e:
            logger.warning(f"Could not schedule retry for job {job.id}: {e}")
            return None
        self.queue.requeue_with_backoff(job.channel, job.id, job.attempts, now=now)
        logger.info(f"Job {job.id} will retry at {retry_at.isoformat()}")
        return JobStatus.pending

    async def _mark_dead(self, job: NotificationJob, error: str) -> JobStatus | None:
        try:
            await self.store.transition(
                job.id, JobStatus.in_flight, JobStatus.dead, last_error=error
            )
        except StaleTransition as e:
            logger.warning(f"Could not mark job {job.id} dead: {e}")
            return None
        logger.error(
            f"Job {job.id} ({job.notification_type.value}, {job.channel.value}) is dead "
            f"after {job.attempts} attempts: {error}"
        )
        sentry_sdk.capture_message(
            f"Notification job {job.id} dead after {job.attempts} attempts: {error}",
            level="error",
        )
        return JobStatus.dead
