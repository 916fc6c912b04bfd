"""
In-memory delivery queue with per-channel readiness ordering.

The queue only holds (ready_at, job_id) tickets. Job data lives in the job
store, so the whole queue can be rebuilt from pending jobs after a restart
(see NotificationPipeline.recover).

Superseded tickets are left in the heap and skipped when they surface
(lazy deletion); _queued maps each job to its one live entry and
_live counts live entries per channel.
"""

import asyncio
import heapq
import itertools
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from fitflow.enums import Channel
from fitflow.timezone import ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryTicket:
    ready_at: datetime
    job_id: uuid.UUID


class DeliveryQueue:
    """
    Per-channel min-heaps of delivery tickets ordered by ready_at.

    Args:
        base_delay: First retry delay in seconds
        max_delay: Upper bound for any retry delay in seconds
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("Require 0 < base_delay <= max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._heaps: dict[Channel, list[tuple[datetime, int, uuid.UUID]]] = defaultdict(list)
        self._queued: dict[uuid.UUID, tuple[datetime, int, Channel]] = {}
        self._live: dict[Channel, int] = defaultdict(int)
        self._events: dict[Channel, asyncio.Event] = defaultdict(asyncio.Event)
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._queued)

    def __contains__(self, job_id: uuid.UUID) -> bool:
        return job_id in self._queued

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retrying after the given (1-based) attempt."""
        multiplier = 2 ** max(attempt - 1, 0)
        return min(self.base_delay * multiplier, self.max_delay)

    def enqueue(self, channel: Channel, job_id: uuid.UUID, ready_at: datetime) -> bool:
        """
        Admit a ticket for job_id, ready at ready_at.

        Returns:
            False if the job is already queued with an earlier or equal
            ready_at (nothing changes), True otherwise. An earlier ready_at
            supersedes the queued ticket.
        """
        ready_at = ensure_utc(ready_at)
        current = self._queued.get(job_id)
        if current is not None and current[0] <= ready_at:
            return False

        if current is None:
            self._live[channel] += 1
        seq = next(self._counter)
        self._queued[job_id] = (ready_at, seq, channel)
        heapq.heappush(self._heaps[channel], (ready_at, seq, job_id))
        self._events[channel].set()
        return True

    def requeue_with_backoff(
        self,
        channel: Channel,
        job_id: uuid.UUID,
        attempt: int,
        now: datetime | None = None,
    ) -> datetime:
        """Re-admit a job after a failed attempt. Returns the new ready_at."""
        now = ensure_utc(now or self._clock())
        ready_at = now + timedelta(seconds=self.backoff_delay(attempt))
        self.enqueue(channel, job_id, ready_at)
        logger.debug(f"Requeued job {job_id} ({channel.value}) for {ready_at.isoformat()}")
        return ready_at

    def discard(self, job_id: uuid.UUID) -> bool:
        """Drop the live ticket for a job, if any."""
        entry = self._queued.pop(job_id, None)
        if entry is None:
            return False
        self._live[entry[2]] -= 1
        return True

    def take_nowait(self, channel: Channel) -> uuid.UUID | None:
        """Pop the next ready job for a channel, or None if nothing is ready."""
        head = self._peek(channel)
        if head is None or head[0] > self._clock():
            return None
        heapq.heappop(self._heaps[channel])
        del self._queued[head[2]]
        self._live[channel] -= 1
        return head[2]

    async def take(self, channel: Channel, timeout: float | None = None) -> uuid.UUID | None:
        """
        Wait for the next ready job for a channel.

        Each ticket is handed to exactly one caller. Returns None if nothing
        became ready within timeout seconds (timeout=None waits forever).
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        event = self._events[channel]

        while True:
            job_id = self.take_nowait(channel)
            if job_id is not None:
                return job_id

            wait = self._seconds_until_next(channel)
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = remaining if wait is None else min(wait, remaining)

            event.clear()
            try:
                await asyncio.wait_for(event.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    def pending_count(self, channel: Channel) -> int:
        return self._live[channel]

    def tickets(self, channel: Channel) -> list[DeliveryTicket]:
        """Live tickets for a channel, soonest first."""
        live = [
            DeliveryTicket(ready_at, job_id)
            for ready_at, seq, job_id in self._heaps[channel]
            if self._is_live(ready_at, seq, job_id)
        ]
        return sorted(live, key=lambda ticket: ticket.ready_at)

    def _is_live(self, ready_at: datetime, seq: int, job_id: uuid.UUID) -> bool:
        entry = self._queued.get(job_id)
        return entry is not None and entry[:2] == (ready_at, seq)

    def _peek(self, channel: Channel) -> tuple[datetime, int, uuid.UUID] | None:
        """Soonest live heap entry, dropping superseded ones on the way."""
        heap = self._heaps[channel]
        while heap and not self._is_live(*heap[0]):
            heapq.heappop(heap)
        return heap[0] if heap else None

    def _seconds_until_next(self, channel: Channel) -> float | None:
        head = self._peek(channel)
        if head is None:
            return None
        return max((head[0] - self._clock()).total_seconds(), 0.0)
