"""Tests for the in-memory delivery queue."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from fitflow.enums import Channel
from fitflow.notifications.delivery_queue import DeliveryQueue


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return DeliveryQueue(base_delay=2.0, max_delay=60.0, clock=clock)


class TestBackoff:
    def test_doubles_from_base(self, queue):
        assert [queue.backoff_delay(a) for a in (1, 2, 3, 4)] == [2.0, 4.0, 8.0, 16.0]

    def test_non_decreasing_and_capped(self, queue):
        delays = [queue.backoff_delay(a) for a in range(1, 20)]
        assert delays == sorted(delays)
        assert max(delays) == 60.0

    def test_rejects_bad_bounds(self):
        with pytest.raises(ValueError):
            DeliveryQueue(base_delay=0)
        with pytest.raises(ValueError):
            DeliveryQueue(base_delay=10, max_delay=5)


class TestEnqueue:
    def test_ready_job_is_taken_once(self, queue, clock):
        job_id = uuid.uuid4()
        assert queue.enqueue(Channel.email, job_id, clock.now)

        assert queue.take_nowait(Channel.email) == job_id
        assert queue.take_nowait(Channel.email) is None
        assert len(queue) == 0

    def test_future_job_waits(self, queue, clock):
        job_id = uuid.uuid4()
        queue.enqueue(Channel.sms, job_id, clock.now + timedelta(seconds=30))

        assert queue.take_nowait(Channel.sms) is None
        clock.advance(30)
        assert queue.take_nowait(Channel.sms) == job_id

    def test_channels_are_independent(self, queue, clock):
        job_id = uuid.uuid4()
        queue.enqueue(Channel.sms, job_id, clock.now)

        assert queue.take_nowait(Channel.email) is None
        assert queue.pending_count(Channel.sms) == 1

    def test_older_ready_at_first(self, queue, clock):
        first, second = uuid.uuid4(), uuid.uuid4()
        queue.enqueue(Channel.email, second, clock.now - timedelta(seconds=1))
        queue.enqueue(Channel.email, first, clock.now - timedelta(seconds=10))

        assert queue.take_nowait(Channel.email) == first
        assert queue.take_nowait(Channel.email) == second

    def test_duplicate_not_admitted(self, queue, clock):
        job_id = uuid.uuid4()
        assert queue.enqueue(Channel.email, job_id, clock.now)
        assert not queue.enqueue(Channel.email, job_id, clock.now + timedelta(seconds=5))

        assert queue.pending_count(Channel.email) == 1
        assert queue.tickets(Channel.email)[0].ready_at == clock.now

    def test_earlier_ready_at_supersedes(self, queue, clock):
        job_id = uuid.uuid4()
        queue.enqueue(Channel.email, job_id, clock.now + timedelta(minutes=5))
        assert queue.enqueue(Channel.email, job_id, clock.now)

        assert queue.take_nowait(Channel.email) == job_id
        clock.advance(600)
        assert queue.take_nowait(Channel.email) is None

    def test_discard(self, queue, clock):
        job_id = uuid.uuid4()
        queue.enqueue(Channel.email, job_id, clock.now)

        assert queue.discard(job_id)
        assert job_id not in queue
        assert queue.take_nowait(Channel.email) is None
        assert not queue.discard(job_id)

    def test_pending_count_tracks_live_tickets(self, queue, clock):
        first, second = uuid.uuid4(), uuid.uuid4()
        queue.enqueue(Channel.email, first, clock.now + timedelta(minutes=5))
        queue.enqueue(Channel.email, first, clock.now)  # supersedes, still one job
        queue.enqueue(Channel.email, second, clock.now)
        assert queue.pending_count(Channel.email) == 2

        queue.discard(second)
        assert queue.pending_count(Channel.email) == 1
        assert queue.take_nowait(Channel.email) == first
        assert queue.pending_count(Channel.email) == 0
        assert queue.pending_count(Channel.sms) == 0

    def test_wait_skips_superseded_and_discarded_heads(self, queue, clock):
        stale, live = uuid.uuid4(), uuid.uuid4()
        queue.enqueue(Channel.email, stale, clock.now + timedelta(seconds=5))
        queue.enqueue(Channel.email, live, clock.now + timedelta(seconds=40))
        queue.discard(stale)

        assert queue._seconds_until_next(Channel.email) == 40.0
        # The discarded head was dropped from the heap while peeking
        assert len(queue._heaps[Channel.email]) == 1


class TestRequeue:
    def test_requeue_uses_backoff(self, queue, clock):
        job_id = uuid.uuid4()

        ready_at = queue.requeue_with_backoff(Channel.email, job_id, attempt=2)

        assert ready_at == clock.now + timedelta(seconds=4)
        assert queue.take_nowait(Channel.email) is None
        clock.advance(4)
        assert queue.take_nowait(Channel.email) == job_id

    def test_requeue_with_explicit_now(self, queue, clock):
        now = clock.now - timedelta(seconds=100)
        ready_at = queue.requeue_with_backoff(Channel.sms, uuid.uuid4(), attempt=10, now=now)
        assert ready_at == now + timedelta(seconds=60)


class TestTake:
    @pytest.mark.asyncio
    async def test_take_returns_none_after_timeout(self):
        queue = DeliveryQueue(base_delay=0.01, max_delay=0.05)
        assert await queue.take(Channel.email, timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_take_wakes_on_enqueue(self):
        queue = DeliveryQueue(base_delay=0.01, max_delay=0.05)
        job_id = uuid.uuid4()

        waiter = asyncio.create_task(queue.take(Channel.email, timeout=2))
        await asyncio.sleep(0.01)
        queue.enqueue(Channel.email, job_id, datetime.now(timezone.utc))

        assert await waiter == job_id

    @pytest.mark.asyncio
    async def test_take_waits_until_ready(self):
        queue = DeliveryQueue(base_delay=0.01, max_delay=0.05)
        job_id = uuid.uuid4()
        queue.enqueue(Channel.sms, job_id, datetime.now(timezone.utc) + timedelta(seconds=0.05))

        assert queue.take_nowait(Channel.sms) is None
        assert await queue.take(Channel.sms, timeout=2) == job_id

    @pytest.mark.asyncio
    async def test_each_ticket_handed_to_one_taker(self):
        queue = DeliveryQueue(base_delay=0.01, max_delay=0.05)
        job_id = uuid.uuid4()
        queue.enqueue(Channel.email, job_id, datetime.now(timezone.utc))

        results = await asyncio.gather(
            queue.take(Channel.email, timeout=0.1),
            queue.take(Channel.email, timeout=0.1),
        )

        assert sorted(results, key=lambda r: r is None) == [job_id, None]
