"""Root pytest configuration."""

from datetime import date, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

from fitflow.enums import AppointmentStatus, Channel, NotificationType
from fitflow.tables import (
    appointment_participants,
    appointments,
    clients,
    metadata,
    notification_preferences,
    session_notes,
    trainers,
    users,
)

# Load environment variables before tests run
_root = Path(__file__).parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local", override=True)


@pytest.fixture(scope="session")
def event_loop_policy():
    """Use default event loop policy for all async tests."""
    import asyncio

    return asyncio.DefaultEventLoopPolicy()


@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    Async engine on a throwaway SQLite file with the full schema.

    Runs the same SQLAlchemy Core statements as production, without
    needing a PostgreSQL server.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


class Seeder:
    """Inserts platform rows for tests. Every method returns the new primary key."""

    def __init__(self, engine):
        self.engine = engine

    async def _insert(self, table, **values):
        async with self.engine.begin() as conn:
            result = await conn.execute(insert(table).values(**values))
            return result.inserted_primary_key[0]

    async def user(
        self,
        first_name: str = "Alex",
        last_name: str | None = None,
        email: str | None = "alex@example.com",
        phone: str | None = "+14165550100",
        push_token: str | None = None,
        timezone: str | None = "UTC",
    ) -> int:
        return await self._insert(
            users,
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone=phone,
            push_token=push_token,
            timezone=timezone,
        )

    async def trainer(self, user_id: int, business_name: str | None = None) -> int:
        return await self._insert(trainers, user_id=user_id, business_name=business_name)

    async def client(self, user_id: int) -> int:
        return await self._insert(clients, user_id=user_id)

    async def appointment(
        self,
        trainer_id: int,
        start_time: datetime,
        duration: timedelta = timedelta(hours=1),
        class_type: str = "Personal Training",
        location: str | None = "Downtown Studio",
        status: AppointmentStatus = AppointmentStatus.scheduled,
        client_ids: tuple[int, ...] = (),
    ) -> int:
        appointment_id = await self._insert(
            appointments,
            trainer_id=trainer_id,
            class_type=class_type,
            location=location,
            start_time=start_time,
            end_time=start_time + duration,
            status=status,
        )
        for client_id in client_ids:
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(appointment_participants).values(
                        appointment_id=appointment_id, client_id=client_id
                    )
                )
        return appointment_id

    async def preference(
        self,
        user_id: int,
        notification_type: NotificationType,
        channel: Channel,
        enabled: bool = True,
        schedule_time: str | None = None,
        timezone: str | None = None,
    ) -> int:
        return await self._insert(
            notification_preferences,
            user_id=user_id,
            notification_type=notification_type,
            channel=channel,
            enabled=enabled,
            schedule_time=schedule_time,
            timezone=timezone,
        )

    async def note(
        self,
        client_id: int,
        trainer_id: int,
        session_date: date,
        plan: str | None = "Increase squat volume",
        assessment: str | None = None,
        private_notes: str | None = None,
    ) -> int:
        return await self._insert(
            session_notes,
            client_id=client_id,
            trainer_id=trainer_id,
            session_date=session_date,
            plan=plan,
            assessment=assessment,
            private_notes=private_notes,
        )


@pytest.fixture
def seed(engine):
    return Seeder(engine)


class RecordingTransport:
    """
    Fake transport that records calls.

    Args:
        failures: Number of leading calls that raise
        error: Exception raised for a failing call
        delay: Seconds each call takes
    """

    def __init__(self, failures: int = 0, error: Exception | None = None, delay: float = 0):
        self.failures = failures
        self.error = error
        self.delay = delay
        self.calls = []

    async def send(self, job) -> str:
        import asyncio

        from fitflow.notifications.errors import TransportError

        self.calls.append(job)
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self.calls) <= self.failures:
            raise self.error or TransportError("provider unavailable", status_code=503)
        return f"msg-{len(self.calls)}"


@pytest.fixture
def make_transport():
    return RecordingTransport
