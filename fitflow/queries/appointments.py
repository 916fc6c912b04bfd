"""Appointment, trainer and session note read queries."""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import AppointmentStatus
from ..tables import (
    appointment_participants,
    appointments,
    clients,
    session_notes,
    trainers,
    users,
)
from ..timezone import ensure_utc


async def get_trainer_for_user(
    conn: AsyncConnection,
    user_id: int,
) -> dict[str, Any] | None:
    """Get the trainer record for a user, or None if the user is not a trainer."""
    result = await conn.execute(
        select(
            trainers.c.trainer_id,
            trainers.c.user_id,
            trainers.c.business_name,
            users.c.first_name,
            users.c.last_name,
        )
        .select_from(trainers.join(users, trainers.c.user_id == users.c.user_id))
        .where(trainers.c.user_id == user_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


def _trainer_name_column():
    return func.coalesce(trainers.c.business_name, users.c.first_name)


def _appointment_query():
    return select(
        appointments.c.appointment_id,
        appointments.c.trainer_id,
        appointments.c.class_type,
        appointments.c.location,
        appointments.c.start_time,
        appointments.c.end_time,
        appointments.c.status,
        _trainer_name_column().label("trainer_name"),
    ).select_from(
        appointments.join(trainers, appointments.c.trainer_id == trainers.c.trainer_id).join(
            users, trainers.c.user_id == users.c.user_id
        )
    )


def _appointment_dict(row) -> dict[str, Any]:
    appointment = dict(row)
    appointment["start_time"] = ensure_utc(appointment["start_time"])
    appointment["end_time"] = ensure_utc(appointment["end_time"])
    appointment["participants"] = []
    return appointment


async def _attach_participants(
    conn: AsyncConnection,
    appointment_rows: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Fill each appointment's "participants" list (client id, user id, name)."""
    by_id = {a["appointment_id"]: a for a in appointment_rows}
    if not by_id:
        return appointment_rows

    result = await conn.execute(
        select(
            appointment_participants.c.appointment_id,
            clients.c.client_id,
            clients.c.user_id,
            users.c.first_name,
            users.c.last_name,
        )
        .select_from(
            appointment_participants.join(
                clients, appointment_participants.c.client_id == clients.c.client_id
            ).join(users, clients.c.user_id == users.c.user_id)
        )
        .where(appointment_participants.c.appointment_id.in_(list(by_id)))
        .order_by(appointment_participants.c.appointment_id, clients.c.client_id)
    )
    for row in result.mappings():
        name = " ".join(p for p in (row["first_name"], row["last_name"]) if p)
        by_id[row["appointment_id"]]["participants"].append(
            {
                "client_id": row["client_id"],
                "user_id": row["user_id"],
                "client_name": name or None,
            }
        )
    return appointment_rows


async def get_appointment(
    conn: AsyncConnection,
    appointment_id: int,
) -> dict[str, Any] | None:
    """Get one appointment with trainer name and participants."""
    result = await conn.execute(
        _appointment_query().where(appointments.c.appointment_id == appointment_id)
    )
    row = result.mappings().first()
    if not row:
        return None
    rows = await _attach_participants(conn, [_appointment_dict(row)])
    return rows[0]


async def get_trainer_appointments(
    conn: AsyncConnection,
    trainer_id: int,
    start: datetime,
    end: datetime,
) -> list[dict[str, Any]]:
    """Non-cancelled appointments for a trainer starting in [start, end), earliest first."""
    result = await conn.execute(
        _appointment_query()
        .where(
            and_(
                appointments.c.trainer_id == trainer_id,
                appointments.c.start_time >= ensure_utc(start),
                appointments.c.start_time < ensure_utc(end),
                appointments.c.status != AppointmentStatus.cancelled,
            )
        )
        .order_by(appointments.c.start_time)
    )
    rows = [_appointment_dict(row) for row in result.mappings()]
    return await _attach_participants(conn, rows)


async def get_upcoming_appointments(
    conn: AsyncConnection,
    start: datetime,
    end: datetime,
) -> list[dict[str, Any]]:
    """
    Non-cancelled appointments starting in (start, end], earliest first.

    Used by the reminder trigger; the half-open interval lets adjacent
    windows partition the timeline without overlap.
    """
    result = await conn.execute(
        _appointment_query()
        .where(
            and_(
                appointments.c.start_time > ensure_utc(start),
                appointments.c.start_time <= ensure_utc(end),
                appointments.c.status != AppointmentStatus.cancelled,
            )
        )
        .order_by(appointments.c.start_time)
    )
    rows = [_appointment_dict(row) for row in result.mappings()]
    return await _attach_participants(conn, rows)


async def get_recent_session_notes(
    conn: AsyncConnection,
    client_id: int,
    limit: int = 3,
) -> list[dict[str, Any]]:
    """Most recent session notes for a client, newest first."""
    result = await conn.execute(
        select(session_notes)
        .where(session_notes.c.client_id == client_id)
        .order_by(session_notes.c.session_date.desc(), session_notes.c.note_id.desc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


async def count_session_notes(conn: AsyncConnection, client_id: int) -> int:
    """Number of recorded sessions for a client."""
    result = await conn.execute(
        select(func.count())
        .select_from(session_notes)
        .where(session_notes.c.client_id == client_id)
    )
    return result.scalar_one()


async def get_session_note(
    conn: AsyncConnection,
    note_id: int,
) -> dict[str, Any] | None:
    result = await conn.execute(select(session_notes).where(session_notes.c.note_id == note_id))
    row = result.mappings().first()
    return dict(row) if row else None
