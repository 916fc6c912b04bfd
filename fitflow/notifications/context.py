"""
Context building for scheduled notifications.

Triggers fetch fresh data here at run time and hand plain dicts to the
summary builder, so a job's content reflects the schedule as it was when
the job was created.
"""

from datetime import date
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection

from fitflow.queries import (
    count_session_notes,
    get_recent_session_notes,
    get_trainer_appointments,
    get_trainer_for_user,
    get_user_contact,
)
from fitflow.timezone import local_day_bounds


async def get_daily_summary_context(
    conn: AsyncConnection,
    user_id: int,
    day: date,
    tz_name: str | None,
) -> dict[str, Any] | None:
    """
    Everything needed to render a trainer's daily summary.

    Args:
        user_id: Trainer's user id
        day: Local date whose appointments are summarised
        tz_name: Timezone that defines the local day

    Returns:
        Dict with "user", "trainer", "appointments" and "client_notes"
        (client_id -> up to 3 recent notes), or None if the user is not a
        trainer or has no appointments that day.
    """
    trainer = await get_trainer_for_user(conn, user_id)
    if not trainer:
        return None

    start, end = local_day_bounds(day, tz_name)
    appointments = await get_trainer_appointments(conn, trainer["trainer_id"], start, end)
    if not appointments:
        return None

    client_notes: dict[int, list[dict[str, Any]]] = {}
    for appointment in appointments:
        for participant in appointment["participants"][:1]:
            client_id = participant["client_id"]
            if client_id not in client_notes:
                notes = await get_recent_session_notes(conn, client_id, limit=3)
                if notes:
                    client_notes[client_id] = notes

    return {
        "user": await get_user_contact(conn, user_id),
        "trainer": trainer,
        "appointments": appointments,
        "client_notes": client_notes,
    }


def trainer_display_name(trainer: dict[str, Any]) -> str:
    return trainer.get("business_name") or trainer.get("first_name") or "there"


async def get_client_history(conn: AsyncConnection, client_id: int) -> dict[str, Any]:
    """Session count and most recent plan for personalising reminders."""
    recent = await get_recent_session_notes(conn, client_id, limit=1)
    return {
        "previous_sessions": await count_session_notes(conn, client_id),
        "last_plan": recent[0].get("plan") if recent else None,
    }
