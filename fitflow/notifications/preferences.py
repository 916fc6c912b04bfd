"""
Per-user channel preferences.

Reads notification_preferences (owned by the preference store). A user with
no rows for a notification type is treated as having it disabled.
"""

import logging
from dataclasses import dataclass
from datetime import time

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncConnection

from fitflow.enums import Channel, NotificationType
from fitflow.tables import notification_preferences

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleHint:
    """Local wall-clock send time in an IANA timezone (None means the user's own)."""

    time: time
    timezone: str | None


@dataclass(frozen=True)
class ChannelPreference:
    channel: Channel
    schedule: ScheduleHint | None = None


def parse_schedule_time(value: str | None) -> time | None:
    """
    Parse "HH:MM" (or "HH:MM:SS") into a time.

    Returns None for empty or malformed values.
    """
    if not value:
        return None
    try:
        return time.fromisoformat(value.strip())
    except ValueError:
        return None


async def resolve_preferences(
    conn: AsyncConnection,
    user_id: int,
    notification_type: NotificationType,
) -> list[ChannelPreference]:
    """
    Enabled channels (with optional schedule) for a user and notification type.

    Returns [] if the user disabled the type or has no preference rows.
    """
    result = await conn.execute(
        select(notification_preferences)
        .where(
            and_(
                notification_preferences.c.user_id == user_id,
                notification_preferences.c.notification_type == notification_type,
                notification_preferences.c.enabled.is_(True),
            )
        )
        .order_by(notification_preferences.c.channel)
    )

    preferences = []
    for row in result.mappings():
        schedule = None
        if row["schedule_time"]:
            parsed = parse_schedule_time(row["schedule_time"])
            if parsed is None:
                logger.warning(
                    f"Ignoring malformed schedule_time {row['schedule_time']!r} "
                    f"for user {user_id} ({notification_type.value}/{row['channel'].value})"
                )
            else:
                schedule = ScheduleHint(time=parsed, timezone=row["timezone"])
        preferences.append(ChannelPreference(channel=Channel(row["channel"]), schedule=schedule))

    return preferences


async def get_users_with_enabled_preference(
    conn: AsyncConnection,
    notification_type: NotificationType,
) -> list[int]:
    """User ids with at least one enabled channel for a notification type."""
    result = await conn.execute(
        select(notification_preferences.c.user_id)
        .where(
            and_(
                notification_preferences.c.notification_type == notification_type,
                notification_preferences.c.enabled.is_(True),
            )
        )
        .distinct()
        .order_by(notification_preferences.c.user_id)
    )
    return [row.user_id for row in result]
