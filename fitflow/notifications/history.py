"""Read-only projections of the job ledger for history views and reporting."""

from datetime import datetime
from typing import Any

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncConnection

from fitflow.enums import Channel, JobStatus, NotificationType
from fitflow.notifications.jobs import NotificationJob
from fitflow.tables import notification_jobs
from fitflow.timezone import ensure_utc


async def list_history(
    conn: AsyncConnection,
    user_id: int,
    status: JobStatus | None = None,
    notification_type: NotificationType | None = None,
    channel: Channel | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[NotificationJob]:
    """A user's notification jobs, newest first, with optional filters."""
    conditions = [notification_jobs.c.user_id == user_id]
    if status is not None:
        conditions.append(notification_jobs.c.status == JobStatus(status))
    if notification_type is not None:
        conditions.append(
            notification_jobs.c.notification_type == NotificationType(notification_type)
        )
    if channel is not None:
        conditions.append(notification_jobs.c.channel == Channel(channel))

    result = await conn.execute(
        select(notification_jobs)
        .where(and_(*conditions))
        .order_by(notification_jobs.c.created_at.desc(), notification_jobs.c.id)
        .limit(limit)
        .offset(offset)
    )
    return [NotificationJob.from_row(row) for row in result.mappings()]


async def get_statistics(
    conn: AsyncConnection,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[dict[str, Any]]:
    """
    Job counts grouped by notification type, channel and status.

    Args:
        start: Only jobs created at or after this instant
        end: Only jobs created before this instant

    Returns:
        Rows like {"notification_type": "daily_summary", "channel": "email",
        "status": "sent", "count": 12}
    """
    conditions = []
    if start is not None:
        conditions.append(notification_jobs.c.created_at >= ensure_utc(start))
    if end is not None:
        conditions.append(notification_jobs.c.created_at < ensure_utc(end))

    query = select(
        notification_jobs.c.notification_type,
        notification_jobs.c.channel,
        notification_jobs.c.status,
        func.count().label("count"),
    ).group_by(
        notification_jobs.c.notification_type,
        notification_jobs.c.channel,
        notification_jobs.c.status,
    )
    if conditions:
        query = query.where(and_(*conditions))
    query = query.order_by(
        notification_jobs.c.notification_type,
        notification_jobs.c.channel,
        notification_jobs.c.status,
    )

    result = await conn.execute(query)
    return [
        {
            "notification_type": row["notification_type"].value,
            "channel": row["channel"].value,
            "status": row["status"].value,
            "count": row["count"],
        }
        for row in result.mappings()
    ]
