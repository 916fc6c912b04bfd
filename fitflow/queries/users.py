"""User-related read queries using SQLAlchemy Core."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..tables import users


async def get_user_contact(
    conn: AsyncConnection,
    user_id: int,
) -> dict[str, Any] | None:
    """Get the contact details (email, phone, push token, timezone) for a user."""
    result = await conn.execute(
        select(
            users.c.user_id,
            users.c.first_name,
            users.c.last_name,
            users.c.email,
            users.c.phone,
            users.c.push_token,
            users.c.timezone,
        ).where(users.c.user_id == user_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


def get_display_name(user: dict[str, Any], fallback: str = "there") -> str:
    """First name if set, otherwise the fallback (used in greetings)."""
    return (user.get("first_name") or "").strip() or fallback


def get_full_name(user: dict[str, Any]) -> str:
    parts = [user.get("first_name") or "", user.get("last_name") or ""]
    return " ".join(p.strip() for p in parts if p.strip())
