"""Read-only query layer over the platform tables using SQLAlchemy Core."""

from .appointments import (
    count_session_notes,
    get_appointment,
    get_recent_session_notes,
    get_session_note,
    get_trainer_appointments,
    get_trainer_for_user,
    get_upcoming_appointments,
)
from .users import get_display_name, get_full_name, get_user_contact

__all__ = [
    # Users
    "get_user_contact",
    "get_display_name",
    "get_full_name",
    # Appointments
    "get_appointment",
    "get_trainer_for_user",
    "get_trainer_appointments",
    "get_upcoming_appointments",
    # Session notes
    "get_recent_session_notes",
    "count_session_notes",
    "get_session_note",
]
