"""
FitFlow notification service.

Platform-agnostic core: schema, database access and time zone helpers.
The delivery pipeline lives in fitflow.notifications.
"""

# Database (SQLAlchemy)
from .database import close_engine, get_connection, get_engine, get_transaction

# Timezone utilities
from .timezone import ensure_utc, next_send_time, utcnow
