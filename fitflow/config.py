"""
Centralized configuration for the FitFlow notification pipeline.

Every setting is read from the environment on each call so tests can
override values with patch.dict("os.environ", ...).
"""

import os
from datetime import time, timedelta

from .enums import Channel


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running in production (ENVIRONMENT=production)."""
    return os.environ.get("ENVIRONMENT", "").lower() == "production"


def _get_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _get_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# =====================================================
# Database pool
# =====================================================


def get_db_pool_size() -> int:
    return _get_int("DB_POOL_SIZE", 5)


def get_db_pool_overflow() -> int:
    return _get_int("DB_MAX_OVERFLOW", 10)


def get_db_pool_recycle() -> int:
    """Seconds before a pooled connection is replaced."""
    return _get_int("DB_POOL_RECYCLE_SECONDS", 1800)


# =====================================================
# Delivery / retry policy
# =====================================================


def get_max_attempts() -> int:
    """Default attempt budget for a new job."""
    return _get_int("NOTIFICATION_MAX_ATTEMPTS", 3)


def get_retry_base_delay() -> float:
    """Backoff base in seconds (first retry waits this long)."""
    return _get_float("NOTIFICATION_RETRY_BASE_SECONDS", 2.0)


def get_retry_max_delay() -> float:
    """Backoff cap in seconds."""
    return _get_float("NOTIFICATION_RETRY_MAX_SECONDS", 60.0)


def get_send_timeout() -> float:
    """Timeout in seconds for a single transport call."""
    return _get_float("NOTIFICATION_SEND_TIMEOUT_SECONDS", 10.0)


DEFAULT_WORKER_CONCURRENCY = {
    Channel.email: 2,
    Channel.sms: 2,
    Channel.push: 1,
}


def get_worker_concurrency(channel: Channel) -> int:
    """Number of concurrent workers for a channel (e.g. EMAIL_WORKER_CONCURRENCY)."""
    env_name = f"{channel.value.upper()}_WORKER_CONCURRENCY"
    return _get_int(env_name, DEFAULT_WORKER_CONCURRENCY[channel])


def get_lease_seconds() -> float:
    """How long a job may stay in_flight before recovery releases it."""
    return _get_float("NOTIFICATION_LEASE_SECONDS", 300.0)


def get_recovery_interval_seconds() -> int:
    return _get_int("NOTIFICATION_RECOVERY_INTERVAL_SECONDS", 30)


# =====================================================
# Scheduler triggers
# =====================================================


def get_reminder_lead_times() -> list[timedelta]:
    """
    Reminder lead times, shortest first.

    Parsed from REMINDER_LEAD_HOURS, a comma-separated list of hours
    (fractions allowed, e.g. "24,1" or "48,2,0.5").
    """
    raw = os.getenv("REMINDER_LEAD_HOURS", "24,1")
    hours = {float(part) for part in raw.split(",") if part.strip()}
    return sorted(timedelta(hours=h) for h in hours if h > 0)


def get_reminder_interval_minutes() -> int:
    return _get_int("REMINDER_INTERVAL_MINUTES", 60)


def get_daily_summary_trigger_hour() -> int:
    """UTC hour at which the daily summary trigger fires."""
    return _get_int("DAILY_SUMMARY_TRIGGER_HOUR", 18)


def get_daily_summary_default_time() -> time:
    """Local send time used when a daily_summary preference has no schedule."""
    raw = os.getenv("DAILY_SUMMARY_DEFAULT_TIME", "07:00")
    hour, minute = raw.split(":")
    return time(int(hour), int(minute))


def get_daily_summary_lookahead_days() -> int:
    """Which day a summary covers, relative to the trigger run's local date."""
    return _get_int("DAILY_SUMMARY_LOOKAHEAD_DAYS", 1)


# =====================================================
# Text generation
# =====================================================


def is_ai_summaries_enabled() -> bool:
    return os.getenv("ENABLE_AI_SUMMARIES", "").lower() in ("true", "1", "yes")


def get_llm_timeout() -> float:
    return _get_float("LLM_TIMEOUT_SECONDS", 20.0)


# Required environment variables for production
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("SENDGRID_API_KEY", "SendGrid API key for email delivery", False),
    ("TWILIO_ACCOUNT_SID", "Twilio account SID for SMS delivery", False),
    ("TWILIO_AUTH_TOKEN", "Twilio auth token for SMS delivery", False),
    ("SENTRY_DSN", "Sentry DSN for error reporting", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production():
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        for error in errors:
            print(error)
        return False, warnings

    return True, warnings
