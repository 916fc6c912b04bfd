"""Exceptions raised inside the notification pipeline."""

import uuid


class NotificationError(Exception):
    """Base class for notification pipeline errors."""


class InvalidJob(NotificationError):
    """Malformed job input (missing recipient, subject or content)."""


class DuplicateJob(NotificationError):
    """A live (non-dead) job with this dedup key already exists."""

    def __init__(self, dedup_key: str, user_id: int, channel):
        super().__init__(
            f"Job {dedup_key} already exists for user {user_id} ({getattr(channel, 'value', channel)})"
        )
        self.dedup_key = dedup_key
        self.user_id = user_id
        self.channel = channel


class TransportError(NotificationError):
    """Transient failure from an email/SMS provider (timeout, 5xx, rate limit)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StaleTransition(NotificationError):
    """Compare-and-set failed: the job was no longer in the expected status."""

    def __init__(self, job_id: uuid.UUID, expected: str, actual: str | None):
        super().__init__(
            f"Job {job_id} is {actual or 'missing'}, expected {expected}"
        )
        self.job_id = job_id
        self.expected = expected
        self.actual = actual


class Exhausted(NotificationError):
    """The job has used its whole attempt budget."""

    def __init__(self, job_id: uuid.UUID):
        super().__init__(f"Job {job_id} has no attempts left")
        self.job_id = job_id


class GenerationUnavailable(NotificationError):
    """Text generation is not configured or the provider failed."""
