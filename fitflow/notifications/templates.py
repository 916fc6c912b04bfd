"""
Notification message catalogue.

messages.yaml holds one entry per message type. Every entry carries the
three parts a notification is sent with (email_subject, email_body, sms);
entries may add fragments such as list items that builders render first
and splice into those parts. Placeholders use str.format syntax.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from fitflow.enums import Channel

MESSAGES_PATH = Path(__file__).parent / "messages.yaml"
REQUIRED_PARTS = ("email_subject", "email_body", "sms")
SMS_MAX_LENGTH = 160


@dataclass(frozen=True)
class RenderedContent:
    subject: str
    email_body: str
    sms_body: str

    def for_channel(self, channel: Channel) -> tuple[str | None, str]:
        """(subject, content) for a channel. Only email carries a subject."""
        if channel == Channel.email:
            return self.subject, self.email_body
        return None, self.sms_body


@lru_cache(maxsize=1)
def load_templates() -> dict[str, dict[str, str]]:
    """
    Parse messages.yaml once per process.

    Raises:
        ValueError: a message type lacks one of REQUIRED_PARTS
    """
    with open(MESSAGES_PATH) as f:
        catalogue = yaml.safe_load(f)

    for message_type, parts in catalogue.items():
        missing = [part for part in REQUIRED_PARTS if part not in parts]
        if missing:
            raise ValueError(f"Message {message_type} is missing {', '.join(missing)}")
    return catalogue


def render_message(template: str, context: dict[str, Any]) -> str:
    """
    Raises:
        KeyError: a placeholder has no value in context
    """
    return template.format(**context)


def get_message(message_type: str, part: str, context: dict[str, Any]) -> str:
    """Render one part or fragment of a message type, e.g. ("daily_summary", "sms_item")."""
    return render_message(load_templates()[message_type][part], context)


def truncate_sms(text: str, limit: int = SMS_MAX_LENGTH) -> str:
    """Cut an SMS body to the single-segment limit, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def render(
    message_type: str,
    context: dict[str, Any],
    sms_context: dict[str, Any] | None = None,
) -> RenderedContent:
    """
    Render the email subject, email body and SMS body of a message type.

    sms_context overrides entries of context for the SMS body only, for
    shorter dates or flattened text. The SMS body is truncated to
    SMS_MAX_LENGTH.
    """
    sms = get_message(message_type, "sms", {**context, **(sms_context or {})})
    return RenderedContent(
        subject=get_message(message_type, "email_subject", context),
        email_body=get_message(message_type, "email_body", context),
        sms_body=truncate_sms(sms),
    )
