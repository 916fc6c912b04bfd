"""SendGrid email delivery channel."""

import asyncio
import logging
import os
import re
from typing import TYPE_CHECKING

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from fitflow.notifications.errors import TransportError

if TYPE_CHECKING:
    from fitflow.notifications.jobs import NotificationJob

logger = logging.getLogger(__name__)


SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
FROM_EMAIL = os.environ.get("FROM_EMAIL", "notifications@fitflow.app")
FROM_NAME = os.environ.get("FROM_NAME", "FitFlow")

# Regex to match markdown links: [text](url)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")

_client: SendGridAPIClient | None = None


def markdown_to_html(text: str) -> str:
    """
    Convert markdown-style links to HTML and wrap in basic HTML structure.

    Converts [text](url) to <a href="url">text</a> and preserves line breaks.
    """
    html_body = MARKDOWN_LINK_PATTERN.sub(r'<a href="\2">\1</a>', text)
    html_body = html_body.replace("\n", "<br>\n")

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.5; color: #222;">
{html_body}
</body>
</html>"""


def markdown_to_plain_text(text: str) -> str:
    """Convert [text](url) to "text (url)" for the plain text part."""
    return MARKDOWN_LINK_PATTERN.sub(r"\1 (\2)", text)


def _get_sendgrid_client() -> SendGridAPIClient | None:
    """Get or create SendGrid client singleton."""
    global _client
    if _client is None and SENDGRID_API_KEY:
        _client = SendGridAPIClient(SENDGRID_API_KEY)
    return _client


def send_email(to_email: str, subject: str, body: str) -> str:
    """
    Send an email via SendGrid (blocking).

    The body can contain markdown-style links [text](url) which will be
    converted to HTML links. Both plain text and HTML versions are sent.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        body: Email body (may contain markdown links)

    Returns:
        SendGrid message id (X-Message-Id header, empty string if absent)

    Raises:
        TransportError: SendGrid not configured, rejected the message, or
            could not be reached
    """
    client = _get_sendgrid_client()
    if not client:
        raise TransportError("SendGrid not configured (SENDGRID_API_KEY not set)")

    message = Mail(
        from_email=(FROM_EMAIL, FROM_NAME),
        to_emails=to_email,
        subject=subject,
        plain_text_content=markdown_to_plain_text(body),
        html_content=markdown_to_html(body),
    )

    try:
        response = client.send(message)
    except Exception as e:
        # python-http-client raises HTTPError subclasses for 4xx/5xx
        status_code = getattr(e, "status_code", None)
        raise TransportError(f"SendGrid send failed: {e}", status_code=status_code) from e

    if response.status_code not in (200, 201, 202):
        raise TransportError(
            f"SendGrid returned {response.status_code}",
            status_code=response.status_code,
        )

    headers = response.headers or {}
    return headers.get("X-Message-Id", "") or ""


class EmailTransport:
    """Email transport for the dispatcher. Runs the blocking SendGrid call in a thread."""

    channel_name = "email"

    async def send(self, job: "NotificationJob") -> str:
        message_id = await asyncio.to_thread(
            send_email, job.recipient, job.subject or "", job.content
        )
        logger.info(f"Email sent to {job.recipient} for job {job.id} ({message_id or 'no id'})")
        return message_id
