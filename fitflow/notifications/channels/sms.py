"""
Twilio SMS delivery channel.

Talks to the Twilio Messages REST API directly over httpx.
"""

import logging
import os
import re
from typing import TYPE_CHECKING

import httpx

from fitflow.notifications.errors import TransportError

if TYPE_CHECKING:
    from fitflow.notifications.jobs import NotificationJob

logger = logging.getLogger(__name__)


TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def is_e164(phone: str) -> bool:
    return bool(E164_PATTERN.match(phone or ""))


class SmsTransport:
    """
    SMS transport backed by Twilio.

    Credentials default to TWILIO_* environment variables. When a
    messaging service SID is configured it is used instead of a From number.

    Args:
        client: Optional shared httpx.AsyncClient (tests pass one built on
            httpx.MockTransport). Without one, a client is opened per send.
        timeout: HTTP timeout in seconds
    """

    channel_name = "sms"

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        messaging_service_sid: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.account_sid = account_sid or os.environ.get("TWILIO_ACCOUNT_SID")
        self.auth_token = auth_token or os.environ.get("TWILIO_AUTH_TOKEN")
        self.from_number = from_number or os.environ.get("TWILIO_PHONE_NUMBER")
        self.messaging_service_sid = messaging_service_sid or os.environ.get(
            "TWILIO_MESSAGING_SERVICE_SID"
        )
        self.client = client
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(
            self.account_sid
            and self.auth_token
            and (self.from_number or self.messaging_service_sid)
        )

    async def send(self, job: "NotificationJob") -> str:
        """
        Send job.content to job.recipient.

        Returns:
            Twilio message SID

        Raises:
            TransportError: not configured, bad number, HTTP failure or non-2xx
        """
        return await self.send_sms(job.recipient, job.content)

    async def send_sms(self, to_phone: str, body: str) -> str:
        if not self.is_configured:
            raise TransportError("Twilio not configured (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN not set)")

        if not is_e164(to_phone):
            raise TransportError(
                f"Phone number not in E.164 format: {to_phone!r}", status_code=400
            )

        data = {"To": to_phone, "Body": body}
        if self.messaging_service_sid:
            data["MessagingServiceSid"] = self.messaging_service_sid
        else:
            data["From"] = self.from_number

        url = TWILIO_MESSAGES_URL.format(account_sid=self.account_sid)
        try:
            if self.client is not None:
                response = await self._post(self.client, url, data)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, url, data)
        except httpx.HTTPError as e:
            raise TransportError(f"Twilio request failed: {e}") from e

        if response.status_code not in (200, 201):
            raise TransportError(
                f"Twilio returned {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )

        sid = response.json().get("sid", "")
        logger.info(f"SMS sent to {to_phone} (SID: {sid})")
        return sid

    async def _post(self, client: httpx.AsyncClient, url: str, data: dict) -> httpx.Response:
        return await client.post(
            url,
            auth=(self.account_sid, self.auth_token),
            data=data,
            timeout=self.timeout,
        )


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", "Unknown error")
    except ValueError:
        return response.text or "Unknown error"
