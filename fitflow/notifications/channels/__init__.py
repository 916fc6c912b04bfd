"""
Delivery channels.

A transport takes a claimed job and delivers it, returning the provider's
message id. Transports never retry; a failure raises (normally
TransportError) and the dispatcher decides what happens next.
"""

from typing import TYPE_CHECKING, Protocol

from fitflow.enums import Channel

if TYPE_CHECKING:
    from fitflow.notifications.jobs import NotificationJob


class Transport(Protocol):
    async def send(self, job: "NotificationJob") -> str: ...


def default_transports() -> dict[Channel, Transport]:
    """Transports configured from the environment. Push has no provider yet."""
    from fitflow.notifications.channels.email import EmailTransport
    from fitflow.notifications.channels.sms import SmsTransport

    return {
        Channel.email: EmailTransport(),
        Channel.sms: SmsTransport(),
    }
