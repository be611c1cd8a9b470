"""Fire-and-forget notifications for lifecycle events."""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

import httpx

from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

RecipientResolver = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class Notification:
    event: str
    recipient_id: str
    subject: str
    details: dict[str, Any] = field(default_factory=dict)


class NotificationSender(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class LoggingNotificationSender:
    """Default sender: records the event in the application log."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s -> %s: %s %s",
            notification.event,
            notification.recipient_id,
            notification.subject,
            notification.details,
        )


class EmailNotificationSender:
    """Posts an email through a Resend-compatible HTTP API.

    `recipient_resolver` maps a user id to an address; identity lives outside
    the engine.
    """

    def __init__(
        self,
        recipient_resolver: RecipientResolver,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._resolve = recipient_resolver
        self._client = client or httpx.Client(timeout=10.0)

    def send(self, notification: Notification) -> None:
        address = self._resolve(notification.recipient_id)
        if not address:
            raise LookupError(f"No email address for user {notification.recipient_id}")
        lines = "".join(
            f"<p><strong>{html.escape(str(key))}:</strong> {html.escape(str(value))}</p>"
            for key, value in sorted(notification.details.items())
        )
        response = self._client.post(
            self._settings.notification_api_url,
            headers={"Authorization": f"Bearer {self._settings.notification_api_key}"},
            json={
                "from": self._settings.notification_sender,
                "to": [address],
                "subject": notification.subject,
                "html": f"<h2>{html.escape(notification.subject)}</h2>{lines}",
            },
        )
        response.raise_for_status()


def address_from_user_id(user_id: str) -> Optional[str]:
    """Identity providers that key users by email need no lookup."""
    candidate = user_id.strip()
    local, _, domain = candidate.partition("@")
    if local and "." in domain:
        return candidate
    return None


def build_notifier(
    settings: Optional[Settings] = None,
    recipient_resolver: Optional[RecipientResolver] = None,
    client: Optional[httpx.Client] = None,
) -> NotificationSender:
    """Email when an API key is configured, the application log otherwise."""
    settings = settings or get_settings()
    if not settings.notification_api_key:
        return LoggingNotificationSender()
    logger.info("Email notifications enabled via %s", settings.notification_api_url)
    return EmailNotificationSender(
        recipient_resolver or address_from_user_id,
        settings=settings,
        client=client,
    )


def notify_safely(sender: Optional[NotificationSender], notification: Notification) -> bool:
    """Deliver after a committed transition; a failed send never undoes it."""
    if sender is None:
        return False
    try:
        sender.send(notification)
        return True
    except Exception:
        logger.exception(
            "Failed to send %s notification to %s",
            notification.event,
            notification.recipient_id,
        )
        return False
