"""
Notification senders.

Fire-and-forget from the reconciler's point of view: `notify` returns False
on failure and logs it, it never raises into the write path.
"""

import logging
from typing import Mapping, Optional, Protocol

import httpx

from jobsheet.core.metrics import notifications_total
from jobsheet.features.notifications.templates import NotificationTemplate, render


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class NotificationSender(Protocol):
    def notify(self, email: str, template: NotificationTemplate, variables: Mapping[str, object]) -> bool:
        ...


class ResendNotificationSender:
    """Sends transactional email through the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        *,
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.sender = sender
        self.client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"}

    def notify(self, email: str, template: NotificationTemplate, variables: Mapping[str, object]) -> bool:
        subject, html = render(template, variables)
        try:
            response = self.client.post(
                RESEND_API_URL,
                headers=self._headers,
                json={"from": self.sender, "to": [email], "subject": subject, "html": html},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            notifications_total.inc(labels={"template": template.value, "outcome": "failed"})
            logger.error(
                "notifications.send_failed",
                extra={"template": template.value, "error_code": type(e).__name__, "outcome": "failed"},
            )
            return False

        notifications_total.inc(labels={"template": template.value, "outcome": "sent"})
        logger.info("notifications.sent", extra={"template": template.value, "outcome": "sent"})
        return True

    def close(self) -> None:
        self.client.close()


class LoggingNotificationSender:
    """Used when no email API key is configured: records intent in the logs only."""

    def notify(self, email: str, template: NotificationTemplate, variables: Mapping[str, object]) -> bool:
        notifications_total.inc(labels={"template": template.value, "outcome": "skipped"})
        logger.info(
            "notifications.skipped",
            extra={"template": template.value, "outcome": "skipped", "account_id": variables.get("account_id")},
        )
        return False
