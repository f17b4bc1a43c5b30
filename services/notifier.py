"""
Customer notifications.

Notifications are a separate, explicitly best-effort step: a notifier
failure is logged and never changes the outcome of the transition that
triggered it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from core.exceptions import StorybookPrintError
from logging_config import get_logger


logger = get_logger(__name__)

TEMPLATE_BOOK_SHIPPED = "book_shipped"
TEMPLATE_EBOOK_READY = "ebook_ready"


class NotificationError(StorybookPrintError):
    """The e-mail service did not accept a notification."""


class Notifier(ABC):
    @abstractmethod
    def send(self, template_key: str, recipient_email: str, variables: Dict[str, Any]) -> None:
        """Send one templated message. Raises NotificationError on failure."""


class EmailServiceNotifier(Notifier):
    """Posts templated messages to the e-mail service over HTTP."""

    def __init__(self, service_url: str, token: str = "", timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self._url = service_url
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def send(self, template_key: str, recipient_email: str, variables: Dict[str, Any]) -> None:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        body = {
            "template_key": template_key,
            "recipient_email": recipient_email,
            "variables": variables,
        }
        try:
            response = self._session.post(self._url, json=body, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise NotificationError(f"E-mail service unreachable: {exc}", {"template": template_key})
        if not response.ok:
            raise NotificationError(
                f"E-mail service rejected message: {response.status_code}",
                {"template": template_key, "status_code": response.status_code},
            )


class LoggingNotifier(Notifier):
    """Records notifications in the log instead of sending them."""

    def send(self, template_key: str, recipient_email: str, variables: Dict[str, Any]) -> None:
        logger.info(f"Notification '{template_key}' for {recipient_email}: {variables}")


def notify_best_effort(
    notifier: Optional[Notifier],
    template_key: str,
    recipient_email: str,
    variables: Dict[str, Any],
) -> bool:
    """
    Send a notification, logging instead of raising on failure.

    Returns:
        True if the notifier accepted the message
    """
    if notifier is None or not recipient_email:
        logger.info(f"Notification '{template_key}' skipped: no notifier or recipient")
        return False
    try:
        notifier.send(template_key, recipient_email, variables)
    except Exception as exc:
        logger.warning(f"Notification '{template_key}' to {recipient_email} failed: {exc}")
        return False
    logger.info(f"Notification '{template_key}' sent to {recipient_email}")
    return True
