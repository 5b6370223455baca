"""
Notification delivery.

Notifications are best effort: a failed send is logged by the caller and
never retried.
"""

import logging
import re
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

# Characters reserved by Telegram MarkdownV2 (plus the escape character itself)
_MARKDOWN_V2_RESERVED = re.compile(r"([\\_*\[\]()~`>#+\-=|{}.!])")

# Telegram rejects sendMessage text longer than this
MAX_MESSAGE_LENGTH = 4096


class NotifierError(Exception):
    """Raised when a notification could not be delivered."""

    pass


class Notifier(Protocol):
    """Anything that can deliver a text report."""

    def send(self, message: str) -> None: ...


def escape_markdown(text: str) -> str:
    """Escape text for Telegram MarkdownV2.

    >>> escape_markdown("Lyft (ride) - $12.34")
    'Lyft \\\\(ride\\\\) \\\\- $12\\\\.34'
    """
    return _MARKDOWN_V2_RESERVED.sub(r"\\\1", text)


class TelegramNotifier:
    """Send messages to a chat through the Telegram Bot API."""

    API_URL = "https://api.telegram.org"
    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        token: str | None,
        chat_id: str | None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout

    def send(self, message: str) -> None:
        """Send a MarkdownV2 message.

        Missing credentials skip the send with a warning.

        Raises:
            NotifierError: If the request fails or Telegram rejects it
        """
        if not self.token or not self.chat_id:
            logger.warning("Telegram credentials not configured, skipping notification")
            return

        url = f"{self.API_URL}/bot{self.token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": message,
            "parse_mode": "MarkdownV2",
        }

        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Failed to send Telegram message: %s", e)
            raise NotifierError(f"Telegram request failed: {e}") from e

        if not response.ok:
            logger.error("Failed to send Telegram message: %s", response.text)
            raise NotifierError(f"Telegram API error {response.status_code}: {response.text}")

        logger.debug("Telegram message sent to chat %s", self.chat_id)


class LogNotifier:
    """Write reports to the log instead of an external channel."""

    def send(self, message: str) -> None:
        logger.info("Notification:\n%s", message)
