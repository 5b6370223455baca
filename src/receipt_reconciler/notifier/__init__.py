"""
Notifiers for human-facing reports (stale backlog entries).

Provides:
- TelegramNotifier: Telegram Bot API, MarkdownV2 formatting
- LogNotifier: report to the application log
"""

from .telegram import (
    MAX_MESSAGE_LENGTH,
    LogNotifier,
    Notifier,
    NotifierError,
    TelegramNotifier,
    escape_markdown,
)

__all__ = [
    "MAX_MESSAGE_LENGTH",
    "Notifier",
    "NotifierError",
    "TelegramNotifier",
    "LogNotifier",
    "escape_markdown",
]
