"""Stale backlog monitor.

Reports backlog entries that stayed unmatched longer than a threshold, once.
This sweep never touches the reconciliation path: it only reads the backlog
and flags reported entries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from receipt_reconciler.notifier import MAX_MESSAGE_LENGTH, NotifierError, escape_markdown as e
from receipt_reconciler.schemas.actions import (
    InvalidActionPayload,
    UpdateMutation,
    from_minor_units,
)

if TYPE_CHECKING:
    from receipt_reconciler.notifier import Notifier
    from receipt_reconciler.state_store import ActionRecord, StateStore

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 14


@dataclass
class StaleCheckResult:
    """Outcome of one stale sweep."""

    found: int = 0
    notified: bool = False
    marked: int = 0
    messages: int = 0


def _group_by_source(records: list[ActionRecord]) -> dict[str, list[ActionRecord]]:
    """Group records by source; groups keep the order of their oldest entry."""
    groups: dict[str, list[ActionRecord]] = {}
    for record in sorted(records, key=lambda r: (r.date_created, r.id)):
        groups.setdefault(record.source, []).append(record)
    return groups


def _format_entry(record: ActionRecord) -> list[str]:
    date = record.created_at.date().isoformat()
    try:
        action = record.to_pending_action()
    except InvalidActionPayload:
        return [e(f"({date}) #{record.id}"), e("Unreadable action payload"), ""]

    amount = from_minor_units(action.match.expected_total)
    detail = (
        f"Note: {e(action.mutation.note)}"
        if isinstance(action.mutation, UpdateMutation)
        else f"Splits: {len(action.mutation.items)} items"
    )
    return [
        e(f"({date})"),
        f"{action.label}: {e(action.match.expected_payee)} \\- {e(f'${amount}')}",
        detail,
        "",
    ]


def format_stale_report(records: list[ActionRecord], threshold_days: int) -> str:
    """Render one consolidated MarkdownV2 report, grouped by source."""
    lines = [f"💸 *{e('Unprocessed receipt actions')}*", ""]
    lines.append(
        e(f"Found {len(records)} action entries older than {threshold_days} days:")
    )
    lines.append("")

    for source, group in _group_by_source(records).items():
        lines.append(f"*{e(source)}* {e(f'({len(group)})')}")
        for record in group:
            lines.extend(_format_entry(record))

    lines.append(e("These entries need manual attention as they haven't been processed."))
    return "\n".join(lines)


def _truncate(line: str, limit: int) -> str:
    """Cut an over-long line without leaving a dangling escape."""
    cut = line[: limit - 1]
    trailing = len(cut) - len(cut.rstrip("\\"))
    if trailing % 2:
        cut = cut[:-1]
    return cut + "…"


def split_report(message: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Break a report into messages of at most ``limit`` characters.

    Breaks fall on line boundaries, so formatting entities (which never span
    lines) stay intact. A single line longer than the limit is truncated.
    """
    chunks: list[str] = []
    current: list[str] = []
    size = 0

    for line in message.split("\n"):
        if len(line) > limit:
            line = _truncate(line, limit)
        added = len(line) + (1 if current else 0)
        if current and size + added > limit:
            chunks.append("\n".join(current))
            current, size, added = [], 0, len(line)
        current.append(line)
        size += added

    if current:
        chunks.append("\n".join(current))
    return [chunk.strip("\n") for chunk in chunks if chunk.strip()]


class StaleActionMonitor:
    """Flags backlog entries older than a threshold and notifies once.

    Usage:
        monitor = StaleActionMonitor(store, TelegramNotifier(token, chat_id))
        result = monitor.check()
    """

    def __init__(
        self,
        state_store: StateStore,
        notifier: Notifier,
        threshold_days: int = DEFAULT_THRESHOLD_DAYS,
        max_message_length: int = MAX_MESSAGE_LENGTH,
    ) -> None:
        self.store = state_store
        self.notifier = notifier
        self.threshold_days = threshold_days
        self.max_message_length = max_message_length

    def check(self, now: datetime | None = None, dry_run: bool = False) -> StaleCheckResult:
        """Run one sweep.

        The report is sent in as many messages as the length limit requires.
        Entries are marked as notified after the send was attempted, even if
        it failed; a reported entry is never reported again.

        Args:
            now: Reference time (defaults to current UTC time).
            dry_run: If True, log the report without sending or marking.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.threshold_days)
        result = StaleCheckResult()

        records = self.store.list_stale_actions(cutoff)
        result.found = len(records)
        if not records:
            return result

        logger.info("Found %d old action entries", len(records))
        message = format_stale_report(records, self.threshold_days)

        if dry_run:
            logger.info("[DRY RUN] Stale report:\n%s", message)
            return result

        parts = split_report(message, self.max_message_length)
        result.messages = len(parts)
        try:
            for part in parts:
                self.notifier.send(part)
            result.notified = True
        except NotifierError as exc:
            logger.error("Stale report not delivered: %s", exc)

        result.marked = self.store.mark_stale_notified(record.id for record in records)
        return result
