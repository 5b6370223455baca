"""Ingestion of parsed notification emails into the action backlog.

Vendor processors are supplied explicitly (no global registry). The first
processor whose ``matches`` accepts an email turns it into an ActionDraft,
which is appended to the backlog under the processor's identifier.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from receipt_reconciler.schemas.actions import (
    ActionDraft,
    MatchCriteria,
    SplitLine,
    SplitMutation,
    UpdateMutation,
)
from receipt_reconciler.schemas.allocation import item_charges

if TYPE_CHECKING:
    from receipt_reconciler.state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Email:
    """The parts of a parsed email that processors look at."""

    sender: str
    subject: str
    text: str = ""
    html: str | None = None


class EmailProcessor(Protocol):
    """A vendor-specific extractor."""

    identifier: str

    def matches(self, email: Email) -> bool: ...

    def process(self, email: Email) -> ActionDraft | None: ...


class ProcessorError(Exception):
    """A processor accepted an email but failed to process it."""

    def __init__(self, identifier: str, message: str):
        self.identifier = identifier
        super().__init__(f"Processor '{identifier}' failed: {message}")


def build_itemized_action(
    payee: str,
    items: Sequence[tuple[str, int]],
    total: int,
    mark_reviewed: bool = False,
) -> ActionDraft:
    """Build the action for an itemized order.

    Tax and fees (total minus the item subtotal) are spread over the items so
    the split lines add up to the charged total exactly.

    Args:
        payee: Expected payee name on the ledger transaction
        items: (note, cost in minor units) per item, non-empty
        total: Charged total in minor units

    Raises:
        ValueError: If items is empty
        InvalidTotal: If the total is below the item subtotal
    """
    if not items:
        raise ValueError("An itemized action needs at least one item")

    match = MatchCriteria(expected_payee=payee, expected_total=total)

    if len(items) == 1:
        note, _ = items[0]
        return ActionDraft(match=match, mutation=UpdateMutation(note, mark_reviewed))

    charges = item_charges([cost for _, cost in items], total)
    lines = tuple(
        SplitLine(amount=charge, note=note, mark_reviewed=mark_reviewed)
        for (note, _), charge in zip(items, charges)
    )
    return ActionDraft(match=match, mutation=SplitMutation(items=lines))


class IngestionService:
    """Routes emails to processors and records the resulting actions."""

    def __init__(
        self,
        processors: Sequence[EmailProcessor],
        state_store: StateStore,
    ) -> None:
        self.processors = list(processors)
        self.store = state_store

    def find_processor(self, email: Email) -> EmailProcessor | None:
        """First processor that accepts the email."""
        for processor in self.processors:
            if processor.matches(email):
                return processor
        return None

    def ingest(self, email: Email) -> int | None:
        """Process one email and append the resulting action.

        Returns:
            The backlog id, or None if no processor handled the email

        Raises:
            ProcessorError: If the matching processor raised
        """
        processor = self.find_processor(email)
        if processor is None:
            logger.info("No processor for email from %s (%s)", email.sender, email.subject)
            return None

        try:
            draft = processor.process(email)
        except Exception as e:
            logger.exception("Processor %s failed", processor.identifier)
            raise ProcessorError(processor.identifier, str(e)) from e

        if draft is None:
            logger.info("Processor %s produced no action", processor.identifier)
            return None

        action_id = self.store.insert_action(processor.identifier, draft)
        logger.info(
            "Recorded action %d from %s (%s %d)",
            action_id,
            processor.identifier,
            draft.match.expected_payee,
            draft.match.expected_total,
        )
        return action_id
