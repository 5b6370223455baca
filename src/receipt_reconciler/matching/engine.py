"""Matching engine for pairing pending actions with ledger transactions.

Matching is exact: a transaction matches an action when its payee equals the
expected payee and its amount equals the expected total (minor units). The
engine is pure; it performs no I/O and owns the eligible pool for one pass.

Ordering rules:
- Actions are considered oldest first, so older actions get first claim
- Candidates are searched newest first (date, then id, descending)
- A claimed transaction is never offered to another action in the same pass
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from receipt_reconciler.ledger_client import LedgerTransaction
    from receipt_reconciler.schemas.actions import MatchCriteria, PendingAction

logger = logging.getLogger(__name__)


def is_match(criteria: MatchCriteria, transaction: LedgerTransaction) -> bool:
    """Payee and amount equality."""
    return (
        transaction.payee == criteria.expected_payee
        and transaction.amount == criteria.expected_total
    )


class EligiblePool:
    """Transactions still available for matching in the current pass.

    Keyed by transaction id. Transactions that already carry a note are never
    eligible; claiming removes a transaction for the rest of the pass.
    """

    def __init__(self, transactions: Iterable[LedgerTransaction]) -> None:
        ordered = sorted(
            transactions,
            key=lambda tx: (tx.occurred_at, tx.id),
            reverse=True,
        )
        self._by_id: dict[int, LedgerTransaction] = {}
        for tx in ordered:
            if tx.has_note:
                continue
            self._by_id[tx.id] = tx

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, transaction_id: object) -> bool:
        return transaction_id in self._by_id

    def find(self, criteria: MatchCriteria) -> LedgerTransaction | None:
        """First eligible transaction satisfying the criteria, newest first."""
        for tx in self._by_id.values():
            if is_match(criteria, tx):
                return tx
        return None

    def claim(self, transaction_id: int) -> LedgerTransaction:
        """Remove a transaction from eligibility.

        Raises:
            KeyError: If the transaction is not eligible
        """
        return self._by_id.pop(transaction_id)


@dataclass(frozen=True)
class Assignment:
    """A pending action paired with the transaction it will annotate."""

    action: PendingAction
    transaction: LedgerTransaction

    @property
    def action_id(self) -> int:
        return self.action.id

    @property
    def transaction_id(self) -> int:
        return self.transaction.id


@dataclass
class MatchOutcome:
    """Result of matching one backlog snapshot against one window."""

    assignments: list[Assignment] = field(default_factory=list)
    unmatched: list[PendingAction] = field(default_factory=list)


def match_actions(
    actions: Sequence[PendingAction],
    transactions: Iterable[LedgerTransaction],
) -> MatchOutcome:
    """Pair each action with at most one transaction, and vice versa.

    Args:
        actions: Pending actions; re-sorted oldest first (created_at, id)
        transactions: Ledger window snapshot

    Returns:
        MatchOutcome with assignments in processing order
    """
    pool = EligiblePool(transactions)
    outcome = MatchOutcome()

    for action in sorted(actions, key=lambda a: (a.created_at, a.id)):
        transaction = match_one(action, pool)
        if transaction is None:
            logger.info(
                "No matching transaction found for action %d (%s, %s %d)",
                action.id,
                action.source,
                action.match.expected_payee,
                action.match.expected_total,
            )
            outcome.unmatched.append(action)
            continue

        logger.info(
            "Found matching transaction %d for action %d",
            transaction.id,
            action.id,
        )
        outcome.assignments.append(Assignment(action=action, transaction=transaction))

    return outcome


def match_one(action: PendingAction, pool: EligiblePool) -> LedgerTransaction | None:
    """Find and claim the transaction for a single action."""
    tx = pool.find(action.match)
    if tx is None:
        return None
    return pool.claim(tx.id)
