"""Backlog reconciliation orchestration service.

One pass of the reconciler:
- Loads the pending action backlog, oldest first
- Fetches one trailing window of unreviewed ledger transactions
- Pairs actions with transactions through the Matching Engine
- Applies each action's mutation (note update or split) to the ledger
- Bulk-deletes every action whose mutation succeeded, after all attempts

Failures local to one action never abort the pass; the action stays in the
backlog and is retried on the next pass. A failed window fetch aborts the
pass before any side effect.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING

from receipt_reconciler.ledger_client import (
    STATUS_CLEARED,
    STATUS_UNCLEARED,
    LedgerError,
    SplitRequest,
)
from receipt_reconciler.matching import Assignment, match_actions
from receipt_reconciler.schemas.actions import (
    InvalidActionPayload,
    SplitMutation,
    UpdateMutation,
)

if TYPE_CHECKING:
    from receipt_reconciler.config import Config
    from receipt_reconciler.ledger_client import LedgerClient, LedgerTransaction
    from receipt_reconciler.schemas.actions import PendingAction
    from receipt_reconciler.state_store import StateStore

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    pass


class WindowFetchFailed(ReconciliationError):
    """The transaction window could not be fetched; the pass is aborted."""

    pass


class MutationFailed(ReconciliationError):
    """Applying an action's mutation to its matched transaction failed."""

    def __init__(self, action_id: int, transaction_id: int, reason: str):
        self.action_id = action_id
        self.transaction_id = transaction_id
        self.reason = reason
        super().__init__(
            f"Failed to apply action {action_id} to transaction {transaction_id}: {reason}"
        )


class ReconciliationState(str, Enum):
    """Possible states for a reconciliation pass."""

    LOADING = "LOADING"
    FETCHING = "FETCHING"
    MATCHING = "MATCHING"
    APPLYING = "APPLYING"
    COMMITTING = "COMMITTING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"  # Empty backlog, no ledger call made
    FAILED = "FAILED"


@dataclass(frozen=True)
class AssignmentRecord:
    """Action/transaction pair reported in a result."""

    action_id: int
    transaction_id: int


@dataclass
class ReconciliationResult:
    """Result of a reconciliation pass."""

    state: ReconciliationState
    actions_loaded: int = 0
    invalid: int = 0
    transactions_fetched: int = 0
    matched: int = 0
    unmatched: int = 0
    applied: int = 0
    failed: int = 0
    deleted: int = 0
    duration_ms: int = 0
    assignments: list[AssignmentRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if the pass finished without a fatal error."""
        return self.state in (ReconciliationState.COMPLETED, ReconciliationState.SKIPPED)


class ReconciliationService:
    """Orchestrates one reconciliation pass over the backlog.

    Passes are assumed to be serialized by the scheduler; this class holds no
    lock. Re-running a pass is safe: annotated transactions carry a note and
    are no longer eligible, so nothing is applied twice.

    Usage:
        service = ReconciliationService(ledger_client, state_store, config)
        result = service.run_reconciliation()
    """

    def __init__(
        self,
        ledger_client: LedgerClient,
        state_store: StateStore,
        config: Config,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            ledger_client: Client for the ledger API.
            state_store: Backlog store.
            config: Application configuration.
        """
        self.ledger = ledger_client
        self.store = state_store
        self.config = config

        self.lookback_days = config.reconciliation.lookback_days
        self.max_workers = config.reconciliation.max_workers

    def run_reconciliation(
        self,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> ReconciliationResult:
        """Run one pass.

        Args:
            dry_run: If True, match and report but write nothing.
            now: Reference time for the window (defaults to current UTC time).

        Returns:
            ReconciliationResult with statistics and status.
        """
        start_time = time.time()
        now = now or datetime.now(timezone.utc)
        result = ReconciliationResult(state=ReconciliationState.LOADING)

        # Phase 1: Load
        actions = self._load_actions(result)
        if not actions:
            logger.info("No pending actions to process")
            result.state = ReconciliationState.SKIPPED
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        logger.info("Got %d pending actions", len(actions))

        # Phase 2: Fetch window
        result.state = ReconciliationState.FETCHING
        try:
            transactions = self._fetch_window(now)
        except WindowFetchFailed as e:
            logger.exception("Reconciliation aborted: %s", e)
            result.state = ReconciliationState.FAILED
            result.errors.append(f"Fatal error: {e}")
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        result.transactions_fetched = len(transactions)
        logger.info("Got %d ledger transactions", len(transactions))

        # Phase 3: Match
        result.state = ReconciliationState.MATCHING
        outcome = match_actions(actions, transactions)
        result.matched = len(outcome.assignments)
        result.unmatched = len(outcome.unmatched)
        result.assignments = [
            AssignmentRecord(a.action_id, a.transaction_id) for a in outcome.assignments
        ]

        if dry_run:
            for assignment in outcome.assignments:
                logger.info(
                    "[DRY RUN] Would apply %s action %d to transaction %d",
                    assignment.action.label,
                    assignment.action_id,
                    assignment.transaction_id,
                )
            result.state = ReconciliationState.COMPLETED
            result.duration_ms = int((time.time() - start_time) * 1000)
            return result

        # Phase 4: Apply
        result.state = ReconciliationState.APPLYING
        processed_ids = self._apply_all(outcome.assignments, result)

        # Phase 5: Commit (bulk delete)
        result.state = ReconciliationState.COMMITTING
        if processed_ids:
            try:
                result.deleted = self.store.delete_actions(processed_ids)
            except sqlite3.Error as e:
                # Applied actions stay queued and drop out on re-match (notes now set)
                logger.exception("Failed to remove processed actions: %s", e)
                result.state = ReconciliationState.FAILED
                result.errors.append(f"Fatal error: {e}")
                result.duration_ms = int((time.time() - start_time) * 1000)
                return result

        result.state = ReconciliationState.COMPLETED
        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Reconciliation completed: %d matched, %d applied, %d failed, %d unmatched",
            result.matched,
            result.applied,
            result.failed,
            result.unmatched,
        )
        return result

    def _load_actions(self, result: ReconciliationResult) -> list[PendingAction]:
        """Decode the backlog oldest first; undecodable rows stay in place."""
        actions: list[PendingAction] = []
        for record in self.store.list_actions_by_age():
            try:
                actions.append(record.to_pending_action())
            except InvalidActionPayload as e:
                logger.error("Skipping unreadable action %d: %s", record.id, e)
                result.invalid += 1
                result.errors.append(f"Action {record.id}: {e}")
        result.actions_loaded = len(actions)
        return actions

    def _fetch_window(self, now: datetime) -> list[LedgerTransaction]:
        """Fetch the trailing window of unreviewed transactions (single call)."""
        end_date = now.date()
        start_date = (now - timedelta(days=self.lookback_days)).date()
        try:
            return self.ledger.list_transactions(
                start_date=start_date,
                end_date=end_date,
                status=STATUS_UNCLEARED,
                pending=True,
            )
        except LedgerError as e:
            raise WindowFetchFailed(f"Failed to fetch ledger transactions: {e}") from e
        except Exception as e:
            raise WindowFetchFailed(
                f"Unexpected error fetching ledger transactions: {type(e).__name__}: {e}"
            ) from e

    def _apply_all(
        self,
        assignments: list[Assignment],
        result: ReconciliationResult,
    ) -> list[int]:
        """Apply every assignment; return the ids of processed actions.

        Matches are fixed before this point and each targets a distinct
        transaction, so mutations may run concurrently.
        """
        if self.max_workers > 1 and len(assignments) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = list(executor.map(self._try_apply, assignments))
        else:
            outcomes = [self._try_apply(assignment) for assignment in assignments]

        processed_ids: list[int] = []
        for assignment, error in zip(assignments, outcomes):
            if error is None:
                result.applied += 1
                processed_ids.append(assignment.action_id)
            else:
                result.failed += 1
                result.errors.append(str(error))
        return processed_ids

    def _try_apply(self, assignment: Assignment) -> MutationFailed | None:
        """Apply one assignment; any failure becomes a MutationFailed for this action only."""
        try:
            self.apply_mutation(assignment.action, assignment.transaction)
        except LedgerError as e:
            error = MutationFailed(assignment.action_id, assignment.transaction_id, str(e))
            logger.error("%s", error)
            return error
        except Exception as e:
            error = MutationFailed(
                assignment.action_id,
                assignment.transaction_id,
                f"{type(e).__name__}: {e}",
            )
            logger.exception("%s", error)
            return error

        logger.info("Successfully processed action %d", assignment.action_id)
        return None

    def apply_mutation(self, action: PendingAction, transaction: LedgerTransaction) -> None:
        """Issue the ledger call for an action's mutation.

        Raises:
            LedgerError: If the ledger rejects the mutation
        """
        match action.mutation:
            case UpdateMutation(note=note, mark_reviewed=mark_reviewed):
                self.ledger.update_transaction(
                    transaction.id,
                    notes=note,
                    status=STATUS_CLEARED if mark_reviewed else None,
                )
            case SplitMutation(items=items):
                # Every line inherits the parent's category; status is per line
                splits = [
                    SplitRequest(
                        amount=item.amount,
                        notes=item.note,
                        category_id=transaction.category_id,
                        status=(
                            STATUS_CLEARED
                            if item.mark_reviewed
                            else STATUS_UNCLEARED
                        ),
                    )
                    for item in items
                ]
                self.ledger.split_transaction(transaction.id, splits)
            case _:
                raise TypeError(f"Unsupported mutation: {action.mutation!r}")
