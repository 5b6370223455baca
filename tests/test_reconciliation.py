"""
Tests for the reconciliation service.

The ledger client is mocked; the backlog is a real SQLite store so that
deletions and retention are observed end to end.
"""

import sqlite3
import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import responses

from fixtures import make_transaction, split_draft, update_draft
from receipt_reconciler.config import ReconciliationConfig
from receipt_reconciler.ledger_client import (
    LedgerAPIError,
    LedgerClient,
    LedgerConnectionError,
    SplitRequest,
)
from receipt_reconciler.schemas.actions import ActionDraft, MatchCriteria, SplitMutation
from receipt_reconciler.services.reconciliation import (
    ReconciliationService,
    ReconciliationState,
)

NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)
T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def ledger() -> MagicMock:
    """Mock ledger client with an empty window."""
    client = MagicMock()
    client.list_transactions.return_value = []
    client.update_transaction.return_value = True
    client.split_transaction.return_value = []
    return client


@pytest.fixture
def service(ledger, store, config) -> ReconciliationService:
    return ReconciliationService(ledger_client=ledger, state_store=store, config=config)


class TestEmptyBacklog:
    def test_no_ledger_call(self, service, ledger):
        """An empty backlog skips the pass without touching the ledger."""
        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.SKIPPED
        assert result.success
        ledger.list_transactions.assert_not_called()


class TestWindowFetch:
    def test_window_bounds(self, service, ledger, store):
        """One call covering the lookback window, unreviewed and pending included."""
        store.insert_action("lyft-ride", update_draft(), created_at=T0)

        service.run_reconciliation(now=NOW)

        ledger.list_transactions.assert_called_once_with(
            start_date=date(2025, 3, 10) - timedelta(days=180),
            end_date=date(2025, 3, 10),
            status="uncleared",
            pending=True,
        )

    def test_fetch_failure_aborts_before_side_effects(self, service, ledger, store):
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        ledger.list_transactions.side_effect = LedgerConnectionError("refused")

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.FAILED
        assert not result.success
        assert "refused" in result.errors[0]
        ledger.update_transaction.assert_not_called()
        ledger.split_transaction.assert_not_called()
        assert store.count_actions() == 1


class TestApply:
    def test_update_applied_and_removed(self, service, ledger, store):
        action_id = store.insert_action("lyft-ride", update_draft(note="Ride"), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert (result.matched, result.applied, result.deleted) == (1, 1, 1)
        assert [(a.action_id, a.transaction_id) for a in result.assignments] == [(action_id, 100)]
        ledger.update_transaction.assert_called_once_with(100, notes="Ride", status=None)
        assert store.count_actions() == 0

    def test_update_mark_reviewed_clears(self, service, ledger, store):
        store.insert_action("lyft-ride", update_draft(mark_reviewed=True), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        service.run_reconciliation(now=NOW)

        assert ledger.update_transaction.call_args.kwargs["status"] == "cleared"

    def test_split_lines_inherit_category(self, service, ledger, store):
        """Each line carries the parent's category and its own review status."""
        store.insert_action("amazon-order", split_draft(), created_at=T0)
        ledger.list_transactions.return_value = [
            make_transaction(200, payee="Amazon", amount=4495, category_id=77)
        ]

        result = service.run_reconciliation(now=NOW)

        assert result.applied == 1
        ledger.split_transaction.assert_called_once_with(
            200,
            [
                SplitRequest(2645, "USB cable (114-0001)", 77, "cleared"),
                SplitRequest(1850, "Coffee mug (114-0001)", 77, "uncleared"),
            ],
        )

    def test_older_action_wins_single_transaction(self, service, ledger, store):
        """Identical criteria, one transaction: the older action is applied and removed."""
        newer = store.insert_action("lyft-ride", update_draft(note="newer"), created_at=T0)
        older = store.insert_action(
            "lyft-ride", update_draft(note="older"), created_at=T0 - timedelta(days=1)
        )
        ledger.list_transactions.return_value = [make_transaction(100)]

        result = service.run_reconciliation(now=NOW)

        assert (result.matched, result.unmatched) == (1, 1)
        ledger.update_transaction.assert_called_once_with(100, notes="older", status=None)
        assert store.get_action(older) is None
        assert store.get_action(newer) is not None

    def test_unmatched_action_retained(self, service, ledger, store):
        action_id = store.insert_action("lyft-ride", update_draft(total=999), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert result.unmatched == 1
        ledger.update_transaction.assert_not_called()
        assert store.get_action(action_id) is not None

    def test_mutation_failure_retained_others_removed(self, service, ledger, store):
        failing = store.insert_action("lyft-ride", update_draft(note="A"), created_at=T0)
        ok = store.insert_action(
            "lyft-ride", update_draft(note="B"), created_at=T0 + timedelta(minutes=5)
        )
        ledger.list_transactions.return_value = [
            make_transaction(101, occurred_at=date(2025, 3, 2)),
            make_transaction(100, occurred_at=date(2025, 3, 1)),
        ]

        def update(transaction_id, notes=None, status=None):
            if transaction_id == 101:
                raise LedgerAPIError(500, "boom")
            return True

        ledger.update_transaction.side_effect = update

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert (result.applied, result.failed, result.deleted) == (1, 1, 1)
        assert "boom" in result.errors[0]
        assert store.get_action(failing) is not None
        assert store.get_action(ok) is None

    def test_bulk_delete_once_after_all_attempts(self, service, ledger, store):
        ids = [
            store.insert_action("lyft-ride", update_draft(), created_at=T0 + timedelta(minutes=i))
            for i in range(3)
        ]
        ledger.list_transactions.return_value = [make_transaction(100 + i) for i in range(3)]

        with patch.object(store, "delete_actions", wraps=store.delete_actions) as delete:
            service.run_reconciliation(now=NOW)

        delete.assert_called_once()
        assert sorted(delete.call_args.args[0]) == sorted(ids)
        assert ledger.update_transaction.call_count == 3

    def test_delete_failure_reported(self, service, ledger, store):
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        with patch.object(store, "delete_actions", side_effect=sqlite3.OperationalError("locked")):
            result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.FAILED
        assert result.applied == 1
        assert store.count_actions() == 1

    def test_rerun_is_idempotent(self, service, ledger, store):
        """After a pass, annotated transactions are no longer eligible."""
        store.insert_action("lyft-ride", update_draft(note="Ride"), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]
        service.run_reconciliation(now=NOW)

        # A second producer run re-queues the same receipt
        store.insert_action("lyft-ride", update_draft(note="Ride"), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100, notes="Ride")]
        result = service.run_reconciliation(now=NOW)

        assert result.matched == 0
        assert ledger.update_transaction.call_count == 1


class TestDryRun:
    def test_plans_without_writing(self, service, ledger, store):
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        result = service.run_reconciliation(dry_run=True, now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert result.matched == 1
        assert result.applied == 0
        ledger.update_transaction.assert_not_called()
        assert store.count_actions() == 1


class TestInvalidPayloads:
    def test_unreadable_rows_counted_and_kept(self, service, ledger, store):
        conn = store._get_connection()
        try:
            conn.execute(
                "INSERT INTO lunchmoney_actions (date_created, source, action) VALUES (?, ?, ?)",
                ("2025-03-01T00:00:00.000000Z", "broken", "{not json"),
            )
            conn.commit()
        finally:
            conn.close()
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        ledger.list_transactions.return_value = [make_transaction(100)]

        result = service.run_reconciliation(now=NOW)

        assert result.invalid == 1
        assert result.actions_loaded == 1
        assert result.applied == 1
        assert store.count_actions() == 1

    def test_only_unreadable_rows_skips_pass(self, service, ledger, store):
        conn = store._get_connection()
        try:
            conn.execute(
                "INSERT INTO lunchmoney_actions (date_created, source, action) VALUES (?, ?, ?)",
                ("2025-03-01T00:00:00.000000Z", "broken", "[]"),
            )
            conn.commit()
        finally:
            conn.close()

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.SKIPPED
        assert result.invalid == 1
        ledger.list_transactions.assert_not_called()


class TestConcurrentApply:
    def test_mutations_run_on_worker_threads(self, ledger, store, config):
        config.reconciliation = ReconciliationConfig(max_workers=4)
        service = ReconciliationService(ledger_client=ledger, state_store=store, config=config)
        for i in range(4):
            store.insert_action(
                "lyft-ride", update_draft(note=f"Ride {i}"), created_at=T0 + timedelta(minutes=i)
            )
        ledger.list_transactions.return_value = [make_transaction(100 + i) for i in range(4)]

        seen_threads = set()

        def update(transaction_id, notes=None, status=None):
            seen_threads.add(threading.get_ident())
            return True

        ledger.update_transaction.side_effect = update

        result = service.run_reconciliation(now=NOW)

        assert result.applied == 4
        assert result.deleted == 4
        assert threading.get_ident() not in seen_threads
        targets = sorted(call.args[0] for call in ledger.update_transaction.call_args_list)
        assert targets == [100, 101, 102, 103]


class TestApplyFailureIsolation:
    """One action's failure never stops the others or the bulk delete."""

    BASE_URL = "http://ledger.test/v1"
    WINDOW = {
        "transactions": [
            {"id": 1, "date": "2025-03-01", "payee": "Lyft", "amount": "18.2300",
             "notes": None, "category_id": 12},
            {"id": 2, "date": "2025-03-02", "payee": "Amazon", "amount": "44.9500",
             "notes": None, "category_id": 77},
        ]
    }

    @pytest.fixture
    def http_service(self, store, config) -> ReconciliationService:
        client = LedgerClient("test-token", base_url=self.BASE_URL, max_retries=0)
        return ReconciliationService(ledger_client=client, state_store=store, config=config)

    @responses.activate
    def test_non_object_error_body_fails_only_that_action(self, http_service, store):
        lyft = store.insert_action("lyft-ride", update_draft(), created_at=T0)
        amazon = store.insert_action(
            "amazon-order", split_draft(), created_at=T0 + timedelta(minutes=1)
        )
        responses.add(responses.GET, f"{self.BASE_URL}/transactions", json=self.WINDOW)
        responses.add(responses.PUT, f"{self.BASE_URL}/transactions/1", json=["bad"], status=400)
        responses.add(
            responses.PUT, f"{self.BASE_URL}/transactions/2", json={"split": [11, 12]}
        )

        result = http_service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert (result.applied, result.failed, result.deleted) == (1, 1, 1)
        assert store.get_action(lyft) is not None
        assert store.get_action(amazon) is None

    @responses.activate
    def test_empty_split_row_is_unreadable_and_others_apply(self, http_service, store):
        empty = store.insert_action(
            "amazon-order",
            ActionDraft(match=MatchCriteria("Lyft", 1823), mutation=SplitMutation(items=())),
            created_at=T0,
        )
        amazon = store.insert_action(
            "amazon-order", split_draft(), created_at=T0 + timedelta(minutes=1)
        )
        responses.add(responses.GET, f"{self.BASE_URL}/transactions", json=self.WINDOW)
        responses.add(
            responses.PUT, f"{self.BASE_URL}/transactions/2", json={"split": [11, 12]}
        )

        result = http_service.run_reconciliation(now=NOW)

        assert result.invalid == 1
        assert result.applied == 1
        assert store.get_action(empty) is not None
        assert store.get_action(amazon) is None

    @responses.activate
    def test_non_object_window_body_fails_pass(self, http_service, store):
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        responses.add(responses.GET, f"{self.BASE_URL}/transactions", json=[])

        result = http_service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.FAILED
        assert store.count_actions() == 1

    def test_unexpected_exception_recorded_as_failure(self, service, ledger, store):
        first = store.insert_action("lyft-ride", update_draft(note="A"), created_at=T0)
        second = store.insert_action(
            "lyft-ride", update_draft(note="B"), created_at=T0 + timedelta(minutes=5)
        )
        ledger.list_transactions.return_value = [
            make_transaction(101, occurred_at=date(2025, 3, 2)),
            make_transaction(100, occurred_at=date(2025, 3, 1)),
        ]

        def update(transaction_id, notes=None, status=None):
            if transaction_id == 101:
                raise RuntimeError("unexpected")
            return True

        ledger.update_transaction.side_effect = update

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.COMPLETED
        assert (result.applied, result.failed) == (1, 1)
        assert "RuntimeError: unexpected" in result.errors[0]
        assert store.get_action(first) is not None
        assert store.get_action(second) is None

    def test_unexpected_fetch_error_fails_pass(self, service, ledger, store):
        store.insert_action("lyft-ride", update_draft(), created_at=T0)
        ledger.list_transactions.side_effect = AttributeError("'list' object has no attribute 'get'")

        result = service.run_reconciliation(now=NOW)

        assert result.state == ReconciliationState.FAILED
        ledger.update_transaction.assert_not_called()
