"""
Test builders for ledger transactions and pending actions.

These keep test bodies focused on the behavior under test:
- make_transaction: LedgerTransaction with sensible defaults
- update_draft / split_draft: ActionDraft payloads
- make_action: PendingAction wrapping a draft
"""

from datetime import date, datetime, timezone

from receipt_reconciler.ledger_client import LedgerTransaction
from receipt_reconciler.schemas.actions import (
    ActionDraft,
    MatchCriteria,
    PendingAction,
    SplitLine,
    SplitMutation,
    UpdateMutation,
)

# Lunch Money /transactions response (trimmed to the fields we read)
SAMPLE_TRANSACTIONS_RESPONSE = {
    "transactions": [
        {
            "id": 1001,
            "date": "2025-03-01",
            "payee": "Amazon",
            "amount": "44.9500",
            "currency": "usd",
            "notes": None,
            "category_id": 77,
            "status": "uncleared",
            "is_pending": False,
        },
        {
            "id": 1002,
            "date": "2025-03-04",
            "payee": "Lyft",
            "amount": "18.2300",
            "currency": "usd",
            "notes": "",
            "category_id": 12,
            "status": "uncleared",
            "is_pending": True,
        },
        {
            "id": 1003,
            "date": "2025-03-05",
            "payee": "Lyft",
            "amount": "18.2300",
            "currency": "usd",
            "notes": "Already annotated",
            "category_id": None,
            "status": "uncleared",
            "is_pending": False,
        },
    ]
}


def make_transaction(
    id: int,
    payee: str = "Lyft",
    amount: int = 1823,
    occurred_at: date = date(2025, 3, 1),
    notes: str | None = None,
    category_id: int | None = 12,
) -> LedgerTransaction:
    """Build a LedgerTransaction."""
    return LedgerTransaction(
        id=id,
        payee=payee,
        amount=amount,
        occurred_at=occurred_at,
        notes=notes,
        category_id=category_id,
        status="uncleared",
    )


def update_draft(
    payee: str = "Lyft",
    total: int = 1823,
    note: str = "Home → Work [08:10, 14m]",
    mark_reviewed: bool = False,
) -> ActionDraft:
    """Build an update ActionDraft."""
    return ActionDraft(
        match=MatchCriteria(expected_payee=payee, expected_total=total),
        mutation=UpdateMutation(note=note, mark_reviewed=mark_reviewed),
    )


def split_draft(
    payee: str = "Amazon",
    lines: tuple[tuple[int, str, bool], ...] = (
        (2645, "USB cable (114-0001)", True),
        (1850, "Coffee mug (114-0001)", False),
    ),
) -> ActionDraft:
    """Build a split ActionDraft; the match total is the sum of the lines."""
    return ActionDraft(
        match=MatchCriteria(expected_payee=payee, expected_total=sum(line[0] for line in lines)),
        mutation=SplitMutation(
            items=tuple(
                SplitLine(amount=amount, note=note, mark_reviewed=reviewed)
                for amount, note, reviewed in lines
            )
        ),
    )


def make_action(
    id: int,
    draft: ActionDraft | None = None,
    created_at: datetime | None = None,
    source: str = "lyft-ride",
) -> PendingAction:
    """Build a PendingAction from a draft."""
    draft = draft or update_draft()
    return PendingAction(
        id=id,
        created_at=created_at or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc),
        source=source,
        match=draft.match,
        mutation=draft.mutation,
    )
