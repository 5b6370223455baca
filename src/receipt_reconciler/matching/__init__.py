"""Matching engine for pairing pending actions with ledger transactions."""

from receipt_reconciler.matching.engine import (
    Assignment,
    EligiblePool,
    MatchOutcome,
    is_match,
    match_actions,
    match_one,
)

__all__ = [
    "Assignment",
    "EligiblePool",
    "MatchOutcome",
    "is_match",
    "match_actions",
    "match_one",
]
