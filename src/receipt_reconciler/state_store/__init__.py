"""
State Store (SQLite-based).

Durable backlog of pending ledger actions:
- Append actions produced by vendor processors
- List them oldest first for reconciliation
- Bulk-delete processed actions
- Flag stale actions once they have been reported
"""

from .sqlite_store import (
    ActionRecord,
    StateStore,
    format_timestamp,
    parse_timestamp,
)

__all__ = [
    "StateStore",
    "ActionRecord",
    "format_timestamp",
    "parse_timestamp",
]
