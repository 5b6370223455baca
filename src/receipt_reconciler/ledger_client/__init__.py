"""
Lunch Money API Client.

Provides:
- List transactions in a bounded date window
- Update a transaction's notes and status
- Split a transaction into annotated lines

Amounts cross this boundary as decimal strings and are converted to integer
minor units on read and back on write. Treats API errors as loud failures.
"""

from .client import (
    LedgerAPIError,
    LedgerClient,
    LedgerConnectionError,
    LedgerError,
    LedgerTransaction,
    SplitRequest,
    STATUS_CLEARED,
    STATUS_UNCLEARED,
)

__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerAPIError",
    "LedgerConnectionError",
    "LedgerTransaction",
    "SplitRequest",
    "STATUS_CLEARED",
    "STATUS_UNCLEARED",
]
