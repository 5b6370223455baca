"""
Receipt emails → Pending actions → Ledger annotations

Turns vendor notifications (orders, ride receipts, invoices) into pending
annotation actions and reconciles them against recent ledger transactions,
writing notes and splits back to the ledger deterministically.
"""

__version__ = "0.1.0"
