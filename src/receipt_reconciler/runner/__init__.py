"""
CLI runner module.

Provides commands:
- reconcile: One reconciliation pass
- check-stale: Report long-unmatched backlog entries
- status: Backlog overview
- init: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
