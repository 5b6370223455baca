"""Reconciler services: ingestion, reconciliation and stale monitoring."""

from receipt_reconciler.services.ingestion import IngestionService
from receipt_reconciler.services.reconciliation import ReconciliationService
from receipt_reconciler.services.stale_monitor import StaleActionMonitor

__all__ = ["IngestionService", "ReconciliationService", "StaleActionMonitor"]
