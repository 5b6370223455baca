"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from fixtures import SAMPLE_TRANSACTIONS_RESPONSE
from receipt_reconciler.config import Config, LedgerConfig, ReconciliationConfig
from receipt_reconciler.state_store import StateStore


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh backlog store."""
    return StateStore(temp_db)


@pytest.fixture
def config(temp_db) -> Config:
    """Test configuration."""
    return Config(
        ledger=LedgerConfig(base_url="http://ledger.test/v1", token="test-token"),
        reconciliation=ReconciliationConfig(lookback_days=180, stale_threshold_days=14),
        state_db_path=temp_db,
    )


@pytest.fixture
def sample_transactions_response() -> dict:
    """Sample /transactions API response."""
    return SAMPLE_TRANSACTIONS_RESPONSE
