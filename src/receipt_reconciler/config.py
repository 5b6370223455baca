"""
Configuration management (SSOT).

This module defines ALL configuration for the receipt reconciler.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Secrets (API keys, bot tokens) may come from the environment only
- Numeric overrides from the environment never crash loading; bad values are ignored
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class LedgerConfig:
    """Ledger (Lunch Money API) configuration."""

    base_url: str = "https://dev.lunchmoney.app/v1"
    token: str = ""
    # Request timeout (seconds)
    timeout_seconds: int = 30
    # Retries for 429/5xx responses
    max_retries: int = 3


@dataclass
class TelegramConfig:
    """Telegram notifier configuration.

    Both token and chat_id are required for notifications to be sent.
    """

    token: str | None = None
    chat_id: str | None = None

    def is_configured(self) -> bool:
        """Check if both credentials are present."""
        return bool(self.token and self.chat_id)


@dataclass
class ReconciliationConfig:
    """Reconciliation settings."""

    # Trailing window of ledger transactions fetched per pass (days back from today)
    lookback_days: int = 180
    # Backlog entries older than this are reported once by the stale monitor
    stale_threshold_days: int = 14
    # Concurrent ledger mutations per pass (1 = sequential)
    max_workers: int = 1


@dataclass
class Config:
    """Application configuration (SSOT)."""

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.ledger.base_url:
            errors.append("ledger.base_url is required")
        if not self.ledger.token:
            errors.append("ledger.token is required (or set LUNCHMONEY_API_KEY)")

        if self.reconciliation.lookback_days < 1:
            errors.append("reconciliation.lookback_days must be >= 1")
        if self.reconciliation.stale_threshold_days < 0:
            errors.append("reconciliation.stale_threshold_days must be >= 0")
        if self.reconciliation.max_workers < 1:
            errors.append("reconciliation.max_workers must be >= 1")

        return errors


def _int_override(env_name: str, default: int) -> int:
    """Read an integer override from the environment, keeping default on bad input."""
    raw = os.environ.get(env_name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", env_name, raw)
        return default


def _section(data: dict, name: str) -> dict:
    """Get a config file section; an empty section reads as {}."""
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigValidationError(f"'{name}' must be a mapping")
    return section


def _file_int(section: dict, key: str, default: int) -> int:
    """Read an integer setting from a config file section."""
    value = section.get(key, default)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"'{key}' must be an integer, got {value!r}") from e


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LUNCHMONEY_URL
    - LUNCHMONEY_API_KEY
    - TELEGRAM_TOKEN
    - TELEGRAM_CHAT_ID
    - RECONCILER_LOOKBACK_DAYS
    - RECONCILER_STALE_DAYS
    - RECONCILER_STATE_DB
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path}: top level must be a mapping")

    # Ledger config
    ledger_data = _section(data, "ledger")
    ledger = LedgerConfig(
        base_url=os.environ.get(
            "LUNCHMONEY_URL", ledger_data.get("base_url", "https://dev.lunchmoney.app/v1")
        ),
        token=os.environ.get("LUNCHMONEY_API_KEY", ledger_data.get("token", "")),
        timeout_seconds=_file_int(ledger_data, "timeout_seconds", 30),
        max_retries=_file_int(ledger_data, "max_retries", 3),
    )

    # Telegram config
    telegram_data = _section(data, "telegram")
    telegram = TelegramConfig(
        token=os.environ.get("TELEGRAM_TOKEN", telegram_data.get("token")),
        chat_id=os.environ.get("TELEGRAM_CHAT_ID", telegram_data.get("chat_id")),
    )

    # Reconciliation config
    recon_data = _section(data, "reconciliation")
    reconciliation = ReconciliationConfig(
        lookback_days=_int_override(
            "RECONCILER_LOOKBACK_DAYS", _file_int(recon_data, "lookback_days", 180)
        ),
        stale_threshold_days=_int_override(
            "RECONCILER_STALE_DAYS", _file_int(recon_data, "stale_threshold_days", 14)
        ),
        max_workers=_file_int(recon_data, "max_workers", 1),
    )

    # State DB
    state_db = os.environ.get("RECONCILER_STATE_DB", data.get("state_db_path", "data/state.db"))

    return Config(
        ledger=ledger,
        telegram=telegram,
        reconciliation=reconciliation,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Receipt Reconciler Configuration
#
# Secrets can be supplied through the environment instead of this file:
# LUNCHMONEY_API_KEY, TELEGRAM_TOKEN, TELEGRAM_CHAT_ID

ledger:
  base_url: "https://dev.lunchmoney.app/v1"
  token: "YOUR_LUNCHMONEY_API_KEY"
  timeout_seconds: 30
  max_retries: 3

# Stale backlog notifications (optional)
telegram:
  token: null
  chat_id: null

reconciliation:
  lookback_days: 180          # Trailing window of ledger transactions per pass
  stale_threshold_days: 14    # Report unmatched actions older than this (once)
  max_workers: 1              # Concurrent ledger mutations (1 = sequential)

# Backlog database path
state_db_path: "data/state.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
