"""
CLI main entry point.
"""

import argparse
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..ledger_client import LedgerClient
from ..notifier import LogNotifier, Notifier, TelegramNotifier
from ..schemas.actions import InvalidActionPayload, from_minor_units
from ..services.reconciliation import ReconciliationService, ReconciliationState
from ..services.stale_monitor import StaleActionMonitor
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-reconciler",
        description="Reconcile pending receipt actions against ledger transactions",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Run one reconciliation pass (match backlog, annotate ledger)",
    )
    reconcile_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show planned matches without writing to the ledger or backlog",
    )

    # check-stale command
    stale_parser = subparsers.add_parser(
        "check-stale",
        help="Report backlog entries that stayed unmatched too long",
    )
    stale_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the report without sending or marking entries",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show backlog status")
    status_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of oldest entries to list (default: 10)",
    )

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    return parser


def build_notifier(config: Config) -> Notifier:
    """Telegram when configured, otherwise the log."""
    if config.telegram.is_configured():
        return TelegramNotifier(config.telegram.token, config.telegram.chat_id)
    logger.warning("Telegram not configured; stale reports go to the log")
    return LogNotifier()


def cmd_reconcile(config: Config, dry_run: bool = False) -> int:
    """Run one reconciliation pass.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ {error}")
        return 1

    print("🔄 Starting reconciliation pass...")
    if dry_run:
        print("  ℹ️  DRY RUN mode - no changes will be made")

    ledger = LedgerClient(
        token=config.ledger.token,
        base_url=config.ledger.base_url,
        timeout=config.ledger.timeout_seconds,
        max_retries=config.ledger.max_retries,
    )
    store = StateStore(config.state_db_path)
    service = ReconciliationService(ledger_client=ledger, state_store=store, config=config)

    result = service.run_reconciliation(dry_run=dry_run)

    print()
    print("📊 Reconciliation Results")
    print("=" * 40)
    print(f"  Status:               {result.state.value}")
    print(f"  Pending actions:      {result.actions_loaded}")
    print(f"  Unreadable actions:   {result.invalid}")
    print(f"  Ledger transactions:  {result.transactions_fetched}")
    print(f"  Matched:              {result.matched}")
    print(f"  Unmatched:            {result.unmatched}")
    print(f"  Applied:              {result.applied}")
    print(f"  Failed:               {result.failed}")
    print(f"  Removed from backlog: {result.deleted}")
    print(f"  Duration:             {result.duration_ms}ms")
    print()

    if result.errors:
        print("⚠️  Errors encountered:")
        for error in result.errors:
            print(f"  - {error}")

    return 0 if result.state != ReconciliationState.FAILED else 1


def cmd_check_stale(config: Config, dry_run: bool = False) -> int:
    """Run one stale-backlog sweep."""
    store = StateStore(config.state_db_path)
    monitor = StaleActionMonitor(
        state_store=store,
        notifier=build_notifier(config),
        threshold_days=config.reconciliation.stale_threshold_days,
    )

    result = monitor.check(dry_run=dry_run)

    if result.found == 0:
        print("✓ No stale actions")
        return 0

    print(f"⚠️  {result.found} stale action(s)")
    print(f"  Notified: {'yes' if result.notified else 'no'}")
    print(f"  Marked:   {result.marked}")
    return 0


def cmd_status(config: Config, limit: int = 10) -> int:
    """Show backlog status."""
    store = StateStore(config.state_db_path)
    records = store.list_actions_by_age()

    print(f"📋 Pending actions: {len(records)}")
    for record in records[:limit]:
        try:
            action = record.to_pending_action()
        except InvalidActionPayload as e:
            print(f"  [{record.id}] {record.date_created} {record.source}: ❌ {e}")
            continue
        flag = " (reported)" if record.old_entry_notified else ""
        print(
            f"  [{record.id}] {record.date_created[:10]} {record.source}: "
            f"{action.label} {action.match.expected_payee} "
            f"${from_minor_units(action.match.expected_total)}{flag}"
        )
    return 0


def cmd_init(config_path: Path, force: bool = False) -> int:
    """Write the default configuration file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "reconcile":
        return cmd_reconcile(config, dry_run=parsed.dry_run)
    elif parsed.command == "check-stale":
        return cmd_check_stale(config, dry_run=parsed.dry_run)
    elif parsed.command == "status":
        return cmd_status(config, parsed.limit)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
