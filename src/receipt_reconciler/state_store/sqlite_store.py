"""
SQLite-based backlog store implementation.

Tables:
- lunchmoney_actions: Pending ledger annotations awaiting a match
"""

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..schemas.actions import ActionDraft, PendingAction

logger = logging.getLogger(__name__)


def format_timestamp(value: datetime) -> str:
    """Format a timestamp as ISO-8601 UTC with a Z suffix (sortable as text)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class ActionRecord:
    """Row of the pending actions backlog."""

    id: int
    date_created: str  # ISO timestamp
    source: str
    action: str  # JSON payload, see schemas.actions
    old_entry_notified: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ActionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            date_created=row["date_created"],
            source=row["source"],
            action=row["action"],
            old_entry_notified=bool(row["old_entry_notified"]),
        )

    @property
    def created_at(self) -> datetime:
        return parse_timestamp(self.date_created)

    def to_pending_action(self) -> PendingAction:
        """Decode the payload.

        Raises:
            InvalidActionPayload: If the stored JSON is not a valid action
        """
        draft = ActionDraft.from_json(self.action)
        return PendingAction(
            id=self.id,
            created_at=self.created_at,
            source=self.source,
            match=draft.match,
            mutation=draft.mutation,
            notified_stale=self.old_entry_notified,
        )


class StateStore:
    """
    SQLite-based backlog of pending actions.

    Rows are only ever inserted, bulk-deleted after a successful ledger
    mutation, or flagged once as stale-notified.

    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS lunchmoney_actions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date_created TEXT NOT NULL,
                    source TEXT NOT NULL,
                    action TEXT NOT NULL,  -- JSON payload
                    old_entry_notified INTEGER NOT NULL DEFAULT 0
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_actions_date_created "
                "ON lunchmoney_actions(date_created)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Backlog methods

    def insert_action(
        self,
        source: str,
        action: ActionDraft,
        created_at: datetime | None = None,
    ) -> int:
        """Append an action to the backlog. Returns the action ID."""
        created = format_timestamp(created_at or datetime.now(timezone.utc))

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO lunchmoney_actions (date_created, source, action)
                VALUES (?, ?, ?)
            """,
                (created, source, action.to_json()),
            )
            action_id = cursor.lastrowid or 0

        logger.debug("Inserted action %d from %s", action_id, source)
        return action_id

    def get_action(self, action_id: int) -> ActionRecord | None:
        """Get a backlog row by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM lunchmoney_actions WHERE id = ?", (action_id,)
            ).fetchone()
            return ActionRecord.from_row(row) if row else None

    def list_actions_by_age(self) -> list[ActionRecord]:
        """All pending actions, oldest first (ties by insertion order)."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM lunchmoney_actions ORDER BY date_created ASC, id ASC"
            ).fetchall()
            return [ActionRecord.from_row(row) for row in rows]

    def list_stale_actions(self, cutoff: datetime) -> list[ActionRecord]:
        """Actions created at or before cutoff that were never reported, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM lunchmoney_actions
                WHERE date_created <= ?
                AND old_entry_notified = 0
                ORDER BY date_created ASC, id ASC
            """,
                (format_timestamp(cutoff),),
            ).fetchall()
            return [ActionRecord.from_row(row) for row in rows]

    def count_actions(self) -> int:
        """Number of pending actions."""
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) FROM lunchmoney_actions").fetchone()
            return int(row[0])

    def delete_actions(self, action_ids: Iterable[int]) -> int:
        """Bulk-remove actions in one statement. Returns rows deleted."""
        ids = list(action_ids)
        if not ids:
            return 0

        placeholders = ",".join("?" for _ in ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM lunchmoney_actions WHERE id IN ({placeholders})", ids
            )
            deleted = cursor.rowcount

        logger.info("Removed %d processed actions from backlog", deleted)
        return deleted

    def mark_stale_notified(self, action_ids: Iterable[int]) -> int:
        """Flag actions as reported by the stale monitor. Returns rows updated."""
        ids = list(action_ids)
        if not ids:
            return 0

        placeholders = ",".join("?" for _ in ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE lunchmoney_actions
                SET old_entry_notified = 1
                WHERE id IN ({placeholders})
            """,
                ids,
            )
            updated = cursor.rowcount

        logger.info("Marked %d actions as notified", updated)
        return updated
