"""SQLite-backed store for the set of videos already surfaced to the user.

The daemon can be stopped and started at any moment, so everything that has
to survive between runs lives here:

- ``known_videos``: one row per video id already notified (or baselined),
  with the latest title seen for it
- ``meta``: small key/value table for runtime configuration overrides and
  the time of the last successful check

Ids are only ever inserted (``INSERT OR IGNORE``), never rewritten, so two
overlapping checks writing at the same time converge on the union of what
they each recorded. SQLite's write lock serializes the transactions.
"""

import json
import logging
import sqlite3
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from ..exceptions import StoreOpenError, StoreTransactionError
from ..feed.models import UNRESOLVED_TITLE, Record

logger = logging.getLogger(__name__)

OVERRIDES_KEY = "config_overrides"
LAST_CHECK_KEY = "last_check_at"

# Seconds a writer waits for a concurrent transaction to finish
BUSY_TIMEOUT = 10.0


class KnownStore:
    """Durable known-video set.

    The connection is opened on first use and reused until ``close()``.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _connection(self) -> sqlite3.Connection:
        """Open the database on first use and create the schema if absent."""
        if self._conn is not None:
            return self._conn

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path), timeout=BUSY_TIMEOUT, check_same_thread=False
            )
            conn.row_factory = sqlite3.Row
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS known_videos (
                        id TEXT PRIMARY KEY,
                        title TEXT,
                        first_seen_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS meta (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
        except (sqlite3.Error, OSError) as e:
            raise StoreOpenError(f"Could not open state database {self.db_path}: {e}") from e

        self._conn = conn
        return conn

    def _run(self, operation: str, statements) -> Any:
        """Run ``statements(conn)`` inside one transaction.

        Raises:
            StoreOpenError: If the database cannot be opened
            StoreTransactionError: If the transaction fails (it is rolled back)
        """
        conn = self._connection()
        try:
            with conn:
                return statements(conn)
        except sqlite3.Error as e:
            raise StoreTransactionError(f"{operation} failed: {e}") from e

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Known set
    # =========================================================================

    def load(self) -> set[str]:
        """Load the ids of every known video."""
        rows = self._run(
            "load", lambda conn: conn.execute("SELECT id FROM known_videos").fetchall()
        )
        return {row["id"] for row in rows}

    def load_records(self) -> list[Record]:
        """Load known videos with their last seen titles, oldest first."""
        rows = self._run(
            "load_records",
            lambda conn: conn.execute(
                "SELECT id, title FROM known_videos ORDER BY first_seen_at, rowid"
            ).fetchall(),
        )
        return [Record(id=row["id"], title=row["title"] or UNRESOLVED_TITLE) for row in rows]

    def save(self, ids: Iterable[str]) -> None:
        """Add ids to the known set. Ids already present are left alone."""
        now = datetime.now().isoformat()
        params = [(video_id, now) for video_id in ids]
        if not params:
            return
        self._run(
            "save",
            lambda conn: conn.executemany(
                "INSERT OR IGNORE INTO known_videos (id, first_seen_at) VALUES (?, ?)",
                params,
            ),
        )
        logger.debug("Saved %d known ids", len(params))

    def save_records(self, records: Iterable[Record]) -> None:
        """Add records to the known set, refreshing titles of existing ones."""
        now = datetime.now().isoformat()
        params = [(r.id, r.title if r.has_title else None, now) for r in records]
        if not params:
            return
        self._run(
            "save_records",
            lambda conn: conn.executemany(
                """
                INSERT INTO known_videos (id, title, first_seen_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET title = COALESCE(excluded.title, title)
                """,
                params,
            ),
        )
        logger.debug("Saved %d known records", len(params))

    def replace(self, ids: Iterable[str]) -> None:
        """Replace the known set with an authoritative list.

        Titles of ids that remain known are kept.
        """
        wanted = set(ids)
        now = datetime.now().isoformat()

        def statements(conn: sqlite3.Connection) -> None:
            existing = {row["id"] for row in conn.execute("SELECT id FROM known_videos")}
            conn.executemany(
                "DELETE FROM known_videos WHERE id = ?",
                [(video_id,) for video_id in existing - wanted],
            )
            conn.executemany(
                "INSERT OR IGNORE INTO known_videos (id, first_seen_at) VALUES (?, ?)",
                [(video_id, now) for video_id in wanted - existing],
            )

        self._run("replace", statements)
        logger.info("Known set replaced (%d ids)", len(wanted))

    def reset(self) -> int:
        """Forget every known video.

        Returns:
            Number of ids removed
        """
        cursor = self._run("reset", lambda conn: conn.execute("DELETE FROM known_videos"))
        logger.info("Known set reset (%d ids removed)", cursor.rowcount)
        return cursor.rowcount

    def count(self) -> int:
        row = self._run(
            "count", lambda conn: conn.execute("SELECT COUNT(*) FROM known_videos").fetchone()
        )
        return row[0] if row else 0

    # =========================================================================
    # Meta
    # =========================================================================

    def get_meta(self, key: str) -> str | None:
        row = self._run(
            "get_meta",
            lambda conn: conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone(),
        )
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self._run(
            "set_meta",
            lambda conn: conn.execute(
                "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value)
            ),
        )

    def get_overrides(self) -> dict[str, Any]:
        """Load persisted runtime configuration overrides."""
        raw = self.get_meta(OVERRIDES_KEY)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable configuration overrides")
            return {}
        return data if isinstance(data, dict) else {}

    def set_overrides(self, overrides: dict[str, Any]) -> None:
        """Merge overrides into the persisted set."""
        merged = self.get_overrides() | overrides
        self.set_meta(OVERRIDES_KEY, json.dumps(merged))

    def mark_checked(self, when: datetime | None = None) -> None:
        self.set_meta(LAST_CHECK_KEY, (when or datetime.now()).isoformat())

    def last_checked(self) -> datetime | None:
        raw = self.get_meta(LAST_CHECK_KEY)
        return datetime.fromisoformat(raw) if raw else None
