"""SQLite storage for versioned generations of cached responses.

A generation is a named container (``vp-v6``); entries are keyed by request
identity (``GET <url>``). Writing an entry is a single ``INSERT OR REPLACE``,
so readers see either the old or the new entry, never a partial one.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def request_key(method: str, url: str) -> str:
    """Identity of a cacheable request."""
    return f"{method.upper()} {url}"


@dataclass
class CachedResponse:
    """A stored response with its decoded body."""

    status_code: int
    headers: list[tuple[str, str]]
    body: bytes
    stored_at: datetime | None = None


class CacheStorage:
    """Cache generations persisted in one SQLite file."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        # The cache transport reads and writes from worker threads
        self._lock = threading.RLock()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=10.0, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            with conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS generations (
                        name TEXT PRIMARY KEY,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS entries (
                        generation TEXT NOT NULL
                            REFERENCES generations(name) ON DELETE CASCADE,
                        key TEXT NOT NULL,
                        status INTEGER NOT NULL,
                        headers TEXT NOT NULL,
                        body BLOB NOT NULL,
                        stored_at TEXT NOT NULL,
                        PRIMARY KEY (generation, key)
                    )
                """)
            self._conn = conn
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def open(self, name: str) -> None:
        """Create a generation if it does not exist yet."""
        with self._lock, self._connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO generations (name, created_at) VALUES (?, ?)",
                (name, datetime.now().isoformat()),
            )

    def keys(self) -> list[str]:
        """Names of all generations, oldest first."""
        with self._lock:
            rows = self._connection().execute(
                "SELECT name FROM generations ORDER BY created_at, name"
            ).fetchall()
        return [row["name"] for row in rows]

    def delete(self, name: str) -> bool:
        """Delete a generation and all its entries.

        Returns:
            True if the generation existed
        """
        with self._lock, self._connection() as conn:
            cursor = conn.execute("DELETE FROM generations WHERE name = ?", (name,))
        return cursor.rowcount > 0

    def match(self, name: str, key: str) -> CachedResponse | None:
        with self._lock:
            row = self._connection().execute(
                "SELECT status, headers, body, stored_at FROM entries"
                " WHERE generation = ? AND key = ?",
                (name, key),
            ).fetchone()
        if row is None:
            return None
        return CachedResponse(
            status_code=row["status"],
            headers=[tuple(h) for h in json.loads(row["headers"])],
            body=bytes(row["body"]),
            stored_at=datetime.fromisoformat(row["stored_at"]),
        )

    def put(self, name: str, key: str, response: CachedResponse) -> None:
        """Store an entry, replacing any previous one for the same key."""
        with self._lock, self._connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO generations (name, created_at) VALUES (?, ?)",
                (name, datetime.now().isoformat()),
            )
            conn.execute(
                """
                INSERT OR REPLACE INTO entries
                    (generation, key, status, headers, body, stored_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    name,
                    key,
                    response.status_code,
                    json.dumps(response.headers),
                    response.body,
                    datetime.now().isoformat(),
                ),
            )
        logger.debug("Cached %s in %s", key, name)

    def entries(self, name: str) -> list[str]:
        """Keys stored in a generation."""
        with self._lock:
            rows = self._connection().execute(
                "SELECT key FROM entries WHERE generation = ? ORDER BY key", (name,)
            ).fetchall()
        return [row["key"] for row in rows]

    def stats(self) -> dict[str, int]:
        """Entry count per generation."""
        with self._lock:
            rows = self._connection().execute("""
                SELECT g.name, COUNT(e.key) AS cnt
                FROM generations g LEFT JOIN entries e ON e.generation = g.name
                GROUP BY g.name ORDER BY g.name
            """).fetchall()
        return {row["name"]: row["cnt"] for row in rows}
