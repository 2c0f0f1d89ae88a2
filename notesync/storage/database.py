"""Local SQLite database for notes, labels, and sync bookkeeping."""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)

# SQL schema for the local database
SCHEMA = """
-- Notes: content and attachments may hold at-rest ciphertext
CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    attachments TEXT NOT NULL DEFAULT '[]',
    label_ids TEXT NOT NULL DEFAULT '[]',
    pinned INTEGER DEFAULT 0,
    archived INTEGER DEFAULT 0,
    trashed INTEGER DEFAULT 0,
    locked INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_updated ON notes(updated_at);

-- Labels
CREATE TABLE IF NOT EXISTS labels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Key/value state (pull watermarks)
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT
);
"""

# One sync track table per entity kind
TRACK_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY,
    local_id INTEGER NOT NULL,
    remote_id TEXT,
    action TEXT NOT NULL CHECK(action IN ('upload', 'delete')),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK(status IN ('pending', 'syncing', 'synced', 'failed')),
    created_at DATETIME,
    updated_at DATETIME
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_{table}_local ON {table}(local_id);
CREATE INDEX IF NOT EXISTS idx_{table}_remote ON {table}(remote_id);
CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table}(status);
"""

TRACK_TABLES = ("sync_track", "label_sync_track")


class Database:
    """Owns the SQLite connection shared by the entity and track stores."""

    def __init__(self, db_path: str | Path):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if not self.in_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        self._conn.executescript(SCHEMA)
        for table in TRACK_TABLES:
            self._conn.executescript(TRACK_SCHEMA.format(table=table))
        self._conn.commit()

        logger.info(f"Database connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        """Connection, opened on first use."""
        if self._conn is None:
            self.connect()
        return self._conn

    def get_state(self, key: str) -> str | None:
        row = self.conn.execute(
            "SELECT value FROM sync_state WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str | None) -> None:
        self.conn.execute(
            """
            INSERT INTO sync_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        self.conn.commit()
