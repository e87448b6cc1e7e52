"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from wa_archiver.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS messages (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    remote_jid      TEXT    NOT NULL,
    sender_name     TEXT,
    participant_jid TEXT,
    message_id      TEXT    NOT NULL UNIQUE,
    message_type    TEXT    NOT NULL,
    content         TEXT,
    timestamp       INTEGER NOT NULL,
    is_group        INTEGER NOT NULL DEFAULT 0,
    is_from_me      INTEGER NOT NULL DEFAULT 0,
    media_path      TEXT,
    media_mimetype  TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp);
CREATE INDEX IF NOT EXISTS idx_messages_remote_jid ON messages(remote_jid, timestamp);

CREATE TABLE IF NOT EXISTS groups (
    group_jid       TEXT PRIMARY KEY,
    group_name      TEXT,
    profile_picture TEXT,
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS contacts (
    contact_jid     TEXT PRIMARY KEY,
    contact_name    TEXT,
    profile_picture TEXT,
    updated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS events (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type      TEXT NOT NULL,
    remote_jid      TEXT,
    message_id      TEXT,
    details         TEXT,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_events_created ON events(created_at);

CREATE TABLE IF NOT EXISTS errors (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    error_type      TEXT NOT NULL,
    error_message   TEXT NOT NULL,
    error_stack     TEXT,
    location        TEXT,
    context         TEXT,
    created_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_errors_created ON errors(created_at);
"""

# Columns added after the first release; older databases get them on startup.
_LATE_COLUMNS = {
    "messages": {
        "participant_jid": "TEXT",
        "is_from_me": "INTEGER NOT NULL DEFAULT 0",
        "media_path": "TEXT",
        "media_mimetype": "TEXT",
    },
    "groups": {"profile_picture": "TEXT"},
}


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._add_missing_columns()
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    async def _add_missing_columns(self) -> None:
        for table, columns in _LATE_COLUMNS.items():
            cursor = await self.conn.execute(f"PRAGMA table_info({table})")
            existing = {row["name"] for row in await cursor.fetchall()}
            for name, ddl in columns.items():
                if name not in existing:
                    await self.conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}")
                    logger.info("database_column_added", table=table, column=name)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
