"""SQLite persistence for sync state."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import structlog

from calsync.utils.errors import ConfigurationError

log = structlog.stdlib.get_logger()

MEMORY_DATABASE = ":memory:"

SCHEMA = """
CREATE TABLE IF NOT EXISTS organizations (
    id TEXT PRIMARY KEY,
    plan TEXT NOT NULL DEFAULT 'free'
);

CREATE TABLE IF NOT EXISTS oauth_credentials (
    id TEXT PRIMARY KEY,
    provider TEXT NOT NULL,
    access_token TEXT NOT NULL,
    refresh_token TEXT,
    expires_at TEXT,
    refresh_claimed_by TEXT,
    refresh_claimed_until TEXT
);

CREATE TABLE IF NOT EXISTS sync_configs (
    id TEXT PRIMARY KEY,
    org_id TEXT NOT NULL,
    calendar_id TEXT NOT NULL,
    calendar_name TEXT NOT NULL DEFAULT '',
    source_connection_id TEXT NOT NULL,
    destination_type TEXT NOT NULL,
    destination_id TEXT NOT NULL,
    destination_table TEXT,
    destination_connection_id TEXT NOT NULL,
    is_enabled INTEGER NOT NULL DEFAULT 1,
    sync_frequency TEXT NOT NULL DEFAULT 'daily',
    status TEXT NOT NULL DEFAULT 'active',
    sync_token TEXT,
    last_sync_at TEXT,
    last_error_message TEXT,
    filter_config TEXT,
    field_mapping TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS synced_events (
    id TEXT PRIMARY KEY,
    sync_config_id TEXT NOT NULL REFERENCES sync_configs(id) ON DELETE CASCADE,
    external_event_id TEXT NOT NULL,
    sheet_row_number INTEGER,
    table_record_id TEXT,
    document_page_id TEXT,
    event_hash TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    last_synced_at TEXT,
    event_title TEXT,
    event_start TEXT,
    event_end TEXT,
    UNIQUE(sync_config_id, external_event_id)
);

CREATE TABLE IF NOT EXISTS sync_history (
    id TEXT PRIMARY KEY,
    sync_config_id TEXT NOT NULL REFERENCES sync_configs(id) ON DELETE CASCADE,
    status TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    events_processed INTEGER NOT NULL DEFAULT 0,
    events_created INTEGER NOT NULL DEFAULT 0,
    events_updated INTEGER NOT NULL DEFAULT 0,
    events_deleted INTEGER NOT NULL DEFAULT 0,
    full_sync INTEGER NOT NULL DEFAULT 0,
    error_message TEXT
);

CREATE INDEX IF NOT EXISTS idx_synced_events_config ON synced_events(sync_config_id);
CREATE INDEX IF NOT EXISTS idx_sync_history_config ON sync_history(sync_config_id, started_at);
"""


def to_db_time(value: datetime | None) -> str | None:
    """Serialize a datetime as fixed-width ISO 8601 in UTC so stored values sort as text.

    Naive values are taken as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SyncDatabase:
    """Owns the SQLite connection shared by all stores."""

    def __init__(self, db_path: str | Path = MEMORY_DATABASE):
        self.db_path = str(db_path)
        self.conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def __enter__(self) -> "SyncDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self) -> None:
        """Open the database and create missing tables."""
        if self.conn is not None:
            return
        if self.db_path != MEMORY_DATABASE:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise ConfigurationError(f"Cannot open database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()
        log.info("database_connected", db_path=self.db_path)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements atomically; commit on success, roll back on error."""
        if self.conn is None:
            self.connect()
        with self._lock:
            try:
                yield self.conn
                self.conn.commit()
            except BaseException:
                self.conn.rollback()
                raise

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        if self.conn is None:
            self.connect()
        with self._lock:
            return self.conn.execute(sql, params).fetchall()
