"""Synced-event ledger: upstream event id -> destination locator and content hash."""

import sqlite3
import uuid
from datetime import datetime

import structlog

from calsync.models.sync_config import LedgerStatus, SyncedEventRecord
from calsync.storage.database import SyncDatabase, from_db_time, to_db_time

log = structlog.stdlib.get_logger()

_COLUMNS = (
    "id, sync_config_id, external_event_id, sheet_row_number, table_record_id, "
    "document_page_id, event_hash, status, last_synced_at, event_title, event_start, event_end"
)


def new_record_id() -> str:
    return uuid.uuid4().hex


class LedgerStore:
    """CRUD over ledger rows keyed by (configuration, upstream event id)."""

    def __init__(self, database: SyncDatabase):
        self._db = database

    def list_for_config(self, sync_config_id: str) -> list[SyncedEventRecord]:
        """All rows of a configuration, active and cancelled."""
        rows = self._db.query(
            f"SELECT {_COLUMNS} FROM synced_events WHERE sync_config_id = ?",
            (sync_config_id,),
        )
        return [self._to_model(row) for row in rows]

    def get(self, sync_config_id: str, external_event_id: str) -> SyncedEventRecord | None:
        rows = self._db.query(
            f"SELECT {_COLUMNS} FROM synced_events "
            "WHERE sync_config_id = ? AND external_event_id = ?",
            (sync_config_id, external_event_id),
        )
        return self._to_model(rows[0]) if rows else None

    def upsert(self, record: SyncedEventRecord) -> SyncedEventRecord:
        """
        Insert a row, or update the existing row for the same key in place.

        The stored row keeps its original id when the key already exists.

        Args:
            record: Row to write

        Returns:
            The row as stored
        """
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO synced_events ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(sync_config_id, external_event_id) DO UPDATE SET "
                "sheet_row_number = excluded.sheet_row_number, "
                "table_record_id = excluded.table_record_id, "
                "document_page_id = excluded.document_page_id, "
                "event_hash = excluded.event_hash, "
                "status = excluded.status, "
                "last_synced_at = excluded.last_synced_at, "
                "event_title = excluded.event_title, "
                "event_start = excluded.event_start, "
                "event_end = excluded.event_end",
                (
                    record.id,
                    record.sync_config_id,
                    record.external_event_id,
                    record.sheet_row_number,
                    record.table_record_id,
                    record.document_page_id,
                    record.event_hash,
                    record.status.value,
                    to_db_time(record.last_synced_at),
                    record.event_title,
                    record.event_start,
                    record.event_end,
                ),
            )
        return self.get(record.sync_config_id, record.external_event_id)

    def delete(self, record_id: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM synced_events WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def purge_cancelled(self, sync_config_id: str | None, older_than: datetime) -> int:
        """
        Hard-delete cancelled rows whose destination delete was confirmed.

        Args:
            sync_config_id: Limit to one configuration, or None for all
            older_than: Only rows last synced before this instant

        Returns:
            Number of rows removed
        """
        sql = "DELETE FROM synced_events WHERE status = ? AND last_synced_at < ?"
        params: tuple = (LedgerStatus.CANCELLED.value, to_db_time(older_than))
        if sync_config_id is not None:
            sql += " AND sync_config_id = ?"
            params += (sync_config_id,)

        with self._db.transaction() as conn:
            cursor = conn.execute(sql, params)

        log.info(
            "cancelled_ledger_rows_purged",
            sync_config_id=sync_config_id,
            older_than=older_than.isoformat(),
            purged=cursor.rowcount,
        )
        return cursor.rowcount

    @staticmethod
    def _to_model(row: sqlite3.Row) -> SyncedEventRecord:
        return SyncedEventRecord(
            id=row["id"],
            sync_config_id=row["sync_config_id"],
            external_event_id=row["external_event_id"],
            sheet_row_number=row["sheet_row_number"],
            table_record_id=row["table_record_id"],
            document_page_id=row["document_page_id"],
            event_hash=row["event_hash"],
            status=row["status"],
            last_synced_at=from_db_time(row["last_synced_at"]),
            event_title=row["event_title"],
            event_start=row["event_start"],
            event_end=row["event_end"],
        )
