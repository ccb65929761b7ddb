"""Stores for configurations, run history, credentials and organizations."""

import json
import sqlite3
import uuid
from datetime import datetime

import structlog

from calsync.models.sync_config import (
    FilterSpec,
    OAuthCredential,
    Plan,
    SyncConfiguration,
    SyncHistoryEntry,
    SyncRunStatus,
    SyncStatus,
    field_mapping_from_text,
)
from calsync.storage.database import SyncDatabase, from_db_time, to_db_time

log = structlog.stdlib.get_logger()

_CONFIG_COLUMNS = (
    "id, org_id, calendar_id, calendar_name, source_connection_id, destination_type, "
    "destination_id, destination_table, destination_connection_id, is_enabled, "
    "sync_frequency, status, sync_token, last_sync_at, last_error_message, "
    "filter_config, field_mapping, created_at"
)


class ConfigurationStore:
    """Persistence for sync configurations."""

    def __init__(self, database: SyncDatabase):
        self._db = database

    def get(self, config_id: str) -> SyncConfiguration | None:
        rows = self._db.query(f"SELECT {_CONFIG_COLUMNS} FROM sync_configs WHERE id = ?", (config_id,))
        return self._to_model(rows[0]) if rows else None

    def save(self, configuration: SyncConfiguration) -> None:
        """Insert or fully replace a configuration row."""
        c = configuration
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO sync_configs ({_CONFIG_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "org_id = excluded.org_id, calendar_id = excluded.calendar_id, "
                "calendar_name = excluded.calendar_name, "
                "source_connection_id = excluded.source_connection_id, "
                "destination_type = excluded.destination_type, "
                "destination_id = excluded.destination_id, "
                "destination_table = excluded.destination_table, "
                "destination_connection_id = excluded.destination_connection_id, "
                "is_enabled = excluded.is_enabled, sync_frequency = excluded.sync_frequency, "
                "status = excluded.status, sync_token = excluded.sync_token, "
                "last_sync_at = excluded.last_sync_at, "
                "last_error_message = excluded.last_error_message, "
                "filter_config = excluded.filter_config, field_mapping = excluded.field_mapping",
                (
                    c.id,
                    c.org_id,
                    c.calendar_id,
                    c.calendar_name,
                    c.source_connection_id,
                    c.destination_type.value,
                    c.destination_id,
                    c.destination_table,
                    c.destination_connection_id,
                    int(c.is_enabled),
                    c.sync_frequency.value,
                    c.status.value,
                    c.sync_token,
                    to_db_time(c.last_sync_at),
                    c.last_error_message,
                    c.filter_config.to_text() if c.filter_config else None,
                    json_text(c.field_mapping),
                    to_db_time(c.created_at),
                ),
            )

    def list_enabled(self) -> list[SyncConfiguration]:
        """Enabled configurations, least recently synced first."""
        rows = self._db.query(
            f"SELECT {_CONFIG_COLUMNS} FROM sync_configs WHERE is_enabled = 1 "
            "ORDER BY last_sync_at IS NOT NULL, last_sync_at, created_at, id"
        )
        return [self._to_model(row) for row in rows]

    def record_pass(
        self,
        config_id: str,
        sync_token: str | None,
        completed_at: datetime,
        error_message: str | None,
    ) -> None:
        """Persist the resume state and health after a completed pass."""
        status = SyncStatus.ERROR if error_message else SyncStatus.ACTIVE
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_configs SET sync_token = ?, last_sync_at = ?, "
                "last_error_message = ?, status = ? WHERE id = ?",
                (sync_token, to_db_time(completed_at), error_message, status.value, config_id),
            )

    def record_failure(self, config_id: str, attempted_at: datetime, error_message: str) -> None:
        """Mark a configuration as failed without touching its sync token."""
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_configs SET last_sync_at = ?, last_error_message = ?, status = ? "
                "WHERE id = ?",
                (to_db_time(attempted_at), error_message, SyncStatus.ERROR.value, config_id),
            )

    def delete(self, config_id: str) -> bool:
        """Delete a configuration together with its ledger and history rows."""
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_configs WHERE id = ?", (config_id,))
        log.info("sync_config_deleted", sync_config_id=config_id, existed=cursor.rowcount > 0)
        return cursor.rowcount > 0

    @staticmethod
    def _to_model(row: sqlite3.Row) -> SyncConfiguration:
        return SyncConfiguration(
            id=row["id"],
            org_id=row["org_id"],
            calendar_id=row["calendar_id"],
            calendar_name=row["calendar_name"],
            source_connection_id=row["source_connection_id"],
            destination_type=row["destination_type"],
            destination_id=row["destination_id"],
            destination_table=row["destination_table"],
            destination_connection_id=row["destination_connection_id"],
            is_enabled=bool(row["is_enabled"]),
            sync_frequency=row["sync_frequency"],
            status=row["status"],
            sync_token=row["sync_token"],
            last_sync_at=from_db_time(row["last_sync_at"]),
            last_error_message=row["last_error_message"],
            filter_config=FilterSpec.from_text(row["filter_config"]),
            field_mapping=field_mapping_from_text(row["field_mapping"]),
            created_at=from_db_time(row["created_at"]),
        )


def json_text(mapping: dict[str, str] | None) -> str | None:
    return json.dumps(mapping) if mapping else None


class HistoryStore:
    """One audit row per reconciliation pass."""

    def __init__(self, database: SyncDatabase):
        self._db = database

    def start(self, sync_config_id: str, started_at: datetime) -> SyncHistoryEntry:
        entry = SyncHistoryEntry(
            id=uuid.uuid4().hex,
            sync_config_id=sync_config_id,
            status=SyncRunStatus.RUNNING,
            started_at=started_at,
        )
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO sync_history (id, sync_config_id, status, started_at) "
                "VALUES (?, ?, ?, ?)",
                (entry.id, sync_config_id, entry.status.value, to_db_time(started_at)),
            )
        return entry

    def finish(self, entry: SyncHistoryEntry) -> None:
        """Write the final status, counts and error of a pass."""
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sync_history SET status = ?, completed_at = ?, events_processed = ?, "
                "events_created = ?, events_updated = ?, events_deleted = ?, full_sync = ?, "
                "error_message = ? WHERE id = ?",
                (
                    entry.status.value,
                    to_db_time(entry.completed_at),
                    entry.events_processed,
                    entry.events_created,
                    entry.events_updated,
                    entry.events_deleted,
                    int(entry.full_sync),
                    entry.error_message,
                    entry.id,
                ),
            )

    def list_for_config(self, sync_config_id: str, limit: int = 20) -> list[SyncHistoryEntry]:
        """Most recent passes first."""
        rows = self._db.query(
            "SELECT * FROM sync_history WHERE sync_config_id = ? "
            "ORDER BY started_at DESC LIMIT ?",
            (sync_config_id, limit),
        )
        return [
            SyncHistoryEntry(
                id=row["id"],
                sync_config_id=row["sync_config_id"],
                status=row["status"],
                started_at=from_db_time(row["started_at"]),
                completed_at=from_db_time(row["completed_at"]),
                events_processed=row["events_processed"],
                events_created=row["events_created"],
                events_updated=row["events_updated"],
                events_deleted=row["events_deleted"],
                full_sync=bool(row["full_sync"]),
                error_message=row["error_message"],
            )
            for row in rows
        ]


class CredentialStore:
    """OAuth tokens per connection, with a durable refresh lease."""

    def __init__(self, database: SyncDatabase):
        self._db = database

    def get(self, credential_id: str) -> OAuthCredential | None:
        rows = self._db.query("SELECT * FROM oauth_credentials WHERE id = ?", (credential_id,))
        if not rows:
            return None
        row = rows[0]
        return OAuthCredential(
            id=row["id"],
            provider=row["provider"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=from_db_time(row["expires_at"]),
            refresh_claimed_by=row["refresh_claimed_by"],
            refresh_claimed_until=from_db_time(row["refresh_claimed_until"]),
        )

    def save(self, credential: OAuthCredential) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO oauth_credentials "
                "(id, provider, access_token, refresh_token, expires_at, "
                "refresh_claimed_by, refresh_claimed_until) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    credential.id,
                    credential.provider.value,
                    credential.access_token,
                    credential.refresh_token,
                    to_db_time(credential.expires_at),
                    credential.refresh_claimed_by,
                    to_db_time(credential.refresh_claimed_until),
                ),
            )

    def update_tokens(
        self,
        credential_id: str,
        access_token: str,
        expires_at: datetime | None,
        refresh_token: str | None = None,
    ) -> None:
        """Store refreshed tokens; a None refresh token keeps the current one."""
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE oauth_credentials SET access_token = ?, expires_at = ?, "
                "refresh_token = COALESCE(?, refresh_token) WHERE id = ?",
                (access_token, to_db_time(expires_at), refresh_token, credential_id),
            )

    def claim_refresh(self, credential_id: str, owner: str, until: datetime, now: datetime) -> bool:
        """
        Try to take the refresh lease for a credential.

        Succeeds when no lease is held, the held lease has lapsed, or the
        caller already holds it.

        Returns:
            True if the caller now holds the lease
        """
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE oauth_credentials SET refresh_claimed_by = ?, refresh_claimed_until = ? "
                "WHERE id = ? AND (refresh_claimed_until IS NULL OR refresh_claimed_until < ? "
                "OR refresh_claimed_by = ?)",
                (owner, to_db_time(until), credential_id, to_db_time(now), owner),
            )
        return cursor.rowcount == 1

    def release_refresh(self, credential_id: str, owner: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE oauth_credentials SET refresh_claimed_by = NULL, "
                "refresh_claimed_until = NULL WHERE id = ? AND refresh_claimed_by = ?",
                (credential_id, owner),
            )


class OrganizationStore:
    """Subscription plan per organization."""

    def __init__(self, database: SyncDatabase):
        self._db = database

    def get_plan(self, org_id: str) -> Plan:
        """Plan of an organization; unknown organizations are on the free plan."""
        rows = self._db.query("SELECT plan FROM organizations WHERE id = ?", (org_id,))
        return Plan(rows[0]["plan"]) if rows else Plan.FREE

    def set_plan(self, org_id: str, plan: Plan) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO organizations (id, plan) VALUES (?, ?) "
                "ON CONFLICT(id) DO UPDATE SET plan = excluded.plan",
                (org_id, plan.value),
            )
