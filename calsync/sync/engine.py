"""Reconciliation engine: one pass from upstream calendar to destination."""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

import structlog
from requests.exceptions import RequestException

from calsync.destinations.base import DeleteResult, DestinationAdapter, PushResult
from calsync.ingestion.calendar_client import GoogleCalendarClient
from calsync.ingestion.credentials import CredentialProvider
from calsync.models.config import AppConfig
from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import (
    LedgerStatus,
    SyncConfiguration,
    SyncedEventRecord,
    SyncHistoryEntry,
    SyncRunStatus,
    locator_fields,
)
from calsync.providers import get_calendar_client, get_credential_provider, get_destination_adapter
from calsync.storage.database import SyncDatabase
from calsync.storage.ledger import LedgerStore, new_record_id
from calsync.storage.stores import ConfigurationStore, CredentialStore, HistoryStore
from calsync.sync.change_detector import ChangeDetector
from calsync.sync.change_hasher import hash_event
from calsync.sync.models import ChangeSet, SyncRunResult
from calsync.sync.token_cursor import PullOutcome, SyncCursor
from calsync.utils.errors import CalendarSyncError, ConcurrentSyncError
from calsync.utils.logging_config import sync_log_context

log = structlog.stdlib.get_logger()

AdapterFactory = Callable[[SyncConfiguration, str, AppConfig], DestinationAdapter]
ClientFactory = Callable[[str, AppConfig], GoogleCalendarClient]
CredentialFactory = Callable[[CredentialStore, str, AppConfig], CredentialProvider]

# Failures that end a pass cleanly; anything else is a bug and propagates
EXPECTED_FAILURES = (CalendarSyncError, RequestException)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ConfigurationLocks:
    """Non-blocking per-configuration locks for passes in this process."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, config_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(config_id, threading.Lock())

    def is_locked(self, config_id: str) -> bool:
        return self._lock_for(config_id).locked()

    @contextmanager
    def hold(self, config_id: str) -> Iterator[None]:
        """
        Hold the lock for a configuration for the duration of the block.

        Raises:
            ConcurrentSyncError: If a pass for the configuration is running
        """
        lock = self._lock_for(config_id)
        if not lock.acquire(blocking=False):
            raise ConcurrentSyncError(f"A sync is already running for configuration {config_id}")
        try:
            yield
        finally:
            lock.release()


class SyncEngine:
    """Runs reconciliation passes for sync configurations."""

    def __init__(
        self,
        database: SyncDatabase,
        settings: AppConfig | None = None,
        locks: ConfigurationLocks | None = None,
        adapter_factory: AdapterFactory = get_destination_adapter,
        client_factory: ClientFactory = get_calendar_client,
        credential_factory: CredentialFactory = get_credential_provider,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize sync engine.

        Args:
            database: Sync state database
            settings: Application settings (defaults used when None)
            locks: Lock registry shared with other engines in this process
            adapter_factory: Builds the destination adapter for a configuration
            client_factory: Builds the upstream calendar client
            credential_factory: Builds token providers for stored connections
            clock: Source of "now"
        """
        self._settings = settings or AppConfig()
        self._configs = ConfigurationStore(database)
        self._ledger = LedgerStore(database)
        self._history = HistoryStore(database)
        self._credentials = CredentialStore(database)
        self._locks = locks or ConfigurationLocks()
        self._adapter_factory = adapter_factory
        self._client_factory = client_factory
        self._credential_factory = credential_factory
        self._clock = clock
        self._change_detector = ChangeDetector()

        log.info("sync_engine_initialized")

    def run_once(self, configuration_id: str) -> SyncRunResult:
        """
        Run one reconciliation pass for a configuration.

        Expected failures never raise: they are reported in the result, the
        configuration is marked as errored and its sync token is left as it
        was.

        Args:
            configuration_id: Configuration to sync

        Returns:
            SyncRunResult describing the pass
        """
        started_at = self._clock()
        configuration = self._configs.get(configuration_id)
        if configuration is None:
            log.error("sync_config_not_found", sync_config_id=configuration_id)
            return SyncRunResult(
                sync_config_id=configuration_id,
                started_at=started_at,
                completed_at=self._clock(),
                errors=[f"Sync configuration {configuration_id} not found"],
            )

        try:
            with self._locks.hold(configuration_id):
                with sync_log_context(
                    sync_config_id=configuration_id,
                    destination_type=configuration.destination_type.value,
                ):
                    return self._run_locked(configuration, started_at)
        except ConcurrentSyncError as e:
            log.warning("sync_already_running", sync_config_id=configuration_id)
            return SyncRunResult(
                sync_config_id=configuration_id,
                started_at=started_at,
                completed_at=self._clock(),
                errors=[str(e)],
            )

    def _run_locked(self, configuration: SyncConfiguration, started_at: datetime) -> SyncRunResult:
        log.info("sync_pass_started", full_pull=configuration.sync_token is None)

        history = self._history.start(configuration.id, started_at)
        result = SyncRunResult(sync_config_id=configuration.id, started_at=started_at)

        try:
            adapter = self._connect_destination(configuration)
            adapter.build_index()

            ledger = {
                record.external_event_id: record
                for record in self._ledger.list_for_config(configuration.id)
            }

            outcome = self._pull(configuration)
        except EXPECTED_FAILURES as e:
            return self._fail(configuration, history, result, e)
        except Exception as e:
            log.exception("sync_pass_crashed", error=str(e))
            result.errors.append(f"Sync failed: {e}")
            self._finish(history, result)
            raise

        try:
            result.events_processed = len(outcome.events)
            result.full_sync_required = outcome.full_sync_required
            result.new_sync_token = outcome.next_token

            changes = self._change_detector.detect_changes(
                outcome.events, ledger, configuration.filter_config
            )
            self.apply_changes(configuration, adapter, changes, ledger, result)

            result.completed_at = self._clock()
            self._configs.record_pass(
                configuration.id,
                sync_token=result.new_sync_token,
                completed_at=result.completed_at,
                error_message=result.error_message,
            )
            self._finish(history, result)
        except Exception as e:
            log.exception("sync_pass_crashed", error=str(e))
            result.errors.append(f"Sync failed: {e}")
            self._finish(history, result)
            raise

        log.info(
            "sync_pass_completed",
            events_processed=result.events_processed,
            events_added=result.events_added,
            events_updated=result.events_updated,
            events_deleted=result.events_deleted,
            full_sync_required=result.full_sync_required,
            error_count=len(result.errors),
        )
        return result

    def apply_changes(
        self,
        configuration: SyncConfiguration,
        adapter: DestinationAdapter,
        changes: ChangeSet,
        ledger: dict[str, SyncedEventRecord],
        result: SyncRunResult,
    ) -> None:
        """
        Write a change set to the destination and record the outcome in the ledger.

        Creates and updates go out in one push, deletes in one delete call.
        Only events the destination confirmed get a ledger write, so a failed
        item is retried by a later pass.

        Args:
            configuration: Configuration being synced
            adapter: Destination adapter with a built index
            changes: Classified pull
            ledger: Ledger rows keyed by upstream id
            result: Result to fill in
        """
        log.info(
            "applying_changes",
            to_create=len(changes.to_create),
            to_update=len(changes.to_update),
            to_delete=len(changes.to_delete),
        )
        if not changes.has_changes:
            return

        pushed = PushResult()
        to_push = changes.to_create + changes.to_update
        if to_push:
            pushed = adapter.push(to_push)
            result.errors.extend(pushed.errors)
            result.events_added = pushed.created
            result.events_updated = pushed.updated

        removed = DeleteResult()
        if changes.to_delete:
            removed = adapter.delete_many([r.external_event_id for r in changes.to_delete])
            result.errors.extend(removed.errors)
            result.events_deleted = removed.count

        synced_at = self._clock()
        # Row deletes renumber positional locators handed out by the push
        current = adapter.index
        for event in to_push:
            if event.id not in pushed.locators:
                continue
            locator = current.get(event.id, pushed.locators[event.id])
            self._record_active(configuration, event, locator, ledger.get(event.id), synced_at, result)

        retracted = set(removed.deleted_ids) | set(removed.missing_ids)
        for record in changes.to_delete:
            if record.external_event_id in retracted:
                self._record_cancelled(record, synced_at, result)

    def _record_active(
        self,
        configuration: SyncConfiguration,
        event: UpstreamEvent,
        locator: int | str,
        existing: SyncedEventRecord | None,
        synced_at: datetime,
        result: SyncRunResult,
    ) -> None:
        record = SyncedEventRecord(
            id=existing.id if existing else new_record_id(),
            sync_config_id=configuration.id,
            external_event_id=event.id,
            event_hash=hash_event(event),
            status=LedgerStatus.ACTIVE,
            last_synced_at=synced_at,
            event_title=event.title,
            event_start=event.start.display(),
            event_end=event.end.display(),
            **locator_fields(configuration.destination_type, locator),
        )
        self._write_ledger(record, result)

    def _record_cancelled(
        self, record: SyncedEventRecord, synced_at: datetime, result: SyncRunResult
    ) -> None:
        cancelled = record.model_copy(
            update={"status": LedgerStatus.CANCELLED, "last_synced_at": synced_at}
        )
        self._write_ledger(cancelled, result)

    def _write_ledger(self, record: SyncedEventRecord, result: SyncRunResult) -> None:
        try:
            self._ledger.upsert(record)
        except sqlite3.Error as e:
            log.error("ledger_write_failed", event_id=record.external_event_id, error=str(e))
            result.errors.append(f"Failed to record event {record.external_event_id}: {e}")

    def _connect_destination(self, configuration: SyncConfiguration) -> DestinationAdapter:
        token = self._credential_factory(
            self._credentials, configuration.destination_connection_id, self._settings
        ).get_access_token()
        return self._adapter_factory(configuration, token, self._settings)

    def _pull(self, configuration: SyncConfiguration) -> PullOutcome:
        token = self._credential_factory(
            self._credentials, configuration.source_connection_id, self._settings
        ).get_access_token()
        client = self._client_factory(token, self._settings)
        cursor = SyncCursor(client, configuration.calendar_id, self._settings.sync, clock=self._clock)
        return cursor.pull(configuration.sync_token)

    def _fail(
        self,
        configuration: SyncConfiguration,
        history: SyncHistoryEntry,
        result: SyncRunResult,
        error: Exception,
    ) -> SyncRunResult:
        log.error("sync_pass_failed", error=str(error), error_type=type(error).__name__)
        result.errors.append(str(error))
        result.completed_at = self._clock()
        self._configs.record_failure(configuration.id, result.completed_at, result.error_message)
        self._finish(history, result)
        return result

    def _finish(self, history: SyncHistoryEntry, result: SyncRunResult) -> None:
        completed = history.model_copy(
            update={
                "status": SyncRunStatus.SUCCESS if result.success else SyncRunStatus.FAILED,
                "completed_at": result.completed_at or self._clock(),
                "events_processed": result.events_processed,
                "events_created": result.events_added,
                "events_updated": result.events_updated,
                "events_deleted": result.events_deleted,
                "full_sync": result.full_sync_required,
                "error_message": result.error_message,
            }
        )
        self._history.finish(completed)
