"""Shared fixtures, builders and in-memory fakes for the calendar sync tests."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from calsync.destinations.base import DeleteResult, PushResult
from calsync.ingestion.calendar_client import ListEventsResult
from calsync.models.config import AppConfig
from calsync.models.event import Attendee, EventDateTime, EventStatus, UpstreamEvent
from calsync.models.sync_config import DestinationType, SyncConfiguration
from calsync.storage.database import SyncDatabase
from calsync.storage.stores import ConfigurationStore
from calsync.sync.engine import ConfigurationLocks, SyncEngine

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable stand-in for ``datetime.now``."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_event(
    event_id: str = "evt_1",
    title: str = "Standup",
    start: datetime | None = None,
    minutes: int = 30,
    status: EventStatus = EventStatus.CONFIRMED,
    attendees: list[str] | None = None,
    **extra,
) -> UpstreamEvent:
    start = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    return UpstreamEvent(
        id=event_id,
        title=title,
        start=EventDateTime(date_time=start),
        end=EventDateTime(date_time=start + timedelta(minutes=minutes)),
        status=status,
        attendees=[Attendee(email=email) for email in attendees or []],
        **extra,
    )


def make_configuration(
    config_id: str = "cfg_1",
    destination_type: DestinationType = DestinationType.GOOGLE_SHEETS,
    **overrides,
) -> SyncConfiguration:
    values = {
        "id": config_id,
        "org_id": "org_1",
        "calendar_id": "primary",
        "calendar_name": "Work",
        "source_connection_id": "cred_google",
        "destination_type": destination_type,
        "destination_id": "dest_1",
        "destination_table": "tbl_events" if destination_type == DestinationType.AIRTABLE else None,
        "destination_connection_id": "cred_dest",
        "created_at": FIXED_NOW - timedelta(days=30),
    }
    values.update(overrides)
    return SyncConfiguration(**values)


class FakeCalendarClient:
    """Calendar with a full listing, an incremental change feed and expirable tokens."""

    def __init__(self):
        self.full_events: list[UpstreamEvent] = []
        self.incremental_events: list[UpstreamEvent] = []
        self.next_sync_token: str | None = "tok_1"
        self.expired_tokens: set[str] = set()
        self.error: Exception | None = None
        self.calls: list[dict] = []

    def list_events(self, calendar_id, sync_token=None, time_min=None, time_max=None):
        self.calls.append(
            {
                "calendar_id": calendar_id,
                "sync_token": sync_token,
                "time_min": time_min,
                "time_max": time_max,
            }
        )
        if self.error is not None:
            raise self.error
        if sync_token is not None:
            if sync_token in self.expired_tokens:
                return ListEventsResult(full_sync_required=True)
            return ListEventsResult(
                events=list(self.incremental_events), next_sync_token=self.next_sync_token
            )
        return ListEventsResult(events=list(self.full_events), next_sync_token=self.next_sync_token)


class FakeDestination:
    """Destination keeping records in a dict, with per-event failure switches."""

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.fail_push_ids: set[str] = set()
        self.fail_delete_ids: set[str] = set()
        self.index_error: Exception | None = None
        self.push_calls: list[list[str]] = []
        self.delete_calls: list[list[str]] = []
        self._next_locator = 0

    @property
    def index(self):
        return {event_id: record["locator"] for event_id, record in self.records.items()}

    def build_index(self):
        if self.index_error is not None:
            raise self.index_error
        return self.index

    def push(self, events):
        self.push_calls.append([e.id for e in events])
        result = PushResult()
        for event in events:
            if event.id in self.fail_push_ids:
                result.errors.append(f"Failed to write event {event.id}")
                continue
            if event.id in self.records:
                self.records[event.id]["title"] = event.title
                result.updated += 1
            else:
                self._next_locator += 1
                self.records[event.id] = {"locator": f"rec_{self._next_locator}", "title": event.title}
                result.created += 1
            result.locators[event.id] = self.records[event.id]["locator"]
        return result

    def delete_many(self, event_ids):
        self.delete_calls.append(list(event_ids))
        result = DeleteResult()
        for event_id in event_ids:
            if event_id not in self.records:
                result.missing_ids.append(event_id)
            elif event_id in self.fail_delete_ids:
                result.errors.append(f"Failed to delete event {event_id}")
            else:
                del self.records[event_id]
                result.deleted_ids.append(event_id)
        return result


class FakeCredentialProvider:
    def __init__(self, token: str = "access-token", error: Exception | None = None):
        self.token = token
        self.error = error

    def get_access_token(self) -> str:
        if self.error is not None:
            raise self.error
        return self.token


class SyncHarness:
    """Wires an engine to fakes over an in-memory database."""

    def __init__(self, database: SyncDatabase, settings: AppConfig):
        self.database = database
        self.settings = settings
        self.clock = FakeClock()
        self.client = FakeCalendarClient()
        self.destination = FakeDestination()
        self.credentials = FakeCredentialProvider()
        self.configs = ConfigurationStore(database)
        self.locks = ConfigurationLocks()
        self.engine = SyncEngine(
            database,
            settings,
            locks=self.locks,
            adapter_factory=lambda configuration, token, settings: self.destination,
            client_factory=lambda token, settings: self.client,
            credential_factory=lambda store, credential_id, settings: self.credentials,
            clock=self.clock,
        )

    def add_configuration(self, **overrides) -> SyncConfiguration:
        # Airtable record ids suit the string locators FakeDestination hands out
        overrides.setdefault("destination_type", DestinationType.AIRTABLE)
        configuration = make_configuration(**overrides)
        self.configs.save(configuration)
        return configuration


@pytest.fixture
def database():
    db = SyncDatabase()
    db.connect()
    yield db
    db.close()


@pytest.fixture
def settings() -> AppConfig:
    return AppConfig()


@pytest.fixture
def harness(database, settings) -> SyncHarness:
    return SyncHarness(database, settings)


@pytest.fixture
def no_sleep(monkeypatch):
    """Record requested sleeps instead of waiting."""
    slept: list[float] = []
    monkeypatch.setattr(time, "sleep", slept.append)
    return slept
