"""Data models for the calendar sync worker."""

from calsync.models.config import AppConfig
from calsync.models.event import Attendee, EventDateTime, EventStatus, UpstreamEvent
from calsync.models.sync_config import (
    DestinationType,
    FilterSpec,
    OAuthCredential,
    SyncConfiguration,
    SyncedEventRecord,
    SyncHistoryEntry,
)

__all__ = [
    "AppConfig",
    "Attendee",
    "DestinationType",
    "EventDateTime",
    "EventStatus",
    "FilterSpec",
    "OAuthCredential",
    "SyncConfiguration",
    "SyncedEventRecord",
    "SyncHistoryEntry",
    "UpstreamEvent",
]
