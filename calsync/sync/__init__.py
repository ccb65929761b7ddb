"""Synchronization components for reconciling calendars with destinations."""

from calsync.sync.change_detector import ChangeDetector
from calsync.sync.change_hasher import hash_event
from calsync.sync.engine import ConfigurationLocks, SyncEngine
from calsync.sync.filters import matches
from calsync.sync.models import ChangeSet, SchedulerReport, SyncRunResult
from calsync.sync.scheduler import PlanGate, Scheduler
from calsync.sync.token_cursor import CursorState, SyncCursor

__all__ = [
    "ChangeDetector",
    "ChangeSet",
    "ConfigurationLocks",
    "CursorState",
    "PlanGate",
    "Scheduler",
    "SchedulerReport",
    "SyncCursor",
    "SyncEngine",
    "SyncRunResult",
    "hash_event",
    "matches",
]
