"""Data models for synchronization operations."""

from datetime import datetime

from pydantic import BaseModel, Field

from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import SyncedEventRecord


class ChangeSet(BaseModel):
    """Partition of one pull into the actions a pass will take.

    Every pulled event lands in exactly one bucket.
    """

    to_create: list[UpstreamEvent] = Field(
        default_factory=list, description="Events with no active ledger row"
    )
    to_update: list[UpstreamEvent] = Field(
        default_factory=list, description="Events whose content hash changed"
    )
    to_delete: list[SyncedEventRecord] = Field(
        default_factory=list, description="Active rows whose event was cancelled or filtered out"
    )
    skipped_ids: list[str] = Field(
        default_factory=list, description="Events that need no destination write"
    )

    @property
    def has_changes(self) -> bool:
        """Check if there are any changes to apply."""
        return bool(self.to_create or self.to_update or self.to_delete)

    @property
    def total_changes(self) -> int:
        """Get total number of changes."""
        return len(self.to_create) + len(self.to_update) + len(self.to_delete)

    def bucket_of(self, event_id: str) -> list[str]:
        """Names of every bucket holding ``event_id`` (one for a valid partition)."""
        buckets = []
        if any(e.id == event_id for e in self.to_create):
            buckets.append("create")
        if any(e.id == event_id for e in self.to_update):
            buckets.append("update")
        if any(r.external_event_id == event_id for r in self.to_delete):
            buckets.append("delete")
        if event_id in self.skipped_ids:
            buckets.append("skip")
        return buckets


class SyncRunResult(BaseModel):
    """Report of one reconciliation pass."""

    sync_config_id: str = Field(..., description="Configuration that was synced")
    events_processed: int = Field(default=0, ge=0, description="Events returned by the pull")
    events_added: int = Field(default=0, ge=0, description="Destination records created")
    events_updated: int = Field(default=0, ge=0, description="Destination records updated")
    events_deleted: int = Field(default=0, ge=0, description="Destination records removed")
    new_sync_token: str | None = Field(default=None, description="Cursor stored for the next pass")
    full_sync_required: bool = Field(
        default=False, description="True when an expired token forced a bounded full pull"
    )
    started_at: datetime = Field(..., description="Pass start timestamp")
    completed_at: datetime | None = Field(default=None, description="Pass end timestamp")
    errors: list[str] = Field(default_factory=list, description="Item-level and fatal errors")

    @property
    def total_changes(self) -> int:
        """Get total number of destination writes."""
        return self.events_added + self.events_updated + self.events_deleted

    @property
    def success(self) -> bool:
        """Check if the pass completed without errors."""
        return len(self.errors) == 0

    @property
    def error_message(self) -> str | None:
        """Errors joined for the configuration's last-error field."""
        return "; ".join(self.errors) if self.errors else None


class SchedulerReport(BaseModel):
    """Summary of one scheduler tick."""

    due_count: int = Field(default=0, ge=0, description="Configurations that were due")
    deferred_count: int = Field(
        default=0, ge=0, description="Due configurations left for the next tick by the cap"
    )
    results: list[SyncRunResult] = Field(default_factory=list)
    crashed_ids: list[str] = Field(
        default_factory=list, description="Configurations whose pass raised"
    )

    @property
    def processed_count(self) -> int:
        return len(self.results) + len(self.crashed_ids)

    @property
    def failed_count(self) -> int:
        return len(self.crashed_ids) + sum(1 for r in self.results if not r.success)
