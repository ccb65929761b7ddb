"""Pydantic models for persisted sync state: configurations, ledger rows and history."""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

log = structlog.stdlib.get_logger()


class DestinationType(str, Enum):
    """Destination variants a configuration can write to."""

    GOOGLE_SHEETS = "google_sheets"
    AIRTABLE = "airtable"
    NOTION = "notion"


class SyncFrequency(str, Enum):
    """User-selected sync cadence."""

    EVERY_15_MINUTES = "every_15_minutes"
    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def interval_minutes(self) -> int:
        return {
            SyncFrequency.EVERY_15_MINUTES: 15,
            SyncFrequency.HOURLY: 60,
            SyncFrequency.DAILY: 1440,
        }[self]


class SyncStatus(str, Enum):
    """Health of a configuration as shown to the user."""

    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"


class LedgerStatus(str, Enum):
    """Lifecycle of a ledger row."""

    ACTIVE = "active"
    CANCELLED = "cancelled"


class SyncRunStatus(str, Enum):
    """Status of one history row."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class Plan(str, Enum):
    """Subscription tier of an organization."""

    FREE = "free"
    PRO = "pro"


class CredentialKind(str, Enum):
    """OAuth provider a stored credential belongs to."""

    GOOGLE = "google"
    AIRTABLE = "airtable"
    NOTION = "notion"


class FilterSpec(BaseModel):
    """Optional event filter attached to a configuration."""

    time_range_start: date | None = Field(default=None, description="First included day")
    time_range_end: date | None = Field(default=None, description="Last included day (whole day)")
    keywords: list[str] = Field(default_factory=list, description="Any keyword must appear in the title")

    @field_validator("time_range_start", "time_range_end", mode="before")
    @classmethod
    def _date_from_iso(cls, v: Any) -> Any:
        # Stored values may be full ISO timestamps; only the day matters
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @field_validator("keywords")
    @classmethod
    def _drop_blank_keywords(cls, v: list[str]) -> list[str]:
        return [k for k in v if k.strip()]

    @classmethod
    def from_text(cls, text: str | None) -> "FilterSpec | None":
        """Parse stored filter JSON.

        Malformed or invalid text is treated as "no filter" rather than an error.

        Args:
            text: JSON text from the storage column

        Returns:
            FilterSpec, or None when absent or unparsable
        """
        if not text or not text.strip():
            return None
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            log.warning("invalid_filter_config_ignored", error=str(e))
            return None

    def to_text(self) -> str:
        return self.model_dump_json(exclude_defaults=True)


def field_mapping_from_text(text: str | None) -> dict[str, str] | None:
    """Parse stored field-mapping JSON (logical field -> destination name).

    Args:
        text: JSON text from the storage column

    Returns:
        Mapping of string to string, or None when absent or unparsable
    """
    if not text or not text.strip():
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError as e:
        log.warning("invalid_field_mapping_ignored", error=str(e))
        return None
    if not isinstance(value, dict) or not all(
        isinstance(k, str) and isinstance(v, str) and v for k, v in value.items()
    ):
        log.warning("invalid_field_mapping_ignored", error="mapping must be an object of strings")
        return None
    return value


class SyncConfiguration(BaseModel):
    """Binds one source calendar to one destination."""

    id: str = Field(default=..., min_length=1)
    org_id: str = Field(default=..., min_length=1)
    calendar_id: str = Field(default=..., description="Provider calendar id")
    calendar_name: str = Field(default="", description="Display name written to destinations")
    source_connection_id: str = Field(default=..., description="Credential used to read the calendar")
    destination_type: DestinationType
    destination_id: str = Field(
        default=..., description="Spreadsheet id, Airtable base id or Notion database id"
    )
    destination_table: str | None = Field(
        default=None, description="Sheet name or Airtable table id (unused for Notion)"
    )
    destination_connection_id: str = Field(
        default=..., description="Credential used to write the destination"
    )
    is_enabled: bool = True
    sync_frequency: SyncFrequency = SyncFrequency.DAILY
    status: SyncStatus = SyncStatus.ACTIVE
    sync_token: str | None = None
    last_sync_at: datetime | None = None
    last_error_message: str | None = None
    filter_config: FilterSpec | None = None
    field_mapping: dict[str, str] | None = None
    created_at: datetime | None = None


class SyncedEventRecord(BaseModel):
    """Ledger row mapping an upstream event to its destination record."""

    id: str = Field(default=..., min_length=1)
    sync_config_id: str = Field(default=..., min_length=1)
    external_event_id: str = Field(default=..., min_length=1)
    sheet_row_number: int | None = Field(default=None, ge=1)
    table_record_id: str | None = None
    document_page_id: str | None = None
    event_hash: str | None = None
    status: LedgerStatus = LedgerStatus.ACTIVE
    last_synced_at: datetime | None = None
    event_title: str | None = None
    event_start: str | None = None
    event_end: str | None = None

    @model_validator(mode="after")
    def _single_locator(self) -> "SyncedEventRecord":
        populated = [
            v
            for v in (self.sheet_row_number, self.table_record_id, self.document_page_id)
            if v is not None
        ]
        if len(populated) > 1:
            raise ValueError("at most one destination locator may be set")
        return self

    @property
    def is_active(self) -> bool:
        return self.status == LedgerStatus.ACTIVE

    @property
    def locator(self) -> int | str | None:
        if self.sheet_row_number is not None:
            return self.sheet_row_number
        return self.table_record_id or self.document_page_id


def locator_fields(destination_type: DestinationType, locator: int | str | None) -> dict[str, Any]:
    """Spread a locator into the ledger column used by the destination type.

    Args:
        destination_type: Destination variant of the configuration
        locator: Row number, record id or page id

    Returns:
        Keyword arguments for SyncedEventRecord with exactly one locator column set
    """
    fields: dict[str, Any] = {
        "sheet_row_number": None,
        "table_record_id": None,
        "document_page_id": None,
    }
    if locator is None:
        return fields
    if destination_type == DestinationType.GOOGLE_SHEETS:
        fields["sheet_row_number"] = int(locator)
    elif destination_type == DestinationType.AIRTABLE:
        fields["table_record_id"] = str(locator)
    else:
        fields["document_page_id"] = str(locator)
    return fields


class SyncHistoryEntry(BaseModel):
    """Audit row written for every reconciliation pass."""

    id: str = Field(default=..., min_length=1)
    sync_config_id: str = Field(default=..., min_length=1)
    status: SyncRunStatus = SyncRunStatus.RUNNING
    started_at: datetime
    completed_at: datetime | None = None
    events_processed: int = Field(default=0, ge=0)
    events_created: int = Field(default=0, ge=0)
    events_updated: int = Field(default=0, ge=0)
    events_deleted: int = Field(default=0, ge=0)
    full_sync: bool = False
    error_message: str | None = None


class OAuthCredential(BaseModel):
    """Stored OAuth tokens for one provider connection."""

    id: str = Field(default=..., min_length=1)
    provider: CredentialKind
    access_token: str = Field(default=..., min_length=1)
    refresh_token: str | None = None
    expires_at: datetime | None = Field(
        default=None, description="None for tokens that never expire (Notion)"
    )
    refresh_claimed_by: str | None = None
    refresh_claimed_until: datetime | None = None
