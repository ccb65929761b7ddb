"""Sync token cursor: decides between incremental and bounded full pulls."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

import structlog
from pydantic import BaseModel, Field

from calsync.ingestion.calendar_client import GoogleCalendarClient
from calsync.models.config import SyncSettings
from calsync.models.event import UpstreamEvent

log = structlog.stdlib.get_logger()


class CursorState(str, Enum):
    """Where the cursor stands before a pull."""

    NONE = "none"
    VALID = "valid"
    EXPIRED = "expired"


class PullOutcome(BaseModel):
    """Events and resume state produced by one cursor pull."""

    events: list[UpstreamEvent] = Field(default_factory=list)
    next_token: str | None = Field(default=None, description="Token to persist for the next pass")
    full_sync_required: bool = Field(
        default=False, description="True when an expired token forced a bounded full pull"
    )
    state: CursorState = Field(default=CursorState.NONE, description="State the pull started from")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncCursor:
    """Drives the provider's sync-token protocol for one calendar."""

    def __init__(
        self,
        client: GoogleCalendarClient,
        calendar_id: str,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """
        Initialize sync cursor.

        Args:
            client: Calendar client used for listing
            calendar_id: Provider calendar id
            settings: Window settings for bounded full pulls
            clock: Source of "now" for the full-pull window
        """
        self._client = client
        self._calendar_id = calendar_id
        self._settings = settings or SyncSettings()
        self._clock = clock

    @staticmethod
    def state_of(stored_token: str | None) -> CursorState:
        return CursorState.VALID if stored_token else CursorState.NONE

    def full_window(self) -> tuple[datetime, datetime]:
        """Bounds of a full pull relative to now."""
        now = self._clock()
        return (
            now - timedelta(days=self._settings.initial_window_past_days),
            now + timedelta(days=self._settings.initial_window_future_days),
        )

    def pull(self, stored_token: str | None) -> PullOutcome:
        """
        Pull changes since ``stored_token``.

        An incremental pull that comes back expired falls back to exactly one
        bounded full pull. A full pull that yields no token clears the stored
        token; an incremental one keeps the previous token.

        Args:
            stored_token: Token persisted by the previous pass

        Returns:
            PullOutcome with the events and the token to persist

        Raises:
            ProviderError: If the provider fails, including an expiry reported
                on the fallback pull
        """
        state = self.state_of(stored_token)

        if state == CursorState.VALID:
            result = self._client.list_events(self._calendar_id, sync_token=stored_token)
            if not result.full_sync_required:
                log.info(
                    "incremental_pull_completed",
                    calendar_id=self._calendar_id,
                    event_count=len(result.events),
                )
                return PullOutcome(
                    events=result.events,
                    next_token=result.next_sync_token or stored_token,
                    state=state,
                )
            state = CursorState.EXPIRED
            log.warning("sync_token_expired_falling_back", calendar_id=self._calendar_id)

        time_min, time_max = self.full_window()
        result = self._client.list_events(self._calendar_id, time_min=time_min, time_max=time_max)

        log.info(
            "full_pull_completed",
            calendar_id=self._calendar_id,
            event_count=len(result.events),
            after_expiry=state == CursorState.EXPIRED,
        )

        return PullOutcome(
            events=result.events,
            next_token=result.next_sync_token,
            full_sync_required=state == CursorState.EXPIRED,
            state=state,
        )
