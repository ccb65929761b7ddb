"""Pydantic models for upstream calendar events."""

from datetime import date, datetime, time, timezone
from enum import Enum

from pydantic import BaseModel, Field


class EventStatus(str, Enum):
    """Lifecycle status reported by the calendar provider."""

    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class EventDateTime(BaseModel):
    """Start or end of an event: either a timed instant or an all-day date."""

    date_time: datetime | None = Field(default=None, description="Timed instant (RFC 3339)")
    all_day_date: date | None = Field(default=None, description="All-day date")
    time_zone: str | None = Field(default=None, description="IANA time zone of the instant")

    @property
    def is_all_day(self) -> bool:
        """True when only a calendar date is set."""
        return self.date_time is None and self.all_day_date is not None

    def effective(self) -> datetime | None:
        """Return the timed instant, falling back to midnight of the all-day date.

        Naive values are treated as UTC so that comparisons never mix naive
        and aware datetimes.
        """
        if self.date_time is not None:
            if self.date_time.tzinfo is None:
                return self.date_time.replace(tzinfo=timezone.utc)
            return self.date_time
        if self.all_day_date is not None:
            return datetime.combine(self.all_day_date, time.min, tzinfo=timezone.utc)
        return None

    def display(self) -> str:
        """Render the value the way the provider sent it (ISO 8601)."""
        if self.date_time is not None:
            return self.date_time.isoformat()
        if self.all_day_date is not None:
            return self.all_day_date.isoformat()
        return ""


class Attendee(BaseModel):
    """An invited participant."""

    email: str | None = None
    display_name: str | None = None
    response_status: str | None = None
    is_self: bool = False
    is_organizer: bool = False

    @property
    def label(self) -> str:
        return self.display_name or self.email or ""


class Organizer(BaseModel):
    """The event organizer."""

    email: str | None = None
    display_name: str | None = None
    is_self: bool = False


class UpstreamEvent(BaseModel):
    """Normalized projection of a provider calendar event.

    Produced fresh on every pull and never stored as such; only its hash and a
    few display fields end up in the ledger.
    """

    id: str = Field(default=..., min_length=1, description="Provider event id")
    title: str = Field(default="", description="Event summary")
    description: str = Field(default="", description="Event description")
    location: str = Field(default="", description="Event location")
    start: EventDateTime = Field(default_factory=EventDateTime)
    end: EventDateTime = Field(default_factory=EventDateTime)
    attendees: list[Attendee] = Field(default_factory=list)
    organizer: Organizer | None = None
    status: EventStatus = Field(default=EventStatus.CONFIRMED)
    recurring_event_id: str | None = Field(
        default=None, description="Parent series id for expanded recurring instances"
    )
    created: datetime | None = None
    updated: datetime | None = None
    html_link: str | None = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "evt_7h3k2",
                "title": "Quarterly planning",
                "description": "Agenda in the doc",
                "location": "Room 4",
                "start": {"date_time": "2026-03-01T10:00:00+00:00"},
                "end": {"date_time": "2026-03-01T11:00:00+00:00"},
                "attendees": [{"email": "ana@example.com"}],
                "status": "confirmed",
            }
        }
    }

    @property
    def is_cancelled(self) -> bool:
        return self.status == EventStatus.CANCELLED

    @property
    def attendee_emails(self) -> list[str]:
        """Attendee e-mails in provider order, skipping attendees without one."""
        return [a.email for a in self.attendees if a.email]

    def duration_minutes(self) -> int:
        """Length of the event in whole minutes (0 when a bound is missing)."""
        start = self.start.effective()
        end = self.end.effective()
        if start is None or end is None:
            return 0
        return round((end - start).total_seconds() / 60)
