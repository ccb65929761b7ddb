"""Row format shared by all destination variants."""

from typing import Any

from pydantic import BaseModel, Field

from calsync.models.event import UpstreamEvent

NO_TITLE = "(No title)"

# Logical field -> default destination column/field/property name, in sheet column order
DEFAULT_FIELD_NAMES: dict[str, str] = {
    "title": "Event Title",
    "start": "Start",
    "end": "End",
    "duration": "Duration (minutes)",
    "calendar": "Calendar",
    "description": "Description",
    "location": "Location",
    "attendees": "Attendees",
    "status": "Status",
    "event_id": "Event ID",
}

LOGICAL_FIELDS: tuple[str, ...] = tuple(DEFAULT_FIELD_NAMES)


class EventRow(BaseModel):
    """Destination-neutral projection of one event."""

    event_id: str
    title: str = NO_TITLE
    start: str = ""
    end: str = ""
    duration_minutes: int = 0
    calendar: str = ""
    description: str = ""
    location: str = ""
    attendees: list[str] = Field(default_factory=list)
    status: str = "confirmed"

    def value_of(self, logical_field: str) -> Any:
        """Raw value for a logical field name."""
        return {
            "title": self.title,
            "start": self.start,
            "end": self.end,
            "duration": self.duration_minutes,
            "calendar": self.calendar,
            "description": self.description,
            "location": self.location,
            "attendees": self.attendees,
            "status": self.status,
            "event_id": self.event_id,
        }[logical_field]


def build_event_row(event: UpstreamEvent, calendar_name: str = "") -> EventRow:
    """
    Project an upstream event into the shared row format.

    The organizer's own attendee entry is left out; the rest are listed by
    display name, falling back to e-mail.

    Args:
        event: Normalized upstream event
        calendar_name: Display name of the source calendar

    Returns:
        EventRow
    """
    attendees = [a.label for a in event.attendees if not a.is_self and a.label]
    return EventRow(
        event_id=event.id,
        title=event.title or NO_TITLE,
        start=event.start.display(),
        end=event.end.display(),
        duration_minutes=event.duration_minutes(),
        calendar=calendar_name,
        description=event.description,
        location=event.location,
        attendees=attendees,
        status=event.status.value if event.status else "confirmed",
    )


def resolve_field_names(field_mapping: dict[str, str] | None) -> dict[str, str]:
    """
    Merge a configuration's field mapping over the default names.

    Unknown logical fields in the mapping are ignored.

    Args:
        field_mapping: Logical field -> destination name overrides

    Returns:
        Complete logical field -> destination name map
    """
    names = dict(DEFAULT_FIELD_NAMES)
    for logical, name in (field_mapping or {}).items():
        if logical in names and name:
            names[logical] = name
    return names


def sheet_values(row: EventRow) -> list[Any]:
    """Cell values in column order; attendees joined into one cell."""
    values = []
    for logical in LOGICAL_FIELDS:
        value = row.value_of(logical)
        values.append(", ".join(value) if isinstance(value, list) else value)
    return values


def column_letter(index: int) -> str:
    """Spreadsheet column letter for a zero-based column index (0 -> A, 26 -> AA)."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters
