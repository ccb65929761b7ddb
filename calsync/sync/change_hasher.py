"""Content fingerprint used to tell real event changes from redeliveries."""

import json
from typing import Any

from calsync.models.event import EventDateTime, UpstreamEvent

_MASK_32 = 0xFFFFFFFF


def _datetime_payload(value: EventDateTime) -> dict[str, Any]:
    return {
        "date": value.all_day_date.isoformat() if value.all_day_date else None,
        "dateTime": value.date_time.isoformat() if value.date_time else None,
        "timeZone": value.time_zone,
    }


def hash_payload(event: UpstreamEvent) -> str:
    """
    Build the canonical JSON covering exactly the hashed fields.

    Attendee e-mails are sorted so a provider that reorders attendees does not
    register as a content change.

    Args:
        event: Normalized upstream event

    Returns:
        Canonical JSON text
    """
    payload = {
        "summary": event.title,
        "description": event.description,
        "location": event.location,
        "start": _datetime_payload(event.start),
        "end": _datetime_payload(event.end),
        "status": event.status.value,
        "attendees": sorted(event.attendee_emails),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def rolling_hash(text: str) -> str:
    """32-bit ``h = h * 31 + c`` hash rendered as 8 hex digits."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & _MASK_32
    return f"{h:08x}"


def hash_event(event: UpstreamEvent) -> str:
    """
    Fingerprint the semantically relevant fields of an event.

    Only used for equality ("skip vs. update"), never for security.

    Args:
        event: Normalized upstream event

    Returns:
        Hex digest
    """
    return rolling_hash(hash_payload(event))
