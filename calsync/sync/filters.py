"""Scope filter deciding whether an event belongs in a configuration's destination."""

from datetime import datetime, time, timezone

from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import FilterSpec


def _start_of_day(day) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _end_of_day(day) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def matches_time_range(event: UpstreamEvent, filter_spec: FilterSpec) -> bool:
    """
    Check the event's effective start against the inclusive date range.

    The end bound covers the entire end day. Events without any start are
    not excluded by the range.

    Args:
        event: Normalized upstream event
        filter_spec: Filter with optional start/end days

    Returns:
        True if the event starts inside the range
    """
    event_start = event.start.effective()
    if event_start is None:
        return True

    if filter_spec.time_range_start and event_start < _start_of_day(filter_spec.time_range_start):
        return False

    if filter_spec.time_range_end and event_start > _end_of_day(filter_spec.time_range_end):
        return False

    return True


def matches_keywords(event: UpstreamEvent, keywords: list[str]) -> bool:
    """Case-insensitive substring match of any keyword against the title."""
    if not keywords:
        return True
    title = event.title.lower()
    return any(keyword.lower() in title for keyword in keywords)


def matches(event: UpstreamEvent, filter_spec: FilterSpec | None) -> bool:
    """
    Decide whether an event is in scope for a sync.

    Args:
        event: Normalized upstream event
        filter_spec: Configuration filter, or None for "everything"

    Returns:
        True when no filter is set or every filter clause matches
    """
    if filter_spec is None:
        return True
    return matches_time_range(event, filter_spec) and matches_keywords(event, filter_spec.keywords)
