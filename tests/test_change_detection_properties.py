"""Property-based tests for hashing, filtering and change classification.

**Feature: calendar-sync, Property 3: Hash ignores attendee order**
**Feature: calendar-sync, Property 4: Change set partitions the pull**
**Feature: calendar-sync, Property 5: Filter retraction**
"""

from datetime import date, datetime, timedelta, timezone

import structlog
from hypothesis import given, settings
from hypothesis import strategies as st

from calsync.models.event import EventDateTime, EventStatus, UpstreamEvent
from calsync.models.sync_config import FilterSpec, LedgerStatus, SyncedEventRecord
from calsync.sync.change_detector import ChangeDetector
from calsync.sync.change_hasher import hash_event, hash_payload, rolling_hash
from calsync.sync.filters import matches, matches_keywords, matches_time_range
from conftest import make_event

log = structlog.stdlib.get_logger()

emails = st.lists(st.emails(), max_size=6, unique=True)
event_ids = st.text(min_size=1, max_size=8, alphabet="abcdefghij0123456789")


@st.composite
def event_strategy(draw: st.DrawFn, event_id: str | None = None) -> UpstreamEvent:
    """Generate a random upstream event."""
    start_naive = draw(st.datetimes(min_value=datetime(2025, 1, 1), max_value=datetime(2027, 12, 31)))
    return make_event(
        event_id=event_id or draw(event_ids),
        title=draw(st.text(max_size=40)),
        start=start_naive.replace(tzinfo=timezone.utc),
        minutes=draw(st.integers(min_value=0, max_value=600)),
        status=draw(st.sampled_from(list(EventStatus))),
        attendees=draw(emails),
        description=draw(st.text(max_size=40)),
        location=draw(st.text(max_size=20)),
    )


def ledger_row(
    event: UpstreamEvent, status: LedgerStatus = LedgerStatus.ACTIVE, **overrides
) -> SyncedEventRecord:
    values = {
        "id": f"row_{event.id}",
        "sync_config_id": "cfg_1",
        "external_event_id": event.id,
        "table_record_id": f"rec_{event.id}",
        "event_hash": hash_event(event),
        "status": status,
    }
    values.update(overrides)
    return SyncedEventRecord(**values)


class TestEventHash:
    """Test Property 3: Hash ignores attendee order.

    For any event, permuting its attendees leaves the hash unchanged, while a
    change to any hashed field changes the canonical payload.
    """

    @given(event=event_strategy(), data=st.data())
    @settings(max_examples=100)
    def test_attendee_order_does_not_change_hash(self, event: UpstreamEvent, data) -> None:
        shuffled = data.draw(st.permutations(event.attendees))
        reordered = event.model_copy(update={"attendees": list(shuffled)})
        assert hash_event(reordered) == hash_event(event)

    @given(event=event_strategy(), suffix=st.text(min_size=1, max_size=5))
    @settings(max_examples=100)
    def test_title_change_changes_payload(self, event: UpstreamEvent, suffix: str) -> None:
        renamed = event.model_copy(update={"title": event.title + suffix})
        assert hash_payload(renamed) != hash_payload(event)

    @given(event=event_strategy())
    def test_hash_is_eight_hex_digits(self, event: UpstreamEvent) -> None:
        digest = hash_event(event)
        assert len(digest) == 8
        int(digest, 16)

    def test_fields_outside_the_payload_are_ignored(self) -> None:
        event = make_event()
        touched = event.model_copy(
            update={"updated": datetime(2026, 3, 5, tzinfo=timezone.utc), "html_link": "https://x"}
        )
        assert hash_event(touched) == hash_event(event)

    def test_rolling_hash_known_values(self) -> None:
        assert rolling_hash("") == "00000000"
        assert rolling_hash("a") == "00000061"
        # 97 * 31 + 98
        assert rolling_hash("ab") == f"{97 * 31 + 98:08x}"


class TestEventFilter:
    """Scope filter: inclusive date range on the start, keyword match on the title."""

    def test_no_filter_matches_everything(self) -> None:
        assert matches(make_event(), None)

    def test_range_bounds_are_inclusive_and_cover_the_whole_end_day(self) -> None:
        spec = FilterSpec(time_range_start=date(2026, 3, 2), time_range_end=date(2026, 3, 2))
        late = make_event(start=datetime(2026, 3, 2, 23, 59, 59, tzinfo=timezone.utc))
        early = make_event(start=datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc))
        after = make_event(start=datetime(2026, 3, 3, 0, 0, tzinfo=timezone.utc))
        before = make_event(start=datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))

        assert matches_time_range(late, spec)
        assert matches_time_range(early, spec)
        assert not matches_time_range(after, spec)
        assert not matches_time_range(before, spec)

    def test_all_day_events_use_midnight_of_their_date(self) -> None:
        spec = FilterSpec(time_range_start=date(2026, 3, 2))
        event = UpstreamEvent(
            id="allday",
            start=EventDateTime(all_day_date=date(2026, 3, 2)),
            end=EventDateTime(all_day_date=date(2026, 3, 3)),
        )
        assert matches_time_range(event, spec)

    def test_keywords_are_case_insensitive_substrings(self) -> None:
        event = make_event(title="Weekly STANDUP sync")
        assert matches_keywords(event, ["standup"])
        assert matches_keywords(event, ["retro", "Sync"])
        assert not matches_keywords(event, ["retro"])
        assert matches_keywords(event, [])

    def test_filter_spec_accepts_iso_timestamps_and_drops_blank_keywords(self) -> None:
        spec = FilterSpec.from_text(
            '{"time_range_start": "2026-03-01T00:00:00Z", "keywords": ["  ", "demo"]}'
        )
        assert spec is not None
        assert spec.time_range_start == date(2026, 3, 1)
        assert spec.keywords == ["demo"]

    def test_malformed_filter_text_means_no_filter(self) -> None:
        assert FilterSpec.from_text("{not json") is None
        assert FilterSpec.from_text("") is None


class TestChangeSetPartition:
    """Test Property 4: Change set partitions the pull.

    For any pull and ledger, every distinct pulled id lands in exactly one
    bucket.
    """

    @given(
        events=st.lists(event_strategy(), max_size=12),
        data=st.data(),
    )
    @settings(max_examples=100)
    def test_every_event_in_exactly_one_bucket(self, events: list[UpstreamEvent], data) -> None:
        ledger = {}
        for event in events:
            choice = data.draw(st.sampled_from(["none", "same", "stale", "cancelled"]))
            if choice == "same":
                ledger[event.id] = ledger_row(event)
            elif choice == "stale":
                ledger[event.id] = ledger_row(event, event_hash="00000000")
            elif choice == "cancelled":
                ledger[event.id] = ledger_row(event, status=LedgerStatus.CANCELLED)

        changes = ChangeDetector().detect_changes(events, ledger)

        for event_id in {e.id for e in events}:
            assert len(changes.bucket_of(event_id)) == 1, (
                f"Event {event_id} should be in exactly one bucket, got {changes.bucket_of(event_id)}"
            )

        log.info("test_every_event_in_exactly_one_bucket_passed", total_changes=changes.total_changes)

    def test_classification(self) -> None:
        new = make_event("new")
        same = make_event("same")
        changed = make_event("changed", title="Renamed")
        cancelled = make_event("gone", status=EventStatus.CANCELLED)
        never_synced_cancelled = make_event("never", status=EventStatus.CANCELLED)

        ledger = {
            "same": ledger_row(same),
            "changed": ledger_row(make_event("changed", title="Original")),
            "gone": ledger_row(make_event("gone")),
        }

        changes = ChangeDetector().detect_changes(
            [new, same, changed, cancelled, never_synced_cancelled], ledger
        )

        assert [e.id for e in changes.to_create] == ["new"]
        assert [e.id for e in changes.to_update] == ["changed"]
        assert [r.external_event_id for r in changes.to_delete] == ["gone"]
        assert sorted(changes.skipped_ids) == ["never", "same"]

    def test_cancelled_ledger_row_counts_as_absent(self) -> None:
        event = make_event("back")
        ledger = {"back": ledger_row(event, status=LedgerStatus.CANCELLED)}

        changes = ChangeDetector().detect_changes([event], ledger)

        assert [e.id for e in changes.to_create] == ["back"]

    def test_last_delivery_of_an_id_wins(self) -> None:
        first = make_event("dup", title="Draft")
        second = make_event("dup", status=EventStatus.CANCELLED)
        ledger = {"dup": ledger_row(first)}

        changes = ChangeDetector().detect_changes([first, second], ledger)

        assert changes.to_create == [] and changes.to_update == []
        assert [r.external_event_id for r in changes.to_delete] == ["dup"]


class TestFilterRetraction:
    """Test Property 5: Filter retraction.

    An event that falls out of the filter is removed from the destination if
    it was synced, and ignored otherwise.
    """

    @given(event=event_strategy())
    @settings(max_examples=50)
    def test_out_of_scope_event_is_retracted_or_skipped(self, event: UpstreamEvent) -> None:
        event = event.model_copy(update={"status": EventStatus.CONFIRMED, "title": "lunch"})
        spec = FilterSpec(keywords=["board meeting"])

        synced = ChangeDetector().detect_changes([event], {event.id: ledger_row(event)}, spec)
        unsynced = ChangeDetector().detect_changes([event], {}, spec)

        assert [r.external_event_id for r in synced.to_delete] == [event.id]
        assert unsynced.skipped_ids == [event.id]

    def test_range_filter_retracts_event_moved_out_of_range(self) -> None:
        spec = FilterSpec(time_range_end=date(2026, 3, 31))
        moved = make_event("moved", start=datetime(2026, 4, 2, 9, tzinfo=timezone.utc))
        ledger = {"moved": ledger_row(make_event("moved"))}

        changes = ChangeDetector().detect_changes([moved], ledger, spec)

        assert [r.external_event_id for r in changes.to_delete] == ["moved"]
        assert changes.to_update == []


def test_duration_uses_effective_bounds() -> None:
    event = make_event(minutes=90)
    open_ended = UpstreamEvent(id="open", start=EventDateTime(date_time=datetime(2026, 3, 2, 9)))

    assert event.duration_minutes() == 90
    assert open_ended.duration_minutes() == 0
    assert event.end.effective() - event.start.effective() == timedelta(minutes=90)
