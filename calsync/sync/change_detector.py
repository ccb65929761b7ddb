"""Change detection: classify pulled events against the ledger."""

import structlog

from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import FilterSpec, SyncedEventRecord
from calsync.sync.change_hasher import hash_event
from calsync.sync.filters import matches
from calsync.sync.models import ChangeSet

log = structlog.stdlib.get_logger()


class ChangeDetector:
    """Partitions a pull into create, update, delete and skip buckets."""

    def detect_changes(
        self,
        events: list[UpstreamEvent],
        ledger: dict[str, SyncedEventRecord],
        filter_spec: FilterSpec | None = None,
    ) -> ChangeSet:
        """
        Classify each pulled event.

        A ledger row only counts as present while it is active; a cancelled
        row means the destination record is already gone.

        Args:
            events: Events from the pull, in provider order
            ledger: Ledger rows for the configuration keyed by upstream id
            filter_spec: Configuration filter

        Returns:
            ChangeSet in which every event appears in exactly one bucket
        """
        log.info(
            "detecting_changes",
            pulled_event_count=len(events),
            ledger_row_count=len(ledger),
            has_filter=filter_spec is not None,
        )

        change_set = ChangeSet()

        for event in self._latest_per_id(events):
            record = ledger.get(event.id)
            active = record if record is not None and record.is_active else None

            if event.is_cancelled:
                if active is not None:
                    change_set.to_delete.append(active)
                else:
                    change_set.skipped_ids.append(event.id)
            elif not matches(event, filter_spec):
                if active is not None:
                    log.debug("filter_retraction", event_id=event.id)
                    change_set.to_delete.append(active)
                else:
                    change_set.skipped_ids.append(event.id)
            elif active is None:
                change_set.to_create.append(event)
            elif active.event_hash == hash_event(event):
                change_set.skipped_ids.append(event.id)
            else:
                change_set.to_update.append(event)

        log.info(
            "changes_detected",
            to_create=len(change_set.to_create),
            to_update=len(change_set.to_update),
            to_delete=len(change_set.to_delete),
            skipped=len(change_set.skipped_ids),
        )

        return change_set

    @staticmethod
    def _latest_per_id(events: list[UpstreamEvent]) -> list[UpstreamEvent]:
        """Keep the last delivery of each id, preserving first-seen order.

        A provider may return the same id more than once across pages; the
        later copy is the newer state.
        """
        latest: dict[str, UpstreamEvent] = {}
        for event in events:
            latest[event.id] = event
        return list(latest.values())
