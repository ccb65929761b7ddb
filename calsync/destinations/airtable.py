"""Airtable destination: one record per event, located by record id."""

import time
from typing import Any
from urllib.parse import quote

import structlog
from requests.exceptions import RequestException

from calsync.destinations.base import DeleteResult, DestinationAdapter, PushResult
from calsync.destinations.formatting import LOGICAL_FIELDS, EventRow
from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import DestinationType
from calsync.utils.errors import DestinationPrerequisiteError, ProviderError, RateLimitExceededError
from calsync.utils.retry import compute_delay, parse_retry_after

log = structlog.stdlib.get_logger()

# Field definitions created on tables that lack them, keyed by logical field
CALENDAR_EVENT_FIELDS: dict[str, dict[str, Any]] = {
    "title": {"type": "singleLineText"},
    "start": {"type": "dateTime", "options": {"timeZone": "utc", "dateFormat": {"name": "iso"}}},
    "end": {"type": "dateTime", "options": {"timeZone": "utc", "dateFormat": {"name": "iso"}}},
    "duration": {"type": "number", "options": {"precision": 0}},
    "calendar": {"type": "singleSelect"},
    "description": {"type": "multilineText"},
    "location": {"type": "singleLineText"},
    "attendees": {"type": "multipleSelects"},
    "status": {
        "type": "singleSelect",
        "options": {
            "choices": [{"name": "confirmed"}, {"name": "tentative"}, {"name": "cancelled"}]
        },
    },
    "event_id": {
        "type": "singleLineText",
        "description": "Google Calendar event ID for sync tracking",
    },
}


class AirtableAdapter(DestinationAdapter):
    """
    Writes events as Airtable records.

    Every write goes out in batches of at most ten records with a fixed delay
    between batches. HTTP 429 replies are retried after the server's
    Retry-After and 5xx replies with exponential backoff.
    """

    destination_type = DestinationType.AIRTABLE

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        airtable = self._settings.airtable
        self._api_base = airtable.api_base
        self._batch_size = min(airtable.batch_size, 10)
        self._delay = airtable.rate_limit_delay_seconds
        self._max_attempts = airtable.max_rate_limit_retries
        self._base_id = self._configuration.destination_id
        self._table = self._configuration.destination_table or ""
        self._table_id: str | None = None

    def build_index(self) -> dict[str, str]:
        self._ensure_schema()

        event_id_field = self._field_names["event_id"]
        self._index = {}
        offset: str | None = None
        while True:
            params: dict[str, Any] = {"fields[]": event_id_field, "pageSize": 100}
            if offset:
                params["offset"] = offset
            data = self._send("GET", self._records_url(), params=params)

            for record in data.get("records", []):
                event_id = record.get("fields", {}).get(event_id_field)
                if event_id:
                    self._index[str(event_id)] = record["id"]

            offset = data.get("offset")
            if not offset:
                break

        log.info(
            "airtable_index_built",
            base_id=self._base_id,
            table=self._table,
            indexed_records=len(self._index),
        )
        return self.index

    def push(self, events: list[UpstreamEvent]) -> PushResult:
        result = PushResult()
        to_update = [e for e in events if e.id in self._index]
        to_create = [e for e in events if e.id not in self._index]

        for batch in self._batches(to_update):
            records = [{"id": self._index[e.id], "fields": self._fields_for(e)} for e in batch]
            try:
                self._send("PATCH", self._records_url(), json={"records": records, "typecast": True})
            except (ProviderError, RequestException) as e:
                log.error("airtable_update_failed", batch_size=len(batch), error=str(e))
                result.errors.extend(f"Failed to update event {ev.id}: {e}" for ev in batch)
                continue
            for event in batch:
                result.locators[event.id] = self._index[event.id]
            result.updated += len(batch)

        for batch in self._batches(to_create):
            records = [{"fields": self._fields_for(e)} for e in batch]
            try:
                data = self._send(
                    "POST", self._records_url(), json={"records": records, "typecast": True}
                )
            except (ProviderError, RequestException) as e:
                log.error("airtable_create_failed", batch_size=len(batch), error=str(e))
                result.errors.extend(f"Failed to create event {ev.id}: {e}" for ev in batch)
                continue
            # Created records come back in request order
            for event, record in zip(batch, data.get("records", [])):
                self._index[event.id] = record["id"]
                result.locators[event.id] = record["id"]
                result.created += 1

        log.info(
            "airtable_push_completed",
            base_id=self._base_id,
            created=result.created,
            updated=result.updated,
            error_count=len(result.errors),
        )
        return result

    def delete_many(self, event_ids: list[str]) -> DeleteResult:
        known, missing = self._split_known(event_ids)
        result = DeleteResult(missing_ids=missing)

        for batch in self._batches(known):
            record_ids = [self._index[event_id] for event_id in batch]
            try:
                data = self._send("DELETE", self._records_url(), params={"records[]": record_ids})
            except (ProviderError, RequestException) as e:
                log.error("airtable_delete_failed", batch_size=len(batch), error=str(e))
                result.errors.extend(f"Failed to delete event {event_id}: {e}" for event_id in batch)
                continue

            deleted_record_ids = {r["id"] for r in data.get("records", []) if r.get("deleted")}
            for event_id in batch:
                if self._index[event_id] in deleted_record_ids:
                    del self._index[event_id]
                    result.deleted_ids.append(event_id)
                else:
                    result.errors.append(f"Airtable did not confirm deletion of event {event_id}")

        log.info(
            "airtable_records_deleted",
            base_id=self._base_id,
            deleted=result.count,
            missing=len(result.missing_ids),
        )
        return result

    def table_fields(self, row: EventRow) -> dict[str, Any]:
        """Record fields for a row, with empty dates sent as null."""
        fields: dict[str, Any] = {}
        for logical in LOGICAL_FIELDS:
            value = row.value_of(logical)
            if logical in ("start", "end") and not value:
                value = None
            fields[self._field_names[logical]] = value
        return fields

    def _fields_for(self, event: UpstreamEvent) -> dict[str, Any]:
        return self.table_fields(self._row_for(event))

    def _ensure_schema(self) -> None:
        data = self._send("GET", f"{self._api_base}/meta/bases/{self._base_id}/tables")

        table = next(
            (t for t in data.get("tables", []) if self._table in (t.get("id"), t.get("name"))),
            None,
        )
        if table is None:
            raise DestinationPrerequisiteError(
                f"Airtable table '{self._table}' not found in base {self._base_id}"
            )
        self._table_id = table["id"]

        existing = {f.get("name", "").lower() for f in table.get("fields", [])}
        for logical in LOGICAL_FIELDS:
            name = self._field_names[logical]
            if name.lower() in existing:
                continue

            log.info("creating_airtable_field", table_id=self._table_id, field=name)
            try:
                self._send(
                    "POST",
                    f"{self._api_base}/meta/bases/{self._base_id}/tables/{self._table_id}/fields",
                    json={"name": name, **CALENDAR_EVENT_FIELDS[logical]},
                )
            except (ProviderError, RequestException) as e:
                if logical == "event_id":
                    raise DestinationPrerequisiteError(
                        f"Airtable table '{self._table}' has no '{name}' field and it could not be created: {e}"
                    ) from e
                log.warning("airtable_field_creation_failed", field=name, error=str(e))
            time.sleep(self._delay)

    def _batches(self, items: list) -> list[list]:
        return [items[i : i + self._batch_size] for i in range(0, len(items), self._batch_size)]

    def _records_url(self) -> str:
        return f"{self._api_base}/{self._base_id}/{quote(self._table_id or self._table, safe='')}"

    def _send(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """
        Send one request, retrying HTTP 429 and 5xx replies.

        A 429 waits for Airtable's Retry-After; a 5xx backs off
        exponentially. Every completed call is followed by the fixed
        inter-request delay so a run stays under Airtable's five requests per
        second.

        Raises:
            RateLimitExceededError: If every attempt was rate limited
            ProviderError: On any other non-2xx status, or a 5xx on the last attempt
        """
        for attempt in range(self._max_attempts):
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
            final_attempt = attempt == self._max_attempts - 1

            if response.status_code == 429:
                if final_attempt:
                    break
                wait = parse_retry_after(response.headers.get("Retry-After"))
                if wait is None:
                    wait = self._delay * (attempt + 1) * 2
                log.warning("airtable_rate_limited", attempt=attempt + 1, wait_seconds=wait)
                time.sleep(wait)
                continue

            if response.status_code >= 500 and not final_attempt:
                wait = compute_delay(attempt, base_delay=1.0, max_delay=60.0)
                log.warning(
                    "airtable_server_error",
                    attempt=attempt + 1,
                    status_code=response.status_code,
                    wait_seconds=wait,
                )
                time.sleep(wait)
                continue

            time.sleep(self._delay)

            if not response.ok:
                raise ProviderError(
                    f"{method} {url} failed: {response.status_code} - {response.text[:200]}",
                    status_code=response.status_code,
                )
            return response.json() if response.content else {}

        raise RateLimitExceededError("Rate limit exceeded after retries", status_code=429)
