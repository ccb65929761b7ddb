"""Google Sheets destination: one row per event, located by row number."""

import re
from typing import Any
from urllib.parse import quote

import structlog
from requests.exceptions import RequestException

from calsync.destinations.base import DeleteResult, DestinationAdapter, PushResult
from calsync.destinations.formatting import LOGICAL_FIELDS, column_letter, sheet_values
from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import DestinationType
from calsync.utils.errors import DestinationPrerequisiteError, ProviderError

log = structlog.stdlib.get_logger()

_UPDATED_RANGE_ROW = re.compile(r"!A(\d+):")
_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


class GoogleSheetsAdapter(DestinationAdapter):
    """
    Writes events as spreadsheet rows.

    Row 1 holds the header; data rows are addressed by their 1-based row
    number. Deleting rows shifts every row below, so deletes are issued
    bottom-up and the index is renumbered afterwards.
    """

    destination_type = DestinationType.GOOGLE_SHEETS

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._api_base = self._settings.google.sheets_api_base
        self._spreadsheet_id = self._configuration.destination_id
        self._sheet_name = (
            self._configuration.destination_table or self._settings.sheets.default_sheet_name
        )
        self._sheet_id: int | None = None
        self._last_column = column_letter(len(LOGICAL_FIELDS) - 1)
        self._event_id_column = column_letter(LOGICAL_FIELDS.index("event_id"))

    @property
    def headers(self) -> list[str]:
        return [self._field_names[logical] for logical in LOGICAL_FIELDS]

    def build_index(self) -> dict[str, int]:
        self._ensure_sheet()
        self._ensure_header()

        column = f"{self._event_id_column}:{self._event_id_column}"
        data = self._request("GET", self._values_url(self._a1(column)))

        self._index = {}
        for offset, cells in enumerate(data.get("values", [])):
            row_number = offset + 1
            if row_number == 1 or not cells:
                continue
            event_id = str(cells[0]).strip()
            if event_id:
                self._index[event_id] = row_number

        log.info(
            "sheet_index_built",
            spreadsheet_id=self._spreadsheet_id,
            sheet_name=self._sheet_name,
            indexed_rows=len(self._index),
        )
        return self.index

    def push(self, events: list[UpstreamEvent]) -> PushResult:
        result = PushResult()
        to_update = [e for e in events if e.id in self._index]
        to_create = [e for e in events if e.id not in self._index]
        chunk_size = self._settings.sheets.max_rows_per_request

        for start in range(0, len(to_update), chunk_size):
            chunk = to_update[start : start + chunk_size]
            self._update_rows(chunk, result)

        for start in range(0, len(to_create), chunk_size):
            chunk = to_create[start : start + chunk_size]
            self._append_rows(chunk, result)

        log.info(
            "sheet_push_completed",
            spreadsheet_id=self._spreadsheet_id,
            created=result.created,
            updated=result.updated,
            error_count=len(result.errors),
        )
        return result

    def delete_many(self, event_ids: list[str]) -> DeleteResult:
        known, missing = self._split_known(event_ids)
        result = DeleteResult(missing_ids=missing)
        if not known:
            return result

        rows = sorted(((self._index[event_id], event_id) for event_id in known), reverse=True)
        requests_body = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": self._sheet_id,
                        "dimension": "ROWS",
                        "startIndex": row_number - 1,
                        "endIndex": row_number,
                    }
                }
            }
            for row_number, _ in rows
        ]

        try:
            self._request(
                "POST",
                f"{self._api_base}/{self._spreadsheet_id}:batchUpdate",
                json={"requests": requests_body},
            )
        except (ProviderError, RequestException) as e:
            log.error("sheet_delete_failed", spreadsheet_id=self._spreadsheet_id, error=str(e))
            result.errors.append(f"Failed to delete rows: {e}")
            return result

        for row_number, event_id in rows:
            del self._index[event_id]
            self._shift_rows_above(row_number)
            result.deleted_ids.append(event_id)

        log.info(
            "sheet_rows_deleted",
            spreadsheet_id=self._spreadsheet_id,
            deleted=result.count,
            missing=len(result.missing_ids),
        )
        return result

    def _update_rows(self, events: list[UpstreamEvent], result: PushResult) -> None:
        data = []
        for event in events:
            row_number = self._index[event.id]
            data.append(
                {
                    "range": self._a1(f"A{row_number}:{self._last_column}{row_number}"),
                    "values": [sheet_values(self._row_for(event))],
                }
            )

        try:
            self._request(
                "POST",
                f"{self._api_base}/{self._spreadsheet_id}/values:batchUpdate",
                json={"valueInputOption": "RAW", "data": data},
            )
        except (ProviderError, RequestException) as e:
            log.error("sheet_update_failed", row_count=len(events), error=str(e))
            result.errors.extend(f"Failed to update event {event.id}: {e}" for event in events)
            return

        for event in events:
            result.locators[event.id] = self._index[event.id]
        result.updated += len(events)

    def _append_rows(self, events: list[UpstreamEvent], result: PushResult) -> None:
        try:
            data = self._request(
                "POST",
                self._values_url(self._a1(f"A:{self._last_column}")) + ":append",
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                json={"values": [sheet_values(self._row_for(event)) for event in events]},
            )
        except (ProviderError, RequestException) as e:
            log.error("sheet_append_failed", row_count=len(events), error=str(e))
            result.errors.extend(f"Failed to create event {event.id}: {e}" for event in events)
            return

        updated_range = data.get("updates", {}).get("updatedRange", "")
        match = _UPDATED_RANGE_ROW.search(updated_range)
        if not match:
            # Rows were written; the next index build will pick them up by event id
            log.warning("sheet_append_range_unparsed", updated_range=updated_range)
            result.errors.extend(
                f"Created event {event.id} but could not determine its row" for event in events
            )
            return

        first_row = int(match.group(1))
        for offset, event in enumerate(events):
            row_number = first_row + offset
            self._index[event.id] = row_number
            result.locators[event.id] = row_number
        result.created += len(events)

    def _ensure_sheet(self) -> None:
        try:
            data = self._request(
                "GET",
                f"{self._api_base}/{self._spreadsheet_id}",
                params={"fields": "sheets.properties"},
            )
        except ProviderError as e:
            if e.status_code in (403, 404):
                raise DestinationPrerequisiteError(
                    f"Spreadsheet {self._spreadsheet_id} is not accessible: {e}"
                ) from e
            raise

        for sheet in data.get("sheets", []):
            properties = sheet.get("properties", {})
            if properties.get("title") == self._sheet_name:
                self._sheet_id = properties.get("sheetId")
                return

        log.info("creating_sheet", spreadsheet_id=self._spreadsheet_id, sheet_name=self._sheet_name)
        reply = self._request(
            "POST",
            f"{self._api_base}/{self._spreadsheet_id}:batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": self._sheet_name}}}]},
        )
        replies = reply.get("replies") or [{}]
        self._sheet_id = replies[0].get("addSheet", {}).get("properties", {}).get("sheetId")
        if self._sheet_id is None:
            raise DestinationPrerequisiteError(f"Could not create sheet '{self._sheet_name}'")

    def _ensure_header(self) -> None:
        header_range = self._a1(f"A1:{self._last_column}1")
        data = self._request("GET", self._values_url(header_range))
        if data.get("values"):
            return

        log.info("writing_sheet_header", sheet_name=self._sheet_name)
        self._request(
            "PUT",
            self._values_url(header_range),
            params={"valueInputOption": "RAW"},
            json={"values": [self.headers]},
        )

    def _shift_rows_above(self, deleted_row: int) -> None:
        for event_id, row_number in self._index.items():
            if row_number > deleted_row:
                self._index[event_id] = row_number - 1

    def _a1(self, cells: str) -> str:
        if _PLAIN_SHEET_NAME.match(self._sheet_name):
            return f"{self._sheet_name}!{cells}"
        escaped = self._sheet_name.replace("'", "''")
        return f"'{escaped}'!{cells}"

    def _values_url(self, a1_range: str) -> str:
        return f"{self._api_base}/{self._spreadsheet_id}/values/{quote(a1_range, safe='!:')}"
