"""Notion destination: one database page per event, located by page id."""

from typing import Any

import structlog
from requests.exceptions import RequestException

from calsync.destinations.base import DeleteResult, DestinationAdapter, PushResult
from calsync.destinations.formatting import LOGICAL_FIELDS, EventRow
from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import DestinationType
from calsync.utils.errors import DestinationPrerequisiteError, ProviderError

log = structlog.stdlib.get_logger()

RICH_TEXT_LIMIT = 2000
UNTITLED = "Untitled Event"

# Notion property type for each logical field
PROPERTY_TYPES: dict[str, str] = {
    "title": "title",
    "start": "date",
    "end": "date",
    "duration": "number",
    "calendar": "select",
    "description": "rich_text",
    "location": "rich_text",
    "attendees": "multi_select",
    "status": "select",
    "event_id": "rich_text",
}


def _rich_text(value: str) -> list[dict[str, Any]]:
    return [{"text": {"content": value[:RICH_TEXT_LIMIT]}}] if value else []


def _option_name(value: str) -> str:
    # Select option names may not contain commas
    return value.replace(",", " ").strip()[:100]


def property_value(property_type: str, value: Any) -> dict[str, Any]:
    """
    Build a typed Notion property value.

    Args:
        property_type: Notion property type
        value: Plain value from the event row

    Returns:
        Property value payload
    """
    if property_type == "title":
        return {"title": _rich_text(value or UNTITLED)}
    if property_type == "rich_text":
        return {"rich_text": _rich_text(value or "")}
    if property_type == "date":
        return {"date": {"start": value} if value else None}
    if property_type == "number":
        return {"number": value}
    if property_type == "checkbox":
        return {"checkbox": bool(value)}
    if property_type == "select":
        name = _option_name(value or "")
        return {"select": {"name": name} if name else None}
    if property_type == "multi_select":
        names = [_option_name(v) for v in value or []]
        return {"multi_select": [{"name": n} for n in dict.fromkeys(names) if n]}
    raise ValueError(f"Unsupported Notion property type: {property_type}")


class NotionAdapter(DestinationAdapter):
    """
    Writes events as pages of a Notion database.

    Deleting a page archives it; Notion has no hard delete through the API.
    """

    destination_type = DestinationType.NOTION

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._api_base = self._settings.notion.api_base
        self._page_size = self._settings.notion.page_size
        self._database_id = self._configuration.destination_id

    def extra_headers(self) -> dict[str, str]:
        return {"Notion-Version": self._settings.notion.api_version}

    def build_index(self) -> dict[str, str]:
        self._ensure_schema()

        event_id_property = self._field_names["event_id"]
        self._index = {}
        cursor: str | None = None
        while True:
            body: dict[str, Any] = {
                "filter": {"property": event_id_property, "rich_text": {"is_not_empty": True}},
                "page_size": self._page_size,
            }
            if cursor:
                body["start_cursor"] = cursor
            data = self._request(
                "POST", f"{self._api_base}/databases/{self._database_id}/query", json=body
            )

            for page in data.get("results", []):
                event_id = self._plain_text(page.get("properties", {}).get(event_id_property))
                if event_id:
                    self._index[event_id] = page["id"]

            cursor = data.get("next_cursor") if data.get("has_more") else None
            if not cursor:
                break

        log.info("notion_index_built", database_id=self._database_id, indexed_pages=len(self._index))
        return self.index

    def push(self, events: list[UpstreamEvent]) -> PushResult:
        result = PushResult()

        for event in events:
            properties = self.page_properties(self._row_for(event))
            page_id = self._index.get(event.id)
            try:
                if page_id:
                    self._request(
                        "PATCH", f"{self._api_base}/pages/{page_id}", json={"properties": properties}
                    )
                    result.updated += 1
                else:
                    page = self._request(
                        "POST",
                        f"{self._api_base}/pages",
                        json={"parent": {"database_id": self._database_id}, "properties": properties},
                    )
                    page_id = page["id"]
                    self._index[event.id] = page_id
                    result.created += 1
            except (ProviderError, RequestException) as e:
                action = "update" if event.id in self._index else "create"
                log.error("notion_write_failed", event_id=event.id, action=action, error=str(e))
                result.errors.append(f"Failed to {action} event {event.id}: {e}")
                continue
            result.locators[event.id] = page_id

        log.info(
            "notion_push_completed",
            database_id=self._database_id,
            created=result.created,
            updated=result.updated,
            error_count=len(result.errors),
        )
        return result

    def delete_many(self, event_ids: list[str]) -> DeleteResult:
        known, missing = self._split_known(event_ids)
        result = DeleteResult(missing_ids=missing)

        for event_id in known:
            page_id = self._index[event_id]
            try:
                self._request("PATCH", f"{self._api_base}/pages/{page_id}", json={"archived": True})
            except (ProviderError, RequestException) as e:
                log.error("notion_archive_failed", event_id=event_id, page_id=page_id, error=str(e))
                result.errors.append(f"Failed to delete event {event_id}: {e}")
                continue
            del self._index[event_id]
            result.deleted_ids.append(event_id)

        log.info(
            "notion_pages_archived",
            database_id=self._database_id,
            deleted=result.count,
            missing=len(result.missing_ids),
        )
        return result

    def page_properties(self, row: EventRow) -> dict[str, Any]:
        """Typed property values for a row."""
        return {
            self._field_names[logical]: property_value(PROPERTY_TYPES[logical], row.value_of(logical))
            for logical in LOGICAL_FIELDS
        }

    def _ensure_schema(self) -> None:
        """
        Make sure the database has every property the row format writes.

        A database always has exactly one title property. Without an explicit
        mapping its existing name is adopted; a mapping that names anything
        else as the title cannot be satisfied.

        Raises:
            DestinationPrerequisiteError: If the title mapping does not match
                or the Event ID property is missing and cannot be added
        """
        try:
            database = self._request("GET", f"{self._api_base}/databases/{self._database_id}")
        except ProviderError as e:
            if e.status_code in (403, 404):
                raise DestinationPrerequisiteError(
                    f"Notion database {self._database_id} is not accessible: {e}"
                ) from e
            raise

        properties: dict[str, Any] = database.get("properties", {})
        title_name = next((n for n, p in properties.items() if p.get("type") == "title"), None)
        mapped_title = (self._configuration.field_mapping or {}).get("title")

        if mapped_title and mapped_title != title_name:
            raise DestinationPrerequisiteError(
                f"Notion title property '{mapped_title}' not found in database {self._database_id}"
            )
        if title_name:
            self._field_names["title"] = title_name

        missing = {
            self._field_names[logical]: {PROPERTY_TYPES[logical]: {}}
            for logical in LOGICAL_FIELDS
            if logical != "title" and self._field_names[logical] not in properties
        }
        if not missing:
            return

        log.info("adding_notion_properties", database_id=self._database_id, properties=sorted(missing))
        try:
            self._request(
                "PATCH",
                f"{self._api_base}/databases/{self._database_id}",
                json={"properties": missing},
            )
        except (ProviderError, RequestException) as e:
            if self._field_names["event_id"] in missing:
                raise DestinationPrerequisiteError(
                    f"Notion database {self._database_id} has no Event ID property and it could not be added: {e}"
                ) from e
            log.warning("notion_property_creation_failed", error=str(e))

    @staticmethod
    def _plain_text(prop: dict[str, Any] | None) -> str:
        if not prop:
            return ""
        parts = prop.get("rich_text") or prop.get("title") or []
        return "".join(p.get("plain_text") or p.get("text", {}).get("content", "") for p in parts).strip()
