"""Tests for the Notion destination adapter against a mocked Notion API."""

import json

import pytest
import responses

from calsync.destinations.formatting import DEFAULT_FIELD_NAMES, LOGICAL_FIELDS, build_event_row
from calsync.destinations.notion import (
    PROPERTY_TYPES,
    RICH_TEXT_LIMIT,
    NotionAdapter,
    property_value,
)
from calsync.models.sync_config import DestinationType
from calsync.utils.errors import DestinationPrerequisiteError
from conftest import make_configuration, make_event

DATABASE_URL = "https://api.notion.com/v1/databases/dest_1"
QUERY_URL = f"{DATABASE_URL}/query"
PAGES_URL = "https://api.notion.com/v1/pages"


def database_schema(title_name: str = "Name", skip: tuple[str, ...] = ()) -> dict:
    properties = {title_name: {"type": "title"}}
    for logical in LOGICAL_FIELDS:
        name = DEFAULT_FIELD_NAMES[logical]
        if logical == "title" or name in skip:
            continue
        properties[name] = {"type": PROPERTY_TYPES[logical]}
    return {"id": "dest_1", "properties": properties}


def page(page_id: str, event_id: str) -> dict:
    return {
        "id": page_id,
        "properties": {"Event ID": {"rich_text": [{"plain_text": event_id}]}},
    }


def new_adapter(**overrides) -> NotionAdapter:
    configuration = make_configuration(destination_type=DestinationType.NOTION, **overrides)
    return NotionAdapter("notion-token", configuration)


def body_of(call) -> dict:
    return json.loads(call.request.body)


class TestNotionIndex:
    @responses.activate
    def test_index_follows_cursors(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema())
        responses.add(
            responses.POST,
            QUERY_URL,
            json={"results": [page("p1", "a")], "has_more": True, "next_cursor": "c2"},
        )
        responses.add(
            responses.POST,
            QUERY_URL,
            json={"results": [page("p2", "b")], "has_more": False, "next_cursor": None},
        )

        index = new_adapter().build_index()

        assert index == {"a": "p1", "b": "p2"}
        first_query = body_of(responses.calls[1])
        assert first_query["filter"] == {"property": "Event ID", "rich_text": {"is_not_empty": True}}
        assert body_of(responses.calls[2])["start_cursor"] == "c2"
        assert responses.calls[0].request.headers["Notion-Version"] == "2022-06-28"

    @responses.activate
    def test_missing_properties_are_added(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema(skip=("Location",)))
        responses.add(responses.PATCH, DATABASE_URL, json={})
        responses.add(responses.POST, QUERY_URL, json={"results": [], "has_more": False})

        new_adapter().build_index()

        assert body_of(responses.calls[1]) == {"properties": {"Location": {"rich_text": {}}}}

    @responses.activate
    def test_event_id_property_that_cannot_be_added_is_fatal(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema(skip=("Event ID",)))
        responses.add(responses.PATCH, DATABASE_URL, json={"message": "no access"}, status=403)

        with pytest.raises(DestinationPrerequisiteError):
            new_adapter().build_index()

    @responses.activate
    def test_title_mapping_must_match_the_database(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema(title_name="Name"))

        with pytest.raises(DestinationPrerequisiteError):
            new_adapter(field_mapping={"title": "Event"}).build_index()

    @responses.activate
    def test_unshared_database_is_a_prerequisite_error(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json={"message": "not found"}, status=404)

        with pytest.raises(DestinationPrerequisiteError):
            new_adapter().build_index()


class TestNotionWrites:
    @responses.activate
    def test_push_updates_known_pages_and_creates_the_rest(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema())
        responses.add(responses.POST, QUERY_URL, json={"results": [page("p1", "a")], "has_more": False})
        responses.add(responses.PATCH, f"{PAGES_URL}/p1", json={"id": "p1"})
        responses.add(responses.POST, PAGES_URL, json={"id": "p2"})
        adapter = new_adapter()
        adapter.build_index()

        result = adapter.push([make_event("a", title="Renamed"), make_event("b")])

        assert (result.created, result.updated) == (1, 1)
        assert result.locators == {"a": "p1", "b": "p2"}
        update = body_of(responses.calls[2])
        assert update["properties"]["Name"]["title"][0]["text"]["content"] == "Renamed"
        create = body_of(responses.calls[3])
        assert create["parent"] == {"database_id": "dest_1"}
        assert create["properties"]["Event ID"]["rich_text"][0]["text"]["content"] == "b"

    @responses.activate
    def test_failed_write_is_reported_and_not_located(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema())
        responses.add(responses.POST, QUERY_URL, json={"results": [], "has_more": False})
        responses.add(responses.POST, PAGES_URL, json={"message": "validation"}, status=400)
        adapter = new_adapter()
        adapter.build_index()

        result = adapter.push([make_event("a")])

        assert result.created == 0
        assert result.locators == {}
        assert len(result.errors) == 1
        assert "event a" in result.errors[0]

    @responses.activate
    def test_delete_archives_pages(self) -> None:
        responses.add(responses.GET, DATABASE_URL, json=database_schema())
        responses.add(responses.POST, QUERY_URL, json={"results": [page("p1", "a")], "has_more": False})
        responses.add(responses.PATCH, f"{PAGES_URL}/p1", json={"id": "p1", "archived": True})
        adapter = new_adapter()
        adapter.build_index()

        result = adapter.delete_many(["a", "ghost"])

        assert result.deleted_ids == ["a"]
        assert result.missing_ids == ["ghost"]
        assert body_of(responses.calls[-1]) == {"archived": True}
        assert adapter.index == {}


class TestNotionProperties:
    def test_rich_text_is_truncated(self) -> None:
        value = property_value("rich_text", "x" * 3000)
        assert len(value["rich_text"][0]["text"]["content"]) == RICH_TEXT_LIMIT

    def test_empty_values(self) -> None:
        assert property_value("title", "") == {"title": [{"text": {"content": "Untitled Event"}}]}
        assert property_value("rich_text", "") == {"rich_text": []}
        assert property_value("date", "") == {"date": None}
        assert property_value("select", "") == {"select": None}

    def test_select_options_drop_commas_and_duplicates(self) -> None:
        value = property_value("multi_select", ["Doe, Jane", "Doe, Jane", "Ana"])
        assert value == {"multi_select": [{"name": "Doe  Jane"}, {"name": "Ana"}]}

    def test_unknown_type_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            property_value("relation", "x")

    def test_page_properties_are_typed(self) -> None:
        event = make_event("a", attendees=["ana@example.com"], description="d" * 2500)
        properties = new_adapter().page_properties(build_event_row(event, "Work"))

        assert properties["Start"] == {"date": {"start": event.start.display()}}
        assert properties["Duration (minutes)"] == {"number": 30}
        assert properties["Calendar"] == {"select": {"name": "Work"}}
        assert properties["Attendees"] == {"multi_select": [{"name": "ana@example.com"}]}
        assert len(properties["Description"]["rich_text"][0]["text"]["content"]) == RICH_TEXT_LIMIT
