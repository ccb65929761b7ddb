"""Google Calendar client wrapper for event listing."""

from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests
import structlog
from pydantic import BaseModel, Field
from requests.exceptions import ConnectionError, Timeout

from calsync.models.config import GoogleConfig
from calsync.models.event import Attendee, EventDateTime, EventStatus, Organizer, UpstreamEvent
from calsync.utils.errors import ProviderError, SyncTokenExpiredError, TransientProviderError
from calsync.utils.retry import exponential_backoff_retry, parse_retry_after

log = structlog.stdlib.get_logger()


class ListEventsResult(BaseModel):
    """Outcome of one exhaustively paginated events listing."""

    events: list[UpstreamEvent] = Field(default_factory=list)
    next_sync_token: str | None = Field(
        default=None, description="Token from the final page, if the provider sent one"
    )
    full_sync_required: bool = Field(
        default=False, description="True when the supplied sync token was rejected (HTTP 410)"
    )


class GoogleCalendarClient:
    """Thin wrapper around the Google Calendar v3 REST API."""

    def __init__(
        self,
        access_token: str,
        config: GoogleConfig | None = None,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ):
        """
        Initialize Google Calendar client.

        Args:
            access_token: OAuth bearer token for the calendar connection
            config: Google API settings (defaults used when None)
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (shared connection pool)
        """
        self._config = config or GoogleConfig()
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        )
        log.info("calendar_client_initialized", api_base=self._config.calendar_api_base)

    def list_calendars(self) -> list[dict[str, Any]]:
        """
        List calendars visible to the connected account.

        Returns:
            Raw calendar list entries (id, summary, primary)

        Raises:
            ProviderError: If the API call fails
        """
        data = self._get(f"{self._config.calendar_api_base}/users/me/calendarList", {})
        calendars = data.get("items", [])
        log.info("calendars_listed", calendar_count=len(calendars))
        return calendars

    def list_events(
        self,
        calendar_id: str,
        sync_token: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
    ) -> ListEventsResult:
        """
        List events, following page tokens until the listing is exhausted.

        With a sync token the pull is incremental and carries no time bounds or
        ordering, which the provider rejects in combination with a token.
        Without one, the pull is bounded by ``time_min``/``time_max`` and
        expands recurring events into single instances.

        Args:
            calendar_id: Provider calendar id
            sync_token: Token from the previous pass, if any
            time_min: Lower bound for a full pull
            time_max: Upper bound for a full pull

        Returns:
            ListEventsResult; ``full_sync_required`` is set instead of raising
            when the sync token has expired

        Raises:
            SyncTokenExpiredError: If a bounded pull is answered with HTTP 410
            ProviderError: If the API call fails
        """
        url = (
            f"{self._config.calendar_api_base}/calendars/"
            f"{quote(calendar_id, safe='')}/events"
        )
        base_params = self._build_params(sync_token, time_min, time_max)

        log.info(
            "listing_events",
            calendar_id=calendar_id,
            incremental=sync_token is not None,
        )

        events: list[UpstreamEvent] = []
        next_sync_token: str | None = None
        page_token: str | None = None
        page_count = 0

        while True:
            params = dict(base_params)
            if page_token:
                params["pageToken"] = page_token

            try:
                data = self._get(url, params)
            except SyncTokenExpiredError:
                if sync_token is None:
                    raise
                # Partial pages from the rejected token are discarded
                log.warning("sync_token_expired", calendar_id=calendar_id, pages_discarded=page_count)
                return ListEventsResult(full_sync_required=True)

            page_count += 1
            for item in data.get("items", []):
                try:
                    events.append(self._convert_to_event_model(item))
                except ValueError as e:
                    log.warning("failed_to_convert_event", event_id=item.get("id"), error=str(e))

            page_token = data.get("nextPageToken")
            if data.get("nextSyncToken"):
                next_sync_token = data["nextSyncToken"]
            if not page_token:
                break

        log.info(
            "events_listed",
            calendar_id=calendar_id,
            event_count=len(events),
            page_count=page_count,
            has_next_sync_token=next_sync_token is not None,
        )
        return ListEventsResult(events=events, next_sync_token=next_sync_token)

    def _build_params(
        self,
        sync_token: str | None,
        time_min: datetime | None,
        time_max: datetime | None,
    ) -> dict[str, str]:
        # Google rejects a sync token unless these match the pull that issued it
        params = {"maxResults": str(self._config.page_size), "singleEvents": "true"}
        if sync_token:
            params["syncToken"] = sync_token
            return params

        params["orderBy"] = "startTime"
        if time_min is not None:
            params["timeMin"] = time_min.isoformat()
        if time_max is not None:
            params["timeMax"] = time_max.isoformat()
        return params

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=60.0,
        exceptions=(TransientProviderError, ConnectionError, Timeout),
    )
    def _get(self, url: str, params: dict[str, str]) -> dict[str, Any]:
        """
        Issue one GET and map error statuses onto the exception hierarchy.

        Raises:
            SyncTokenExpiredError: On HTTP 410
            TransientProviderError: On HTTP 429 or 5xx (retried)
            ProviderError: On any other non-2xx status
        """
        response = self._session.get(url, params=params, timeout=self._timeout)

        if response.status_code == 410:
            raise SyncTokenExpiredError("Sync token is no longer valid", status_code=410)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"Calendar API returned {response.status_code}",
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        if not response.ok:
            log.error(
                "calendar_request_failed",
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(
                f"Failed to list events: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        return response.json()

    def _convert_to_event_model(self, item: dict[str, Any]) -> UpstreamEvent:
        """
        Convert a Calendar API event resource to the UpstreamEvent model.

        Args:
            item: Raw event resource

        Returns:
            UpstreamEvent instance

        Raises:
            ValueError: If required fields are missing or malformed
        """
        if not item.get("id"):
            raise ValueError("event resource has no id")

        organizer = item.get("organizer")
        status = item.get("status") or EventStatus.CONFIRMED.value
        if status not in {s.value for s in EventStatus}:
            status = EventStatus.CONFIRMED.value

        return UpstreamEvent(
            id=item["id"],
            title=item.get("summary") or "",
            description=item.get("description") or "",
            location=item.get("location") or "",
            start=self._convert_datetime(item.get("start")),
            end=self._convert_datetime(item.get("end")),
            attendees=[
                Attendee(
                    email=a.get("email"),
                    display_name=a.get("displayName"),
                    response_status=a.get("responseStatus"),
                    is_self=bool(a.get("self", False)),
                    is_organizer=bool(a.get("organizer", False)),
                )
                for a in item.get("attendees", [])
            ],
            organizer=(
                Organizer(
                    email=organizer.get("email"),
                    display_name=organizer.get("displayName"),
                    is_self=bool(organizer.get("self", False)),
                )
                if organizer
                else None
            ),
            status=status,
            recurring_event_id=item.get("recurringEventId"),
            created=item.get("created"),
            updated=item.get("updated"),
            html_link=item.get("htmlLink"),
        )

    @staticmethod
    def _convert_datetime(value: dict[str, Any] | None) -> EventDateTime:
        if not value:
            return EventDateTime()
        return EventDateTime(
            date_time=value.get("dateTime"),
            all_day_date=value.get("date"),
            time_zone=value.get("timeZone"),
        )
