"""Destination adapter interface and shared HTTP plumbing."""

from abc import ABC, abstractmethod
from typing import Any, ClassVar

import requests
import structlog
from pydantic import BaseModel, Field
from requests.exceptions import ConnectionError, Timeout

from calsync.destinations.formatting import EventRow, build_event_row, resolve_field_names
from calsync.models.config import AppConfig
from calsync.models.event import UpstreamEvent
from calsync.models.sync_config import DestinationType, SyncConfiguration
from calsync.utils.errors import ProviderError, TransientProviderError
from calsync.utils.retry import exponential_backoff_retry, parse_retry_after

log = structlog.stdlib.get_logger()

Locator = int | str


class PushResult(BaseModel):
    """Outcome of writing creates and updates to a destination."""

    created: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)
    locators: dict[str, Locator] = Field(
        default_factory=dict,
        description="Upstream id -> locator for every event written successfully",
    )


class DeleteResult(BaseModel):
    """Outcome of removing records from a destination."""

    deleted_ids: list[str] = Field(default_factory=list)
    missing_ids: list[str] = Field(
        default_factory=list, description="Ids with no destination record (already gone)"
    )
    errors: list[str] = Field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of destination records removed."""
        return len(self.deleted_ids)


class DestinationAdapter(ABC):
    """
    Writes events to one destination store.

    ``build_index`` must run once per pass before ``push`` or ``delete_many``.
    Adapters keep the index current as they write, so a later call in the
    same pass sees earlier creates and deletes.
    """

    destination_type: ClassVar[DestinationType]

    def __init__(
        self,
        access_token: str,
        configuration: SyncConfiguration,
        settings: AppConfig | None = None,
        session: requests.Session | None = None,
    ):
        """
        Initialize destination adapter.

        Args:
            access_token: OAuth bearer token for the destination connection
            configuration: Sync configuration being served
            settings: Application settings (defaults used when None)
            session: Optional pre-built session
        """
        self._configuration = configuration
        self._settings = settings or AppConfig()
        self._timeout = self._settings.sync.request_timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                **self.extra_headers(),
            }
        )
        self._field_names = resolve_field_names(configuration.field_mapping)
        self._index: dict[str, Locator] = {}

    def extra_headers(self) -> dict[str, str]:
        """Provider-specific headers added to every request."""
        return {}

    @property
    def index(self) -> dict[str, Locator]:
        """Upstream id -> locator as of the last index build and writes since."""
        return dict(self._index)

    @abstractmethod
    def build_index(self) -> dict[str, Locator]:
        """
        Ensure the destination schema, then index existing records by event id.

        Returns:
            Upstream id -> locator

        Raises:
            DestinationPrerequisiteError: If required structure is missing and
                cannot be created
            ProviderError: If the destination cannot be read
        """

    @abstractmethod
    def push(self, events: list[UpstreamEvent]) -> PushResult:
        """
        Update indexed events in place and create the rest.

        Per-event failures are collected, never raised.

        Args:
            events: Events to write

        Returns:
            PushResult with a locator for every event written
        """

    @abstractmethod
    def delete_many(self, event_ids: list[str]) -> DeleteResult:
        """
        Remove the destination records of the given upstream ids.

        Ids missing from the index are reported as missing, not as errors.

        Args:
            event_ids: Upstream ids to remove

        Returns:
            DeleteResult
        """

    def _row_for(self, event: UpstreamEvent) -> EventRow:
        return build_event_row(event, self._configuration.calendar_name)

    def _split_known(self, event_ids: list[str]) -> tuple[list[str], list[str]]:
        known = [event_id for event_id in event_ids if event_id in self._index]
        missing = [event_id for event_id in event_ids if event_id not in self._index]
        return known, missing

    @exponential_backoff_retry(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        exceptions=(TransientProviderError, ConnectionError, Timeout),
    )
    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """
        Send one request and decode the JSON reply.

        Raises:
            TransientProviderError: On HTTP 429 or 5xx (retried)
            ProviderError: On any other non-2xx status
        """
        response = self._session.request(method, url, timeout=self._timeout, **kwargs)

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientProviderError(
                f"{self.destination_type.value} returned {response.status_code}",
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )

        if not response.ok:
            log.warning(
                "destination_request_failed",
                destination_type=self.destination_type.value,
                method=method,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(
                f"{method} {url} failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        return response.json()
