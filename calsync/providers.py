"""Centralized provider module for destination adapters and upstream clients.

Destinations are resolved from a registry keyed by destination type, so a new
destination only needs an adapter class and one registry entry.

Default implementations:
- google_sheets: GoogleSheetsAdapter
- airtable: AirtableAdapter
- notion: NotionAdapter
- upstream calendar: GoogleCalendarClient
- credentials: OAuthCredentialProvider (Google, Airtable), StaticCredentialProvider (Notion)
"""

import requests
import structlog

from calsync.destinations.airtable import AirtableAdapter
from calsync.destinations.base import DestinationAdapter
from calsync.destinations.google_sheets import GoogleSheetsAdapter
from calsync.destinations.notion import NotionAdapter
from calsync.ingestion.calendar_client import GoogleCalendarClient
from calsync.ingestion.credentials import (
    CredentialProvider,
    OAuthCredentialProvider,
    StaticCredentialProvider,
)
from calsync.models.config import AppConfig
from calsync.models.sync_config import CredentialKind, DestinationType, SyncConfiguration
from calsync.storage.stores import CredentialStore
from calsync.utils.errors import ConfigurationError

log = structlog.stdlib.get_logger()

DESTINATION_ADAPTERS: dict[DestinationType, type[DestinationAdapter]] = {
    DestinationType.GOOGLE_SHEETS: GoogleSheetsAdapter,
    DestinationType.AIRTABLE: AirtableAdapter,
    DestinationType.NOTION: NotionAdapter,
}


def get_destination_adapter(
    configuration: SyncConfiguration,
    access_token: str,
    settings: AppConfig,
    session: requests.Session | None = None,
) -> DestinationAdapter:
    """Get the adapter for a configuration's destination.

    Args:
        configuration: Sync configuration naming the destination
        access_token: Bearer token for the destination connection
        settings: Application settings
        session: Optional pre-built session

    Returns:
        DestinationAdapter instance

    Raises:
        ConfigurationError: If the destination type has no adapter or the
            configuration lacks a required destination reference
    """
    adapter_class = DESTINATION_ADAPTERS.get(configuration.destination_type)
    if adapter_class is None:
        error_msg = f"No adapter registered for destination type '{configuration.destination_type}'"
        log.error("get_destination_adapter_failed", error=error_msg)
        raise ConfigurationError(error_msg)

    if not configuration.destination_id.strip():
        error_msg = "destination_id cannot be empty"
        log.error("get_destination_adapter_failed", sync_config_id=configuration.id, error=error_msg)
        raise ConfigurationError(error_msg)

    if configuration.destination_type == DestinationType.AIRTABLE and not configuration.destination_table:
        error_msg = "Airtable destinations require destination_table"
        log.error("get_destination_adapter_failed", sync_config_id=configuration.id, error=error_msg)
        raise ConfigurationError(error_msg)

    log.info(
        "destination_adapter_resolved",
        sync_config_id=configuration.id,
        destination_type=configuration.destination_type.value,
        adapter=adapter_class.__name__,
    )
    return adapter_class(access_token, configuration, settings, session=session)


def get_calendar_client(
    access_token: str,
    settings: AppConfig,
    session: requests.Session | None = None,
) -> GoogleCalendarClient:
    """Get the upstream calendar client.

    Args:
        access_token: Bearer token for the calendar connection
        settings: Application settings
        session: Optional pre-built session

    Returns:
        GoogleCalendarClient instance
    """
    return GoogleCalendarClient(
        access_token,
        config=settings.google,
        timeout=settings.sync.request_timeout_seconds,
        session=session,
    )


def get_credential_provider(
    store: CredentialStore,
    credential_id: str,
    settings: AppConfig,
    session: requests.Session | None = None,
) -> CredentialProvider:
    """Get the token provider for a stored connection.

    Google and Airtable tokens refresh through their OAuth endpoints; Notion
    integration tokens do not expire.

    Args:
        store: Credential persistence
        credential_id: Connection id
        settings: Application settings
        session: Optional pre-built session

    Returns:
        CredentialProvider instance

    Raises:
        ConfigurationError: If the credential does not exist
    """
    credential = store.get(credential_id)
    if credential is None:
        error_msg = f"Credential {credential_id} not found"
        log.error("get_credential_provider_failed", error=error_msg)
        raise ConfigurationError(error_msg)

    if credential.provider == CredentialKind.NOTION:
        return StaticCredentialProvider(store, credential_id)

    if credential.provider == CredentialKind.AIRTABLE:
        oauth = settings.airtable
        basic_auth = True
    else:
        oauth = settings.google
        basic_auth = False

    return OAuthCredentialProvider(
        store,
        credential_id,
        token_url=oauth.token_url,
        client_id=oauth.client_id,
        client_secret=oauth.client_secret,
        settings=settings.sync,
        basic_auth=basic_auth,
        session=session,
    )
