"""Upstream calendar access and connection credentials"""

from calsync.ingestion.calendar_client import GoogleCalendarClient, ListEventsResult
from calsync.ingestion.credentials import (
    CredentialProvider,
    OAuthCredentialProvider,
    StaticCredentialProvider,
)

__all__ = [
    "CredentialProvider",
    "GoogleCalendarClient",
    "ListEventsResult",
    "OAuthCredentialProvider",
    "StaticCredentialProvider",
]
