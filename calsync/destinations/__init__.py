"""Destination adapters for spreadsheets, tables and document databases."""

from calsync.destinations.airtable import AirtableAdapter
from calsync.destinations.base import DeleteResult, DestinationAdapter, PushResult
from calsync.destinations.google_sheets import GoogleSheetsAdapter
from calsync.destinations.notion import NotionAdapter

__all__ = [
    "AirtableAdapter",
    "DeleteResult",
    "DestinationAdapter",
    "GoogleSheetsAdapter",
    "NotionAdapter",
    "PushResult",
]
