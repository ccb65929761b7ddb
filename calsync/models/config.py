"""Configuration models for the calendar sync worker."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleConfig(BaseModel):
    """Configuration for Google Calendar and Google Sheets access."""

    client_id: str = Field(default="", description="OAuth client id used for token refresh")
    client_secret: str = Field(default="", description="OAuth client secret")
    token_url: str = Field(
        default="https://oauth2.googleapis.com/token",
        description="OAuth token endpoint",
    )
    calendar_api_base: str = Field(
        default="https://www.googleapis.com/calendar/v3",
        description="Google Calendar API base URL",
    )
    sheets_api_base: str = Field(
        default="https://sheets.googleapis.com/v4/spreadsheets",
        description="Google Sheets API base URL",
    )
    page_size: int = Field(default=250, ge=1, le=2500, description="Events per list page")


class AirtableConfig(BaseModel):
    """Configuration for Airtable access."""

    client_id: str = Field(default="", description="OAuth client id used for token refresh")
    client_secret: str = Field(default="", description="OAuth client secret")
    token_url: str = Field(
        default="https://airtable.com/oauth2/v1/token",
        description="OAuth token endpoint",
    )
    api_base: str = Field(default="https://api.airtable.com/v0", description="Web API base URL")
    batch_size: int = Field(default=10, ge=1, le=10, description="Records per write request")
    rate_limit_delay_seconds: float = Field(
        default=0.2, ge=0.0, description="Fixed delay between batches (5 req/s)"
    )
    max_rate_limit_retries: int = Field(
        default=3, ge=1, le=10, description="Attempts per request when rate limited"
    )


class NotionConfig(BaseModel):
    """Configuration for Notion access."""

    api_base: str = Field(default="https://api.notion.com/v1", description="API base URL")
    api_version: str = Field(default="2022-06-28", description="Notion-Version header")
    page_size: int = Field(default=100, ge=1, le=100, description="Pages per query request")


class SheetsConfig(BaseModel):
    """Configuration for spreadsheet destinations."""

    default_sheet_name: str = Field(default="Events", description="Sheet used when none is set")
    max_rows_per_request: int = Field(
        default=500, ge=1, le=10000, description="Rows per append/update request"
    )


class SyncSettings(BaseModel):
    """Configuration for the reconciliation engine and scheduler."""

    initial_window_past_days: int = Field(
        default=30, ge=0, description="Days before now covered by a full pull"
    )
    initial_window_future_days: int = Field(
        default=365, ge=1, description="Days after now covered by a full pull"
    )
    max_configs_per_run: int = Field(
        default=50, ge=1, le=1000, description="Configurations processed per scheduler tick"
    )
    request_timeout_seconds: float = Field(
        default=30.0, gt=0.0, description="Timeout applied to every provider request"
    )
    token_refresh_threshold_seconds: int = Field(
        default=300, ge=0, description="Refresh access tokens expiring within this window"
    )
    refresh_lease_seconds: int = Field(
        default=60, ge=1, description="Lifetime of a credential refresh claim"
    )


class StorageConfig(BaseModel):
    """Configuration for the sync state database."""

    database_path: str = Field(
        default="./data/calsync.db", description="SQLite database holding sync state"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        description="If True, output JSON logs. If False, use console format.",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional path to log file. If None, logs only to stdout.",
    )


class AppConfig(BaseSettings):
    """Main worker configuration.

    Values come from YAML (see ConfigLoader). Settings the YAML leaves out
    fall back to environment variables using the APP_ prefix, e.g.
    ``APP_SYNC__MAX_CONFIGS_PER_RUN=10``.
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    google: GoogleConfig = Field(default_factory=GoogleConfig)
    airtable: AirtableConfig = Field(default_factory=AirtableConfig)
    notion: NotionConfig = Field(default_factory=NotionConfig)
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
