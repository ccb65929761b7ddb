"""Exception hierarchy for calendar synchronization."""


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""

    pass


class ConfigurationError(CalendarSyncError):
    """Raised when configuration is invalid or missing."""

    pass


class ProviderError(CalendarSyncError):
    """Raised when a provider API returns an unexpected response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Raised for rate limits and server errors that are worth retrying."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class RateLimitExceededError(ProviderError):
    """Raised when a provider keeps rate limiting after all retries."""

    pass


class DestinationPrerequisiteError(CalendarSyncError):
    """Raised when the destination is missing structure that could not be created."""

    pass


class CredentialExpiredError(CalendarSyncError):
    """Raised when a refresh token is rejected and the account must be reconnected."""

    pass


class ConcurrentSyncError(CalendarSyncError):
    """Raised when a pass is already running for the same configuration."""

    pass


class SyncTokenExpiredError(ProviderError):
    """Raised when the provider rejects a sync token with HTTP 410 Gone."""

    pass
