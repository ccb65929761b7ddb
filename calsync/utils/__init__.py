"""Shared utilities for configuration, logging, and error handling"""

from calsync.utils.errors import CalendarSyncError
from calsync.utils.retry import exponential_backoff_retry

__all__ = ["CalendarSyncError", "exponential_backoff_retry"]
