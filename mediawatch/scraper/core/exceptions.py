"""
Exception hierarchy for the scraper service.

Only ``ConfigError`` and queue-broker unavailability are allowed to terminate
the process; everything else is recovered inside the component that raised it.
"""

from typing import List, Optional

from .types import ScrapeErrorType


class ScraperError(Exception):
    """Base exception for all scraper errors."""

    pass


class ConfigError(ScraperError):
    """Malformed settings or seed/source configuration. Fatal at startup."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or []
        super().__init__(message)


class ValidationError(ScraperError):
    """A liveness probe failed. Recovered locally by deactivating the source."""

    def __init__(self, source_id: str, url: str, reason: str):
        self.source_id = source_id
        self.url = url
        self.reason = reason
        super().__init__(f"Source {source_id} ({url}) failed validation: {reason}")


class CrawlError(ScraperError):
    """Base exception for per-job errors; always translated into a job failure."""

    def __init__(
        self,
        message: str,
        error_type: ScrapeErrorType = ScrapeErrorType.UNKNOWN,
        original_error: Optional[BaseException] = None,
    ):
        self.error_type = error_type
        self.original_error = original_error
        super().__init__(message)


class NavigationError(CrawlError):
    """The browser failed to load the target URL."""

    def __init__(
        self,
        url: str,
        reason: str,
        status_code: Optional[int] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Navigation to {url} failed: {reason}", ScrapeErrorType.NAVIGATION, original_error)


class ExtractionError(CrawlError):
    """Unsupported content type, or the extraction script failed."""

    def __init__(self, message: str, content_type: Optional[str] = None, original_error: Optional[BaseException] = None):
        self.content_type = content_type
        super().__init__(message, ScrapeErrorType.EXTRACTION, original_error)


class QueueError(ScraperError):
    """The queue broker rejected or could not serve an operation."""

    pass


class QueueUnavailableError(QueueError):
    """The broker stayed unreachable after retries. Fatal."""

    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException] = None):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Queue broker unavailable during {operation} after {attempts} attempts: {last_error}")
