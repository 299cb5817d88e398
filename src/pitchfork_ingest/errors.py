# pitchfork_ingest/errors.py

"""Exception hierarchy for the ingestion pipeline.

    PitchforkIngestError
    +-- FetchError              (non-retryable HTTP failure)
    |   +-- NetworkError        (connection reset, timeout)
    |   +-- ServerError         (HTTP 5xx)
    |   +-- RateLimitError      (HTTP 429)
    +-- ParseError              (page layout not recognised)
    +-- CatalogError            (catalog auth or response problem)
    +-- StorageError            (storage rejected a write)
    |   +-- UniqueConstraintError   (duplicate join row in storage)
    +-- ConfigurationError

NetworkError, ServerError and RateLimitError are retried by
``pitchfork_ingest.scraper.retry``; everything else surfaces to the caller.
"""

from __future__ import annotations


class PitchforkIngestError(Exception):
    """Base exception for all pitchfork_ingest errors."""


class ConfigurationError(PitchforkIngestError):
    pass


class FetchError(PitchforkIngestError):
    """An HTTP request failed and retrying will not help."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NetworkError(FetchError):
    """Connection reset, timeout or any other transport failure."""


class ServerError(FetchError):
    def __init__(self, message: str, *, url: str | None = None, status_code: int) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class RateLimitError(FetchError):
    """HTTP 429. ``retry_after_seconds`` is None when no hint was sent."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.retry_after_seconds = retry_after_seconds


class ParseError(PitchforkIngestError):
    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class CatalogError(PitchforkIngestError):
    pass


class StorageError(PitchforkIngestError):
    pass


class UniqueConstraintError(StorageError):
    """A join row between a review and a named entity already exists."""

    def __init__(
        self,
        message: str,
        *,
        review_id: int | None = None,
        entity_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.review_id = review_id
        self.entity_id = entity_id


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds. HTTP dates are ignored."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return max(seconds, 0.0)
