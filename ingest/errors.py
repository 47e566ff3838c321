"""Exceptions raised by the ingestion pipeline."""

from typing import Optional


class FetchError(Exception):
    """A single HTTP attempt failed (status, timeout, connection)."""


class ParseError(Exception):
    """A parsing strategy failed, or both strategies did."""

    def __init__(self, message: str, primary_error: Optional[str] = None,
                 fallback_error: Optional[str] = None):
        super().__init__(message)
        self.primary_error = primary_error
        self.fallback_error = fallback_error


class FeedFetchError(Exception):
    """Fetching one feed failed. The feed's error state was already recorded."""

    def __init__(self, feed_id: int, message: str):
        super().__init__(message)
        self.feed_id = feed_id


class FeedNotFoundError(LookupError):
    pass


class DuplicateFeedError(Exception):
    pass


class FeedValidationError(Exception):
    pass
