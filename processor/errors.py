"""Exceptions raised while ingesting a Canvas calendar feed.

Every exception carries a ``user_message`` that is safe to show to the user
(it never contains the feed URL) and a ``context`` dict for logging.
"""
from typing import Optional


class CanvasSyncError(Exception):
    """Base exception for Canvas calendar ingestion."""

    user_message = 'Canvas sync failed. Please try again.'

    def __init__(self, message: Optional[str] = None, **context):
        super().__init__(message or self.user_message)
        self.context = context


class InvalidUrl(CanvasSyncError):
    """Feed URL failed validation before any request was made."""

    user_message = 'Invalid Canvas calendar URL. Please check the URL and try again.'


class FeedFetchError(CanvasSyncError):
    """Base exception for feed fetch failures."""

    user_message = 'Unable to download your Canvas calendar. Please try again later.'


class NetworkError(FeedFetchError):
    """Transport failure, timeout or HTTP error status."""

    user_message = 'Network error while contacting Canvas. Please check your connection and try again.'

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
        **context
    ):
        super().__init__(message, **context)
        self.status_code = status_code
        self.retryable = retryable


class RateLimited(FeedFetchError):
    """HTTP 429 from Canvas or a proxy."""

    user_message = 'Canvas is receiving too many requests right now. Please wait a few minutes and try again.'

    def __init__(self, message: Optional[str] = None, retry_after: Optional[str] = None, **context):
        super().__init__(message, **context)
        self.retry_after = retry_after


class AccessDenied(FeedFetchError):
    """HTTP 401/403, or no route to the feed succeeded."""

    user_message = 'Unable to access Canvas calendar. Please check your URL and permissions.'

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None, **context):
        super().__init__(message, **context)
        self.status_code = status_code


class EmptyResponse(FeedFetchError):
    """A request succeeded but returned no content."""

    user_message = 'Canvas returned an empty calendar response. Please try again later.'


class MalformedData(CanvasSyncError):
    """Response is not ICS calendar data."""

    user_message = 'The Canvas feed did not return valid calendar data. Please check that the URL is your calendar feed.'


class ParseError(CanvasSyncError):
    """ICS data could not be tokenized."""

    user_message = 'Error parsing Canvas calendar data. Please try again or contact support.'
