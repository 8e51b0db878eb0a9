"""Canvas calendar feed fetcher with proxy fallback."""
import base64
import binascii
import logging
import time
from typing import Optional, Sequence

import requests
from bs4 import BeautifulSoup

from fetcher.proxies import DEFAULT_PROXY_ADAPTERS, DirectAdapter, ProxyAdapter
from fetcher.url_security import clean_error_message, mask_sensitive_url
from processor.errors import (
    AccessDenied,
    EmptyResponse,
    FeedFetchError,
    MalformedData,
    NetworkError,
    RateLimited
)

logger = logging.getLogger(__name__)

BASE64_CALENDAR_PREFIX = 'data:text/calendar'


class FeedFetcher:
    """Fetches Canvas ICS feeds through an ordered chain of CORS proxies.

    Adapters are tried one at a time. Each gets up to ``PROXY_MAX_RETRIES``
    extra attempts for retryable failures (5xx, timeouts, connection errors).
    When every adapter fails, the feed is requested directly as a last resort.
    """

    PROXY_MAX_RETRIES = 2
    PROXY_BACKOFF_BASE = 1  # seconds
    DIRECT_MAX_RETRIES = 2
    DIRECT_BACKOFF_BASE = 2  # seconds

    def __init__(
        self,
        adapters: Sequence[ProxyAdapter] = DEFAULT_PROXY_ADAPTERS,
        proxy_timeout: int = 15,
        direct_timeout: int = 10
    ):
        """
        Initialize the feed fetcher.

        Args:
            adapters: Proxy adapters in the order they are tried
            proxy_timeout: Per-request timeout for proxied requests in seconds
            direct_timeout: Per-request timeout for the direct fallback in seconds
        """
        self.adapters = tuple(adapters)
        self.proxy_timeout = proxy_timeout
        self.direct_timeout = direct_timeout
        self.direct_adapter = DirectAdapter()
        self.last_source: Optional[str] = None

    def fetch(self, url: str) -> str:
        """
        Fetch the raw ICS text of a Canvas feed.

        Args:
            url: Canvas ICS feed URL

        Returns:
            ICS text, base64 ``data:`` wrapping already removed

        Raises:
            RateLimited: If the last route tried answered HTTP 429
            AccessDenied: If no proxy and no direct request produced content
            MalformedData: If a base64 wrapped body cannot be decoded
        """
        masked_url = mask_sensitive_url(url)
        last_error: Optional[FeedFetchError] = None
        self.last_source = None

        for adapter in self.adapters:
            logger.info(f"Trying {adapter.name} proxy for {masked_url}")
            try:
                body = self._fetch_with_retry(
                    adapter, url, self.proxy_timeout,
                    self.PROXY_MAX_RETRIES, self.PROXY_BACKOFF_BASE
                )
            except FeedFetchError as e:
                logger.warning(f"{adapter.name} failed: {clean_error_message(str(e), url)}")
                last_error = e
                continue

            self.last_source = adapter.name
            logger.info(f"Retrieved calendar via {adapter.name} ({len(body)} chars)")
            return self.decode_calendar_payload(body)

        logger.info("All proxy services failed, trying direct fetch")
        try:
            body = self._fetch_with_retry(
                self.direct_adapter, url, self.direct_timeout,
                self.DIRECT_MAX_RETRIES, self.DIRECT_BACKOFF_BASE
            )
        except FeedFetchError as e:
            logger.warning(f"Direct fetch failed: {clean_error_message(str(e), url)}")
            last_error = e
        else:
            self.last_source = self.direct_adapter.name
            logger.info(f"Retrieved calendar via direct fetch ({len(body)} chars)")
            return self.decode_calendar_payload(body)

        if isinstance(last_error, RateLimited):
            raise last_error

        last_message = clean_error_message(str(last_error), url) if last_error else 'no content received'
        raise AccessDenied(
            f"All proxy services and direct fetch failed: {last_message}",
            status_code=getattr(last_error, 'status_code', None),
            last_error=last_message
        ) from last_error

    def _fetch_with_retry(
        self,
        adapter: ProxyAdapter,
        url: str,
        timeout: int,
        max_retries: int,
        backoff_base: float
    ) -> str:
        """
        Request the feed through one adapter, retrying retryable failures.

        Args:
            adapter: Route to use
            url: Canvas feed URL
            timeout: Request timeout in seconds
            max_retries: Extra attempts after the first
            backoff_base: First backoff delay in seconds, doubled per retry

        Returns:
            Non-blank response body

        Raises:
            FeedFetchError: From the last attempt
        """
        request_url = adapter.build_url(url)
        attempts = max_retries + 1

        for attempt in range(attempts):
            try:
                return self._attempt(adapter, request_url, timeout)
            except NetworkError as e:
                if not e.retryable or attempt == attempts - 1:
                    raise
                delay = backoff_base * (2 ** attempt)
                logger.warning(
                    f"{adapter.name} request failed (attempt {attempt + 1}/{attempts}): "
                    f"{clean_error_message(str(e), url)}. Retrying in {delay} seconds..."
                )
                time.sleep(delay)

        # range(attempts) always returns or raises above
        raise NetworkError(f"{adapter.name} made no attempts", retryable=False)

    def _attempt(self, adapter: ProxyAdapter, request_url: str, timeout: int) -> str:
        try:
            response = requests.get(request_url, headers=adapter.headers, timeout=timeout)
        except requests.Timeout as e:
            raise NetworkError(f"{adapter.name} request timed out after {timeout}s", service=adapter.name) from e
        except requests.RequestException as e:
            raise NetworkError(
                f"{adapter.name} request failed: {mask_sensitive_url(str(e))}",
                service=adapter.name
            ) from e

        status = response.status_code
        logger.debug(f"{adapter.name} response status: {status}")

        if status == 429:
            raise RateLimited(
                f"{adapter.name} rate limited the request",
                retry_after=response.headers.get('Retry-After', 'unknown'),
                service=adapter.name
            )
        if status in (401, 403):
            raise AccessDenied(f"{adapter.name} denied access: HTTP {status}", status_code=status, service=adapter.name)
        if status >= 500:
            raise NetworkError(f"{adapter.name} server error: HTTP {status}", status_code=status, service=adapter.name)
        if status >= 400:
            raise NetworkError(
                f"{adapter.name} request failed: HTTP {status}",
                status_code=status,
                retryable=False,
                service=adapter.name
            )

        body = adapter.extract_body(response)
        if not body or not body.strip():
            raise EmptyResponse(f"Empty response from {adapter.name}", service=adapter.name)
        return body

    @staticmethod
    def decode_calendar_payload(body: str) -> str:
        """
        Unwrap a ``data:text/calendar;...;base64,`` body if present.

        Args:
            body: Response body

        Returns:
            Plain ICS text

        Raises:
            MalformedData: If the base64 payload is missing or invalid
        """
        stripped = body.lstrip()
        if not (stripped.startswith(BASE64_CALENDAR_PREFIX) and 'base64,' in stripped):
            return body

        logger.info("Detected base64-encoded ICS data, decoding")
        payload = ''.join(stripped.split('base64,', 1)[1].split())
        if not payload:
            raise MalformedData('Invalid base64 format in Canvas response')

        try:
            return base64.b64decode(payload, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise MalformedData(f"Failed to decode base64 ICS data: {e}") from e


def describe_non_calendar_body(text: str) -> Optional[str]:
    """
    Name the HTML page returned in place of a calendar, if it is one.

    Canvas answers expired feed tokens with its login page, and proxies
    answer failures with their own error pages.

    Args:
        text: Response body that is not ICS data

    Returns:
        Page title or first heading, or None for non-HTML bodies
    """
    lowered = text[:2000].lower()
    if '<html' not in lowered and '<!doctype html' not in lowered and '<title' not in lowered:
        return None

    soup = BeautifulSoup(text, 'html.parser')
    if soup.title:
        title = soup.title.get_text(strip=True)
        if title:
            return title

    heading = soup.find(['h1', 'h2'])
    if heading:
        return heading.get_text(strip=True) or None
    return None
