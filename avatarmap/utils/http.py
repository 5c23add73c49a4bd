"""
HTTP utilities for the avatar pipeline.

Image downloads go through a shared httpx client. Only http(s) URLs are
accepted since image URLs come from third-party data files.
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urlsplit

import httpx
from loguru import logger

from avatarmap.config import settings


DEFAULT_HEADERS = {
    "User-Agent": "avatarmap/1.0 (avatar cache builder)",
    "Accept": "image/avif,image/webp,image/png,image/jpeg,image/*;q=0.8,*/*;q=0.5",
}

ALLOWED_SCHEMES = ("http", "https")


class HTTPError(Exception):
    """Custom HTTP error with status code."""

    def __init__(self, message: str, status_code: int = None, response: httpx.Response = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(HTTPError):
    """Raised when rate limited by the image host."""

    def __init__(self, message: str, retry_after: float | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class UnsafeURLError(ValueError):
    """Raised for image URLs that are not plain http(s) URLs."""
    pass


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a Retry-After header into seconds.

    Accepts delta-seconds ("120") and HTTP dates. Dates in the past give 0.
    Returns None for a missing or unparseable header.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def validate_image_url(url: str) -> str:
    """
    Check that an image URL is safe to fetch.

    Args:
        url: URL taken from a data source

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        UnsafeURLError: If the scheme is not http/https or the host is missing
    """
    url = (url or "").strip()
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise UnsafeURLError(f"Malformed image URL {url!r}: {e}") from e

    if parts.scheme.lower() not in ALLOWED_SCHEMES:
        raise UnsafeURLError(f"Refusing to fetch {url!r}: scheme must be http or https")
    if not parts.netloc:
        raise UnsafeURLError(f"Refusing to fetch {url!r}: missing host")
    return url


def create_client(
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create an httpx client configured for image downloads."""
    return httpx.Client(
        timeout=timeout or settings.pipeline.http_timeout,
        follow_redirects=True,
        headers=DEFAULT_HEADERS,
        transport=transport,
    )


def fetch_image(client: httpx.Client, url: str, timeout: float | None = None) -> bytes:
    """
    Download raw image bytes.

    Args:
        client: httpx client to use
        url: Image URL (validated before the request is sent)
        timeout: Optional per-request timeout in seconds

    Returns:
        Response body

    Raises:
        UnsafeURLError: For non-http(s) URLs
        HTTPError: For HTTP errors (4xx, 5xx) and empty bodies
        RateLimitError: When rate limited (429)
        httpx.HTTPError: On transport failures and timeouts
    """
    url = validate_image_url(url)

    logger.debug(f"Fetching {url}")

    if timeout is not None:
        response = client.get(url, timeout=timeout)
    else:
        response = client.get(url)

    if response.status_code == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        wait = f"{retry_after:g}s" if retry_after is not None else "unknown"
        raise RateLimitError(
            f"Rate limited by {url}. Retry after {wait}",
            retry_after=retry_after,
            status_code=429,
            response=response,
        )

    if response.status_code >= 400:
        raise HTTPError(
            f"HTTP {response.status_code} for {url}",
            status_code=response.status_code,
            response=response,
        )

    content = response.content
    if not content:
        raise HTTPError(f"Empty response body for {url}", status_code=response.status_code, response=response)

    logger.debug(f"Fetched {url} ({response.status_code}, {len(content)} bytes)")
    return content
