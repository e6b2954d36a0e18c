"""Feed retrieval for calendar subscriptions - taskcal_lite.

Subscription sources are either http(s)/webcal URLs, fetched with httpx, or
local ICS files read off the event loop.
"""

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .exceptions import RefreshError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_FACTOR = 1.5

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

DEFAULT_HEADERS = {
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.8",
    "User-Agent": "taskcal-lite/0.1",
}


def normalize_source_url(source: str) -> str:
    """Rewrite ``webcal://`` / ``webcals://`` URLs to ``https://``."""
    text = source.strip()
    lower = text.lower()
    for scheme in ("webcals://", "webcal://"):
        if lower.startswith(scheme):
            return "https://" + text[len(scheme):]
    return text


def is_remote_source(source: str) -> bool:
    return urlparse(normalize_source_url(source)).scheme in ("http", "https")


class FeedFetcher:
    """Async fetcher for subscription feed text."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    ) -> None:
        """Initialize fetcher.

        Args:
            client: Optional shared HTTP client; a private one is created on demand otherwise
            timeout: Request timeout in seconds
            max_retries: Attempts for network errors and 5xx responses
            backoff_factor: Base of the exponential backoff between attempts
        """
        self.client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_factor = backoff_factor

    async def __aenter__(self) -> "FeedFetcher":
        self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            self._owns_client = True
            logger.debug("Created HTTP client for feed fetching")
        return self.client

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self.client is not None and self._owns_client and not self.client.is_closed:
            await self.client.aclose()
            logger.debug("Closed feed HTTP client")
        if self._owns_client:
            self.client = None

    async def fetch(self, source: str) -> str:
        """Return the feed text of ``source``.

        Args:
            source: http(s)/webcal URL, ``file://`` URL or local path

        Returns:
            Feed text

        Raises:
            RefreshError: On read failure, network failure or non-2xx status
        """
        url = normalize_source_url(source)
        parsed = urlparse(url)
        if parsed.scheme in ("http", "https"):
            return await self._fetch_url(url)
        if parsed.scheme == "file":
            return await self._read_file(Path(parsed.path))
        if parsed.scheme and len(parsed.scheme) > 1:
            raise RefreshError(f"Unsupported feed source scheme: {parsed.scheme}")
        return await self._read_file(Path(source))

    async def _read_file(self, path: Path) -> str:
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RefreshError(f"Failed to read feed file {path}: {e}") from e
        logger.debug("Read %d bytes from %s", len(text), path)
        return text

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with jitter for the given 0-indexed attempt."""
        base_backoff = min(self.backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def _fetch_url(self, url: str) -> str:
        client = self._ensure_client()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status < 500:
                    # Client errors are not retried
                    raise RefreshError(f"HTTP {status} fetching {url}", status_code=status) from e
                last_error = e
            except httpx.TransportError as e:
                last_error = e
            except httpx.HTTPError as e:
                # Redirect loops and undecodable bodies are not retried
                raise RefreshError(f"Failed to fetch {url}: {e}") from e
            else:
                logger.debug("Fetched %d bytes from %s", len(response.content), url)
                return response.text

            if attempt < self.max_retries - 1:
                backoff_time = self._calculate_backoff(attempt)
                logger.warning(
                    "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries,
                    backoff_time,
                    last_error,
                )
                await asyncio.sleep(backoff_time)

        status_code = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status_code = last_error.response.status_code
        raise RefreshError(
            f"Failed to fetch {url} after {self.max_retries} attempts: {last_error}",
            status_code=status_code,
        ) from last_error
