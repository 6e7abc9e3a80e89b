"""
Conditional Feed Fetcher
========================

One feed download with manual redirect following, conditional-cache
headers, a wall-clock timeout and a single retry.

Outcomes of a fetch:

* ``FetchResult`` with a payload - fresh content, validators captured
* ``FetchResult`` with ``not_modified`` set - the server answered 304, the
  caller must reuse the previous record unchanged
* a ``FeedError`` subclass - the attempt failed
"""

import asyncio
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional
from urllib.parse import urljoin

import aiohttp
import certifi

from ..config.settings import FetchSettings, get_settings
from ..models import CacheValidator
from ..recovery.retry_logic import RetryConfig, RetryManager
from ..utils.exceptions import (
    BadStatusError,
    FeedError,
    FeedNetworkError,
    FeedTimeoutError,
    TooManyRedirectsError,
)
from ..utils.logging import get_logger_for_component


@dataclass
class FetchResult:
    """Outcome of one successful fetch attempt."""

    url: str
    final_url: str
    content: Optional[bytes] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    not_modified: bool = False
    redirects: int = 0

    @property
    def unchanged(self) -> bool:
        """True when the server confirmed the cached copy is current (304)."""
        return self.not_modified

    @property
    def payload(self) -> Optional[str]:
        if self.content is None:
            return None
        return self.content.decode("utf-8", errors="replace")


class CacheValidators:
    """ETag / Last-Modified values keyed by the exact URL they came from."""

    def __init__(self, initial: Optional[Dict[str, CacheValidator]] = None):
        self._entries: Dict[str, CacheValidator] = dict(initial or {})

    def get(self, url: str) -> Optional[CacheValidator]:
        return self._entries.get(url)

    def conditional_headers(self, url: str) -> Dict[str, str]:
        """Headers for a conditional request to ``url``, if validators exist."""
        headers = {}
        entry = self._entries.get(url)
        if entry is None:
            return headers
        if entry.etag:
            headers["If-None-Match"] = entry.etag
        if entry.last_modified:
            headers["If-Modified-Since"] = entry.last_modified
        return headers

    def capture(self, url: str, etag: Optional[str], last_modified: Optional[str]) -> None:
        """Store fresh validators; a response without any leaves the old ones."""
        if etag or last_modified:
            self._entries[url] = CacheValidator(etag=etag, last_modified=last_modified)

    def as_dict(self) -> Dict[str, CacheValidator]:
        return dict(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ConditionalFetcher:
    """Fetches feeds with redirects, conditional requests, timeout and retry."""

    def __init__(
        self,
        settings: Optional[FetchSettings] = None,
        session: Optional[aiohttp.ClientSession] = None,
        retry_manager: Optional[RetryManager] = None,
    ):
        """Initialize fetcher.

        Args:
            settings: Fetch settings (default from config)
            session: Shared aiohttp session; ``open_session`` creates one otherwise
            retry_manager: Retry manager (default: fixed-delay, from settings)
        """
        self.settings = settings or get_settings().fetch
        self.session = session
        self.logger = get_logger_for_component("fetcher")
        self.retry_config = RetryConfig(
            max_attempts=self.settings.max_attempts,
            base_delay=self.settings.retry_delay_seconds,
            retry_on_exceptions=(FeedError,),
        )
        self.retry_manager = retry_manager or RetryManager(self.retry_config)

        # SSL context for secure requests
        self.ssl_context = ssl.create_default_context(cafile=certifi.where())

    @property
    def default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.settings.user_agent,
            "Accept": self.settings.accept,
        }

    @asynccontextmanager
    async def open_session(self, limit: int = 40) -> AsyncIterator[aiohttp.ClientSession]:
        """Create the aiohttp session used for the duration of a run.

        ``limit`` must be at least the chunk width. There is no per-host
        limit: many feeds share a hosting platform, and a request queued in
        the pool would spend its timeout before it is sent.
        """
        connector = aiohttp.TCPConnector(
            ssl=self.ssl_context,
            limit=limit,
            limit_per_host=0,
            enable_cleanup_closed=True,
        )

        async with aiohttp.ClientSession(
            connector=connector, headers=self.default_headers
        ) as session:
            self.session = session
            try:
                yield session
            finally:
                self.session = None

    async def fetch(
        self,
        url: str,
        validators: Optional[CacheValidators] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Perform one fetch attempt bounded by a wall-clock timeout.

        The timeout covers the whole redirect chain and the body read. On
        expiry the in-flight request is cancelled and FeedTimeoutError raised.

        Args:
            url: Feed URL
            validators: Captured cache validators (read and updated)
            timeout: Seconds before the attempt is abandoned

        Returns:
            FetchResult with content, or with ``not_modified`` set

        Raises:
            FeedError: One of the fetch error subclasses
        """
        if self.session is None:
            raise RuntimeError("ConditionalFetcher.fetch requires an open session")

        validators = validators if validators is not None else CacheValidators()
        timeout = timeout if timeout is not None else self.settings.timeout_seconds

        try:
            return await asyncio.wait_for(
                self._follow(url, validators), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise FeedTimeoutError(
                f"Request timed out after {int(timeout * 1000)}ms", feed_url=url
            ) from e

    async def fetch_with_retry(
        self,
        url: str,
        validators: Optional[CacheValidators] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Fetch with the retry policy: one retry after a fixed delay."""
        return await self.retry_manager.retry_async(
            self.fetch, url, validators, timeout,
            config=self.retry_config,
            operation=f"fetch {url}",
        )

    async def _follow(self, url: str, validators: CacheValidators) -> FetchResult:
        """Request ``url``, following redirects up to the configured hop limit."""
        current_url = url
        redirects = 0

        while True:
            headers = validators.conditional_headers(current_url)
            try:
                async with self.session.get(
                    current_url, headers=headers, allow_redirects=False
                ) as response:
                    status = response.status
                    location = response.headers.get("Location")

                    if 300 <= status < 400 and location:
                        if redirects >= self.settings.max_redirects:
                            raise TooManyRedirectsError(
                                f"Too many redirects (more than {self.settings.max_redirects})",
                                feed_url=url,
                            )
                        next_url = urljoin(current_url, location)
                        self.logger.debug(f"Redirect {status}: {current_url} -> {next_url}")
                        current_url = next_url
                        redirects += 1
                        continue

                    if status == 304:
                        self.logger.debug(f"Not modified: {current_url}")
                        return FetchResult(
                            url=url,
                            final_url=current_url,
                            not_modified=True,
                            redirects=redirects,
                        )

                    if status >= 300:
                        raise BadStatusError(
                            f"Status code {status}", status=status, feed_url=url
                        )

                    etag = response.headers.get("ETag")
                    last_modified = response.headers.get("Last-Modified")
                    content = await response.read()

            except (aiohttp.ClientError, OSError, ValueError) as e:
                # Socket errors and unusable Location values count as transport failures
                raise FeedNetworkError(
                    f"Network error: {e.__class__.__name__}: {e}", feed_url=url
                ) from e

            validators.capture(current_url, etag, last_modified)
            return FetchResult(
                url=url,
                final_url=current_url,
                content=content,
                etag=etag,
                last_modified=last_modified,
                redirects=redirects,
            )
