"""Shared plumbing for the discourse scrapers.

Every scraper fetches over one injected ``httpx.AsyncClient``, spaces its
requests with a monotonic-clock throttle, and converts *any* failure into
an empty result at the :meth:`fetch` boundary.  Subclasses implement
:meth:`_scrape` and are free to raise from it.
"""

from __future__ import annotations

import asyncio
import time
from abc import abstractmethod
from typing import Any

import httpx
import structlog
from bs4 import BeautifulSoup

from marginalia.interfaces.source_scraper import ISourceScraper
from marginalia.models.knowledge import Chunk
from marginalia.services.chunker import TextChunker

# Several sources reject generic client user agents.
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)


class BaseScraper(ISourceScraper):
    """Base class providing throttled fetching and the never-raise boundary.

    Parameters
    ----------
    http_client:
        Shared async HTTP client.
    chunker:
        Splits fetched text into chunks.
    timeout:
        Per-request timeout in seconds.
    request_delay:
        Minimum spacing between consecutive requests from this scraper.
    """

    _DEFAULT_TIMEOUT: float = 10.0
    _DEFAULT_DELAY: float = 0.0

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        chunker: TextChunker | None = None,
        timeout: float | None = None,
        request_delay: float | None = None,
    ) -> None:
        self._http = http_client
        self._chunker = chunker or TextChunker()
        self._timeout = timeout if timeout is not None else self._DEFAULT_TIMEOUT
        self._request_delay = (
            request_delay if request_delay is not None else self._DEFAULT_DELAY
        )
        self._last_request_time: float = 0.0
        self._logger = structlog.get_logger(logger_name=type(self).__module__)

    # ------------------------------------------------------------------
    # ISourceScraper implementation
    # ------------------------------------------------------------------

    async def fetch(self, title: str, author: str) -> list[Chunk]:
        try:
            chunks = await self._scrape(title, author)
        except Exception as exc:
            self._logger.warning(
                "scrape_failed",
                source=self.get_source_name(),
                title=title,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return []

        self._logger.info(
            "scrape_complete",
            source=self.get_source_name(),
            title=title,
            chunks=len(chunks),
        )
        return chunks

    @abstractmethod
    async def _scrape(self, title: str, author: str) -> list[Chunk]:
        """Collect chunks; may raise, :meth:`fetch` absorbs it."""

    # ------------------------------------------------------------------
    # Fetch helpers
    # ------------------------------------------------------------------

    async def _throttle(self, delay: float | None = None) -> None:
        delay = self._request_delay if delay is None else delay
        if delay <= 0:
            return
        elapsed = time.monotonic() - self._last_request_time
        if self._last_request_time > 0 and elapsed < delay:
            await asyncio.sleep(delay - elapsed)
        self._last_request_time = time.monotonic()

    async def _get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        accept: str = "text/html,application/xhtml+xml",
        delay: float | None = None,
    ) -> httpx.Response:
        await self._throttle(delay)
        response = await self._http.get(
            url,
            params=params,
            headers={"User-Agent": BROWSER_USER_AGENT, "Accept": accept},
            timeout=self._timeout,
            follow_redirects=True,
        )
        response.raise_for_status()
        return response

    async def _fetch_page(self, url: str, params: dict[str, Any] | None = None) -> BeautifulSoup | None:
        """GET *url* and parse it, or return ``None`` on an HTTP failure."""
        try:
            response = await self._get(url, params=params)
        except httpx.HTTPError as exc:
            self._logger.warning("page_fetch_failed", url=url, error=str(exc))
            return None
        return BeautifulSoup(response.text, "html.parser")

    async def _fetch_json(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        delay: float | None = None,
    ) -> Any:
        """GET *url* as JSON, or return ``None`` on an HTTP or decode failure."""
        try:
            response = await self._get(url, params=params, accept="application/json", delay=delay)
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning("json_fetch_failed", url=url[:120], error=str(exc))
            return None
