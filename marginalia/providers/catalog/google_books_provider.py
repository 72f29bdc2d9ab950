"""Google Books catalog provider implementing ICatalogProvider.

Google Books is the secondary catalog.  It fills synopsis, category and
page-count gaps that Open Library leaves, and its volumes are exposed to
the rest of the app with a ``gb_`` prefix so the two id spaces never
collide.  An API key is optional; without one the public quota applies.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from marginalia.interfaces.catalog_provider import ICatalogProvider
from marginalia.models.book import (
    GENRE_MAX_ENTRIES,
    GOOGLE_BOOKS_ID_PREFIX,
    SYNOPSIS_MAX_CHARS,
    BookMetadata,
    SearchResult,
)
from marginalia.utils.text_normalizer import force_https, parse_year

logger = structlog.get_logger(logger_name=__name__)

_VOLUMES_URL = "https://www.googleapis.com/books/v1/volumes"


class GoogleBooksProvider(ICatalogProvider):
    """Secondary catalog backed by the Google Books volumes API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str = "",
        timeout: float = 8.0,
    ) -> None:
        self._client = http_client
        self._api_key = api_key
        self._timeout = timeout

    # ------------------------------------------------------------------
    # ICatalogProvider implementation
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 8) -> list[SearchResult]:
        try:
            data = await self._get_json(_VOLUMES_URL, {"q": query, "maxResults": limit})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("google_books_search_failed", query=query, error=str(exc))
            return []

        results: list[SearchResult] = []
        for item in data.get("items") or []:
            info = item.get("volumeInfo") or {}
            if not item.get("id") or not info.get("title"):
                continue
            links = info.get("imageLinks") or {}
            authors = info.get("authors") or []
            results.append(
                SearchResult(
                    id=f"{GOOGLE_BOOKS_ID_PREFIX}{item['id']}",
                    title=info["title"],
                    author=authors[0] if authors else "Unknown Author",
                    year=parse_year(info.get("publishedDate")),
                    cover=force_https(links.get("thumbnail") or links.get("smallThumbnail")),
                )
            )

        logger.debug("google_books_search", query=query, result_count=len(results))
        return results

    async def fetch_book(self, book_id: str) -> BookMetadata | None:
        volume_id = book_id[len(GOOGLE_BOOKS_ID_PREFIX):] if self.handles_id(book_id) else book_id
        try:
            data = await self._get_json(f"{_VOLUMES_URL}/{volume_id}", {})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("google_books_fetch_failed", book_id=book_id, error=str(exc))
            return None

        info = data.get("volumeInfo")
        if not info:
            return None
        authors = info.get("authors") or []
        return BookMetadata(
            id=f"{GOOGLE_BOOKS_ID_PREFIX}{volume_id}",
            title=info.get("title") or "Unknown Title",
            author=authors[0] if authors else "Unknown Author",
            **self._volume_fields(info),
        )

    async def lookup_fields(self, partial: BookMetadata) -> dict[str, Any]:
        """Look up the best title+author match and return its fields."""
        query = f"{partial.title} {partial.author}".strip()
        if not query:
            return {}
        try:
            data = await self._get_json(_VOLUMES_URL, {"q": query, "maxResults": 1})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("google_books_lookup_failed", query=query, error=str(exc))
            return {}

        items = data.get("items") or []
        if not items:
            return {}
        fields = self._volume_fields(items[0].get("volumeInfo") or {})
        # Only non-empty values take part in the merge.
        return {k: v for k, v in fields.items() if v}

    def handles_id(self, book_id: str) -> bool:
        return book_id.startswith(GOOGLE_BOOKS_ID_PREFIX)

    def get_provider_name(self) -> str:
        return "google_books"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        if self._api_key:
            params = {**params, "key": self._api_key}
        response = await self._client.get(url, params=params, timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _volume_fields(info: dict[str, Any]) -> dict[str, Any]:
        links = info.get("imageLinks") or {}
        categories = [c for c in info.get("categories") or [] if isinstance(c, str)]
        return {
            "year": parse_year(info.get("publishedDate")),
            "cover": force_https(links.get("large") or links.get("thumbnail")),
            "synopsis": (info.get("description") or "")[:SYNOPSIS_MAX_CHARS],
            "genre": categories[:GENRE_MAX_ENTRIES],
            "page_count": int(info.get("pageCount") or 0),
        }
