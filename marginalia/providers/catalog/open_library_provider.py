"""Open Library catalog provider implementing ICatalogProvider.

Open Library is the primary catalog: its work ids (``OL45804W``) are
stable, it needs no API key, and its ``ratings.json`` endpoint is the
only free source of aggregate reader ratings.  A full record takes four
requests: the work, its ratings summary and its first editions in
parallel, then the first author's record.
"""

from __future__ import annotations

import asyncio
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
from marginalia.utils.text_normalizer import parse_year

logger = structlog.get_logger(logger_name=__name__)

_BASE_URL = "https://openlibrary.org"
_COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-{size}.jpg"
_SEARCH_FIELDS = "key,title,author_name,first_publish_year,cover_i"
_UNKNOWN_AUTHOR = "Unknown Author"


class OpenLibraryProvider(ICatalogProvider):
    """Primary catalog backed by the Open Library JSON API.

    Parameters
    ----------
    http_client:
        Shared async HTTP client.
    timeout:
        Per-request timeout in seconds for work, ratings, editions and
        search requests.
    author_timeout:
        Timeout for the follow-up author lookup.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        timeout: float = 10.0,
        author_timeout: float = 5.0,
    ) -> None:
        self._client = http_client
        self._timeout = timeout
        self._author_timeout = author_timeout

    # ------------------------------------------------------------------
    # ICatalogProvider implementation
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 8) -> list[SearchResult]:
        try:
            data = await self._get_json(
                "/search.json",
                params={"q": query, "limit": limit, "fields": _SEARCH_FIELDS},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("open_library_search_failed", query=query, error=str(exc))
            return []

        results: list[SearchResult] = []
        for doc in data.get("docs", []):
            key = doc.get("key")
            title = doc.get("title")
            if not key or not title:
                continue
            authors = doc.get("author_name") or []
            cover_id = doc.get("cover_i")
            results.append(
                SearchResult(
                    id=key.replace("/works/", ""),
                    title=title,
                    author=authors[0] if authors else _UNKNOWN_AUTHOR,
                    year=parse_year(doc.get("first_publish_year")),
                    cover=self._cover_url(cover_id, "M") if cover_id else "",
                )
            )

        logger.debug("open_library_search", query=query, result_count=len(results))
        return results

    async def fetch_book(self, book_id: str) -> BookMetadata | None:
        fields = await self._fetch_work_fields(book_id)
        if not fields:
            return None
        return BookMetadata(
            id=book_id,
            title=fields.get("title") or "Unknown Title",
            author=fields.get("author") or _UNKNOWN_AUTHOR,
            **{k: v for k, v in fields.items() if k not in ("title", "author")},
        )

    async def lookup_fields(self, partial: BookMetadata) -> dict[str, Any]:
        if not self.handles_id(partial.id):
            return {}
        return await self._fetch_work_fields(partial.id)

    def handles_id(self, book_id: str) -> bool:
        return not book_id.startswith(GOOGLE_BOOKS_ID_PREFIX)

    def get_provider_name(self) -> str:
        return "open_library"

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        response = await self._client.get(
            f"{_BASE_URL}{path}",
            params=params,
            timeout=timeout or self._timeout,
        )
        response.raise_for_status()
        return response.json()

    async def _get_optional(self, path: str, **kwargs: Any) -> dict[str, Any]:
        """Like :meth:`_get_json` but a failure yields ``{}``."""
        try:
            return await self._get_json(path, **kwargs)
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("open_library_optional_failed", path=path, error=str(exc))
            return {}

    async def _fetch_work_fields(self, work_id: str) -> dict[str, Any]:
        """Fetch everything Open Library knows about *work_id*.

        The work record is required; ratings, editions and the author
        record are optional.  Returns ``{}`` if the work itself cannot be
        fetched.  Only fields with a non-empty value are included.
        """
        work_task = self._get_json(f"/works/{work_id}.json")
        ratings_task = self._get_optional(f"/works/{work_id}/ratings.json")
        editions_task = self._get_optional(
            f"/works/{work_id}/editions.json", params={"limit": 5}
        )
        work, ratings, editions = await asyncio.gather(
            work_task, ratings_task, editions_task, return_exceptions=True
        )
        if isinstance(work, BaseException):
            logger.warning("open_library_work_failed", work_id=work_id, error=str(work))
            return {}
        if isinstance(ratings, BaseException):
            ratings = {}
        if isinstance(editions, BaseException):
            editions = {}

        entries = editions.get("entries") or []
        fields: dict[str, Any] = {}

        if work.get("title"):
            fields["title"] = work["title"]

        author = await self._fetch_author_name(work)
        if author:
            fields["author"] = author

        year = parse_year(work.get("first_publish_date"))
        if not year and entries:
            year = parse_year(entries[0].get("publish_date"))
        if year:
            fields["year"] = year

        covers = work.get("covers") or []
        cover_id = next((c for c in covers if isinstance(c, int) and c > 0), None)
        if cover_id:
            fields["cover"] = self._cover_url(cover_id, "L")

        description = work.get("description")
        if isinstance(description, dict):
            description = description.get("value")
        if isinstance(description, str) and description.strip():
            fields["synopsis"] = description.strip()[:SYNOPSIS_MAX_CHARS]

        subjects = [s for s in work.get("subjects") or [] if isinstance(s, str)]
        if subjects:
            fields["genre"] = subjects[:GENRE_MAX_ENTRIES]

        page_count = next(
            (e["number_of_pages"] for e in entries if (e.get("number_of_pages") or 0) > 0),
            0,
        )
        if page_count:
            fields["page_count"] = page_count

        summary = ratings.get("summary") or {}
        if summary.get("average"):
            fields["goodreads_rating"] = round(float(summary["average"]), 1)
        if summary.get("count") is not None:
            fields["ratings_count"] = int(summary["count"])

        logger.debug("open_library_work_fetched", work_id=work_id, fields=sorted(fields))
        return fields

    async def _fetch_author_name(self, work: dict[str, Any]) -> str:
        authors = work.get("authors") or []
        if not authors:
            return ""
        author_key = (authors[0].get("author") or {}).get("key")
        if not author_key:
            return ""
        record = await self._get_optional(f"{author_key}.json", timeout=self._author_timeout)
        return record.get("name") or ""

    @staticmethod
    def _cover_url(cover_id: int, size: str) -> str:
        return _COVER_URL.format(cover_id=cover_id, size=size)
