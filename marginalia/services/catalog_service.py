"""Search and book-detail lookups across the catalogs.

Search fans out to every catalog at once and merges the hits in catalog
order (Open Library first, since its ids are stable), dropping later hits
whose lowercase title+author pair was already seen.  Book detail answers
from the knowledge store when the book is already ingested and
otherwise asks the catalog that owns the id, without starting ingestion.
"""

from __future__ import annotations

from typing import Literal, NamedTuple

import structlog

from marginalia.interfaces.catalog_provider import ICatalogProvider
from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.models.book import BookMetadata, SearchResult
from marginalia.utils.concurrency import gather_settled

logger = structlog.get_logger(logger_name=__name__)

MIN_QUERY_CHARS = 2
MAX_SEARCH_RESULTS = 8


class BookDetail(NamedTuple):
    status: Literal["cached", "fresh"]
    metadata: BookMetadata


class CatalogService:
    """Facade over the ordered list of catalog providers.

    Parameters
    ----------
    catalogs:
        Providers in precedence order.  The first one whose
        ``handles_id`` accepts an id serves book-detail lookups for it.
    store:
        Knowledge store consulted before any catalog on detail lookups.
    deadline:
        Upper bound in seconds on each catalog search.
    """

    def __init__(
        self,
        catalogs: list[ICatalogProvider],
        store: IKnowledgeStore,
        deadline: float | None = 15.0,
    ) -> None:
        self._catalogs = catalogs
        self._store = store
        self._deadline = deadline

    async def search(self, query: str) -> list[SearchResult]:
        """Return up to eight merged hits; queries under two characters return ``[]``."""
        query = (query or "").strip()
        if len(query) < MIN_QUERY_CHARS:
            return []

        results = await gather_settled(
            [catalog.search(query, MAX_SEARCH_RESULTS) for catalog in self._catalogs],
            deadline=self._deadline,
            labels=[catalog.get_provider_name() for catalog in self._catalogs],
            logger=logger,
        )

        merged: list[SearchResult] = []
        seen: set[str] = set()
        for hits in results:
            if isinstance(hits, BaseException):
                continue
            for hit in hits:
                key = hit.dedupe_key()
                if key in seen:
                    continue
                seen.add(key)
                merged.append(hit)

        logger.info("catalog_search", query=query, results=min(len(merged), MAX_SEARCH_RESULTS))
        return merged[:MAX_SEARCH_RESULTS]

    async def get_book(self, book_id: str) -> BookDetail | None:
        """Return the stored or freshly fetched record for *book_id*, or ``None``."""
        knowledge = await self._store.get(book_id)
        if knowledge is not None:
            return BookDetail("cached", knowledge.metadata)

        catalog = next((c for c in self._catalogs if c.handles_id(book_id)), None)
        if catalog is None:
            logger.warning("catalog_no_provider_for_id", book_id=book_id)
            return None

        metadata = await catalog.fetch_book(book_id)
        if metadata is None:
            return None
        return BookDetail("fresh", metadata)
