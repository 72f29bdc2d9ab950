"""In-memory knowledge store backed by cachetools.

Holds packs for the lifetime of the process, bounded by ``max_books``
with least-recently-used eviction.  When ``ttl`` is positive, packs also
expire after that many seconds.  Can be swapped for Redis or another
backend via the :class:`IKnowledgeStore` interface.
"""

from __future__ import annotations

import structlog
from cachetools import Cache, LRUCache, TTLCache

from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.models.knowledge import BookKnowledge

logger = structlog.get_logger(logger_name=__name__)


class MemoryKnowledgeStore(IKnowledgeStore):
    """Process-local store of :class:`BookKnowledge` keyed by book id.

    Parameters
    ----------
    max_books:
        Maximum number of packs before the least-recently-used one is
        evicted.
    ttl:
        Time-to-live in seconds.  ``0`` keeps packs until evicted by size.
    """

    def __init__(self, max_books: int = 500, ttl: int = 0) -> None:
        self._cache: Cache
        if ttl > 0:
            self._cache = TTLCache(maxsize=max_books, ttl=ttl)
        else:
            self._cache = LRUCache(maxsize=max_books)

    async def get(self, book_id: str) -> BookKnowledge | None:
        knowledge = self._cache.get(book_id)
        logger.debug("store_hit" if knowledge is not None else "store_miss", book_id=book_id)
        return knowledge

    async def set(self, book_id: str, knowledge: BookKnowledge) -> None:
        # Last write wins; the pipeline's single-flight guard keeps
        # concurrent runs for one id from racing here.
        self._cache[book_id] = knowledge
        logger.debug("store_set", book_id=book_id, chunks=knowledge.chunk_count)

    async def has(self, book_id: str) -> bool:
        return book_id in self._cache

    async def delete(self, book_id: str) -> None:
        self._cache.pop(book_id, None)
        logger.debug("store_delete", book_id=book_id)

    def size(self) -> int:
        return len(self._cache)
