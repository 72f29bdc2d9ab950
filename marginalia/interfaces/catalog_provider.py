"""Abstract base class for book-catalog providers.

A catalog answers three kinds of question: free-text search, a
single-book lookup by id, and a best-effort field lookup used to enrich
a partial metadata record.  Open Library is the primary catalog and
Google Books the secondary one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from marginalia.models.book import BookMetadata, SearchResult


# Concrete implementations: OpenLibraryProvider, GoogleBooksProvider
# Located in: marginalia/providers/catalog/
class ICatalogProvider(ABC):
    """Contract for external book catalogs."""

    @abstractmethod
    async def search(self, query: str, limit: int = 8) -> list[SearchResult]:
        """Return up to *limit* search hits for *query*; ``[]`` on any failure."""

    @abstractmethod
    async def fetch_book(self, book_id: str) -> BookMetadata | None:
        """Fetch a fully populated record for *book_id*.

        Returns ``None`` when the catalog does not know the id or the
        request fails.
        """

    @abstractmethod
    async def lookup_fields(self, partial: BookMetadata) -> dict[str, Any]:
        """Return whatever :class:`BookMetadata` fields this catalog can supply.

        Keys are snake_case field names; fields the catalog cannot supply
        are simply absent.  Never raises -- any failure yields ``{}``.
        """

    @abstractmethod
    def handles_id(self, book_id: str) -> bool:
        """Return ``True`` if *book_id* belongs to this catalog."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"open_library"``."""
