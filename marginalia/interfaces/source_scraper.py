"""Abstract base class for discourse source scrapers.

Each scraper turns a ``(title, author)`` pair into a list of
:class:`~marginalia.models.knowledge.Chunk` objects from one external
source: a review site, a forum, a news outlet, or a literary magazine.
The ingestion pipeline only ever sees this interface, so sources can be
added, removed, or swapped for an official API without touching it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from marginalia.models.knowledge import Chunk, ChunkType


# Concrete implementations: GoodreadsScraper, RedditScraper,
# GuardianScraper, LitHubScraper
# Located in: marginalia/providers/scrapers/
class ISourceScraper(ABC):
    """Contract for one best-effort discourse source."""

    @abstractmethod
    async def fetch(self, title: str, author: str) -> list[Chunk]:
        """Collect chunks about the book identified by *title* and *author*.

        Implementations **must not raise**.  Timeouts, HTTP errors,
        rate limiting, markup that does not match, and empty result sets
        all resolve to ``[]`` after being logged.

        Parameters
        ----------
        title:
            Book title as it appears in the enriched metadata.
        author:
            Primary author name.

        Returns
        -------
        list[Chunk]
            Chunks tagged with :meth:`get_source_name` and
            :attr:`chunk_type`, in source order.
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Return the display name stored on every chunk, e.g. ``"Reddit"``."""

    @property
    @abstractmethod
    def step_name(self) -> str:
        """Progress-step label reported while this source is scraped."""

    @property
    @abstractmethod
    def chunk_type(self) -> ChunkType:
        """The fixed chunk type this source produces."""
