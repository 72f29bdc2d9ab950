"""Abstract base class for the knowledge-pack store.

The store is a shared mapping from book id to :class:`BookKnowledge`.
It is injected into the ingestion pipeline, the chat responder and the
catalog service so the in-memory implementation can be swapped for an
evicting cache or an external store without touching pipeline logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from marginalia.models.knowledge import BookKnowledge


class IKnowledgeStore(ABC):
    """Contract for key-value storage of knowledge packs.

    All operations are async to allow for network-backed stores (e.g. Redis)
    without blocking the event loop.
    """

    @abstractmethod
    async def get(self, book_id: str) -> BookKnowledge | None:
        """Return the pack stored for *book_id*, or ``None`` if absent or evicted."""

    @abstractmethod
    async def set(self, book_id: str, knowledge: BookKnowledge) -> None:
        """Store *knowledge* under *book_id*, replacing any previous pack."""

    @abstractmethod
    async def has(self, book_id: str) -> bool:
        """Return ``True`` if a pack is currently stored for *book_id*."""

    @abstractmethod
    async def delete(self, book_id: str) -> None:
        """Remove the pack for *book_id*.  No-op if absent."""

    @abstractmethod
    def size(self) -> int:
        """Return the number of packs currently held."""
