"""Pydantic v2 domain models for Marginalia."""

from marginalia.models.book import BookMetadata, SearchResult
from marginalia.models.chat import ChatMessage, ChatRole
from marginalia.models.knowledge import BookKnowledge, Chunk, ChunkType, InterpretiveLandscape
from marginalia.models.pipeline import IngestionEvent, IngestionStatus, IngestionStep

__all__ = [
    "BookKnowledge",
    "BookMetadata",
    "ChatMessage",
    "ChatRole",
    "Chunk",
    "ChunkType",
    "IngestionEvent",
    "IngestionStatus",
    "IngestionStep",
    "InterpretiveLandscape",
    "SearchResult",
]
