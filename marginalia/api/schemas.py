"""Pydantic request/response schemas for the Marginalia API.

Domain models (:class:`BookMetadata`, :class:`SearchResult`,
:class:`IngestionEvent`) are returned as-is; the schemas here only cover
request bodies and the envelopes around domain models.  Wire keys are
camelCase, matching the domain models.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from marginalia.models.book import WIRE_CONFIG, BookMetadata
from marginalia.models.chat import ChatMessage


class ChatRequest(BaseModel):
    """One user turn plus the conversation so far.

    Fields default to empty so that a missing ``bookId`` or ``message``
    reaches the route and is rejected with a 400 instead of a 422.
    """

    model_config = WIRE_CONFIG

    book_id: str = ""
    message: str = ""
    history: list[ChatMessage] = Field(default_factory=list)


class BookDetailResponse(BaseModel):
    """Book-detail lookup result; ``status`` says where the record came from."""

    model_config = WIRE_CONFIG

    status: Literal["cached", "fresh"]
    metadata: BookMetadata


class HealthResponse(BaseModel):
    """Application health check response."""

    model_config = WIRE_CONFIG

    status: str
    version: str
    llm_provider: str
    llm_available: bool
    stored_books: int
    ingestions_running: int = 0


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
