"""FastAPI routes for Marginalia.

Endpoint                          Method  Description
-----------------------------------------------------------------------
/api/v1/search?q=                 GET     Merged catalog search (max 8 hits)
/api/v1/books/{book_id}           GET     Stored or freshly fetched metadata
/api/v1/ingest/{book_id}          GET     Ingestion progress as Server-Sent Events
/api/v1/chat                      POST    Streamed plain-text reply + X-Sources header
/api/v1/health                    GET     Health check + provider status

Service dependencies are resolved from ``app.state`` (populated by
``build_components`` in ``marginalia/main.py``) through ``Annotated`` +
``Depends`` aliases.
"""

from __future__ import annotations

import json
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from marginalia import __version__
from marginalia.api.event_stream import (
    SSE_HEADERS,
    ingestion_events,
    metadata_missing_event,
    ready_event,
    single_event,
)
from marginalia.api.schemas import BookDetailResponse, ChatRequest, HealthResponse
from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.models.book import BookMetadata, SearchResult
from marginalia.pipeline.ingestion import IngestionPipeline
from marginalia.pipeline.progress_tracker import ProgressTracker
from marginalia.services.catalog_service import CatalogService
from marginalia.services.chat_responder import ChatResponder
from marginalia.utils.errors import (
    BookNotIngestedError,
    InvalidRequestError,
    ProviderUnavailableError,
)
from marginalia.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def _get_pipeline(request: Request) -> IngestionPipeline:
    return request.app.state.pipeline


def _get_progress_tracker(request: Request) -> ProgressTracker:
    return request.app.state.progress_tracker


def _get_store(request: Request) -> IKnowledgeStore:
    return request.app.state.knowledge_store


def _get_chat_responder(request: Request) -> ChatResponder:
    return request.app.state.chat_responder


def _get_llm_provider(request: Request) -> ILLMProvider:
    return request.app.state.llm_provider


CatalogDep = Annotated[CatalogService, Depends(_get_catalog_service)]
PipelineDep = Annotated[IngestionPipeline, Depends(_get_pipeline)]
TrackerDep = Annotated[ProgressTracker, Depends(_get_progress_tracker)]
StoreDep = Annotated[IKnowledgeStore, Depends(_get_store)]
ChatResponderDep = Annotated[ChatResponder, Depends(_get_chat_responder)]
LLMProviderDep = Annotated[ILLMProvider, Depends(_get_llm_provider)]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@router.get(
    "/search",
    response_model=list[SearchResult],
    response_model_exclude_none=True,
    summary="Search the book catalogs",
)
async def search_books(
    catalog: CatalogDep,
    q: Annotated[str, Query(description="Free-text title or author query")] = "",
) -> list[SearchResult]:
    return await catalog.search(q)


@router.get(
    "/books/{book_id}",
    response_model=BookDetailResponse,
    response_model_exclude_none=True,
    summary="Look up one book",
)
async def get_book(book_id: str, catalog: CatalogDep) -> BookDetailResponse:
    """Return stored metadata for an ingested book, or fetch it from its catalog."""
    detail = await catalog.get_book(book_id)
    if detail is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return BookDetailResponse(status=detail.status, metadata=detail.metadata)


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.get("/ingest/{book_id}", summary="Ingest a book, streaming progress")
async def ingest_book(
    book_id: str,
    pipeline: PipelineDep,
    tracker: TrackerDep,
    store: StoreDep,
    metadata: Annotated[str | None, Query(description="JSON-encoded partial BookMetadata")] = None,
) -> StreamingResponse:
    """Stream ingestion progress for *book_id* as Server-Sent Events.

    An already ingested book yields a single ``Ready`` event.  A missing
    ``metadata`` parameter yields a single failed event; a malformed one
    is rejected with 400.  The path id always wins over ``metadata.id``.
    """
    knowledge = await store.get(book_id)
    if knowledge is not None:
        stream = single_event(ready_event(knowledge))
    elif not metadata:
        stream = single_event(metadata_missing_event())
    else:
        try:
            partial = _parse_partial(book_id, metadata)
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        stream = ingestion_events(pipeline, tracker, partial)

    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)


def _parse_partial(book_id: str, raw: str) -> BookMetadata:
    """Decode the ``metadata`` query parameter; the path id replaces any embedded id."""
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("metadata must be a JSON object")
        partial = BookMetadata.model_validate({**payload, "id": book_id})
    except (ValueError, ValidationError) as exc:
        _logger.warning("ingest_metadata_invalid", book_id=book_id, error=str(exc)[:200])
        raise InvalidRequestError("Malformed metadata parameter") from exc

    if not partial.title:
        raise InvalidRequestError("metadata.title is required")
    return partial


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@router.post("/chat", summary="Chat about an ingested book")
async def chat(body: ChatRequest, responder: ChatResponderDep) -> StreamingResponse:
    """Stream the assistant's reply as plain text.

    The ``X-Sources`` header carries a JSON array of the source names
    behind the retrieved passages.
    """
    if not body.book_id.strip() or not body.message.strip():
        raise HTTPException(status_code=400, detail="bookId and message are required")

    try:
        reply = await responder.prepare(body.book_id, body.message, body.history)
    except BookNotIngestedError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except ProviderUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return StreamingResponse(
        reply.stream,
        media_type="text/plain; charset=utf-8",
        headers={"X-Sources": json.dumps(reply.sources), "Cache-Control": "no-cache"},
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(
    store: StoreDep,
    llm: LLMProviderDep,
    pipeline: PipelineDep,
) -> HealthResponse:
    """Report LLM availability and the number of stored knowledge packs.

    Without an LLM the service still searches and ingests (synthesis
    falls back to placeholder text) but cannot chat, hence ``degraded``.
    """
    available = llm.is_available()
    return HealthResponse(
        status="healthy" if available else "degraded",
        version=__version__,
        llm_provider=llm.get_provider_name(),
        llm_available=available,
        stored_books=store.size(),
        ingestions_running=pipeline.running_count(),
    )
