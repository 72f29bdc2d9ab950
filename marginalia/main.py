"""Marginalia FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.

``build_components`` is also used by the CLI to run searches, ingestion
and chat without the web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from marginalia import __version__
from marginalia.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from marginalia.api.routes import router as api_router
from marginalia.config.loader import load_config
from marginalia.config.settings import Settings
from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.interfaces.source_scraper import ISourceScraper
from marginalia.pipeline.ingestion import IngestionPipeline
from marginalia.pipeline.progress_tracker import ProgressTracker
from marginalia.providers.catalog.google_books_provider import GoogleBooksProvider
from marginalia.providers.catalog.open_library_provider import OpenLibraryProvider
from marginalia.providers.llm.anthropic_provider import AnthropicLLMProvider
from marginalia.providers.llm.openai_provider import OpenAILLMProvider
from marginalia.providers.scrapers.goodreads_scraper import GoodreadsScraper
from marginalia.providers.scrapers.guardian_scraper import GuardianScraper
from marginalia.providers.scrapers.lithub_scraper import LitHubScraper
from marginalia.providers.scrapers.reddit_scraper import RedditScraper
from marginalia.providers.store.memory_store import MemoryKnowledgeStore
from marginalia.services.catalog_service import CatalogService
from marginalia.services.chat_responder import ChatResponder
from marginalia.services.chunker import DEFAULT_TARGET_CHARS, TextChunker
from marginalia.services.landscape_synthesizer import DEFAULT_SAMPLE_SIZE, LandscapeSynthesizer
from marginalia.services.metadata_enrichment import MetadataEnricher
from marginalia.services.retrieval import RetrievalEngine, RetrievalWeights
from marginalia.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# LLM provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Select the LLM provider based on configured API keys.

    Priority order: Anthropic -> OpenAI.  With neither key the Anthropic
    adapter is still returned; it reports itself unavailable, so chat
    answers 503 and landscape synthesis falls back to placeholder text.
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return AnthropicLLMProvider(settings=app_settings)


def _build_scrapers(
    http_client: httpx.AsyncClient,
    chunker: TextChunker,
    app_settings: Settings,
    sources: dict[str, Any],
) -> list[ISourceScraper]:
    """Build the discourse scrapers in pack order: reviews, discussion, criticism."""
    goodreads = sources.get("goodreads", {})
    reddit = sources.get("reddit", {})
    guardian = sources.get("guardian", {})
    lithub = sources.get("lithub", {})

    return [
        GoodreadsScraper(
            http_client,
            chunker,
            max_reviews=goodreads.get("max_reviews", 12),
        ),
        RedditScraper(
            http_client,
            chunker,
            max_posts=reddit.get("max_posts", 6),
            comments_per_post=reddit.get("comments_per_post", 4),
        ),
        GuardianScraper(
            http_client,
            chunker,
            api_key=app_settings.guardian_api_key or "test",
            max_articles=guardian.get("max_articles", 4),
        ),
        LitHubScraper(
            http_client,
            chunker,
            max_articles=lithub.get("max_articles", 2),
        ),
    ]


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    app_config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_config = app_config or {}
    deadline = app_settings.source_deadline_seconds

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=30.0)
    chunker = TextChunker(
        target_chars=app_config.get("chunking", {}).get("target_chars", DEFAULT_TARGET_CHARS)
    )

    # -- LLM --
    llm_provider = _build_llm_provider(app_settings)

    # -- Catalogs (Open Library first: its ids are stable) --
    open_library = OpenLibraryProvider(http_client=http_client)
    google_books = GoogleBooksProvider(
        http_client=http_client, api_key=app_settings.google_books_api_key
    )
    catalogs = [open_library, google_books]

    # -- Sources --
    scrapers = _build_scrapers(
        http_client, chunker, app_settings, app_config.get("sources", {})
    )

    # -- Store & progress --
    knowledge_store = MemoryKnowledgeStore(
        max_books=app_settings.store_max_books,
        ttl=app_settings.store_ttl_seconds,
    )
    progress_tracker = ProgressTracker()

    # -- Services --
    retrieval = RetrievalEngine(RetrievalWeights.from_config(app_config.get("retrieval", {})))
    synthesizer = LandscapeSynthesizer(
        llm_provider,
        sample_size=app_config.get("landscape", {}).get("sample_size", DEFAULT_SAMPLE_SIZE),
        max_tokens=app_settings.landscape_max_tokens,
    )
    enricher = MetadataEnricher(primary=open_library, secondary=google_books, deadline=deadline)
    catalog_service = CatalogService(catalogs, knowledge_store)
    chat_responder = ChatResponder(
        llm_provider,
        knowledge_store,
        retrieval=retrieval,
        top_k=app_settings.retrieval_top_k,
        max_tokens=app_settings.chat_max_tokens,
    )

    # -- Pipeline --
    pipeline = IngestionPipeline(
        enricher=enricher,
        scrapers=scrapers,
        synthesizer=synthesizer,
        store=knowledge_store,
        progress_tracker=progress_tracker,
        source_deadline=deadline,
    )

    return {
        "http_client": http_client,
        "llm_provider": llm_provider,
        "catalog_service": catalog_service,
        "knowledge_store": knowledge_store,
        "progress_tracker": progress_tracker,
        "pipeline": pipeline,
        "chat_responder": chat_responder,
        "scrapers": scrapers,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = build_components(settings, config)

    for key, value in components.items():
        setattr(application.state, key, value)

    llm: ILLMProvider = components["llm_provider"]
    _logger.info(
        "app_startup",
        version=__version__,
        environment=settings.app_env,
        llm_provider=llm.get_provider_name(),
        llm_available=llm.is_available(),
        sources=[s.get_source_name() for s in components["scrapers"]],
    )

    yield

    # -- Shutdown: close shared httpx client --
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="Marginalia API",
        version=__version__,
        description=(
            "Search for a book, gather what readers, critics and communities "
            "have said about it, and chat with a companion grounded in that "
            "discourse."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "marginalia.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
