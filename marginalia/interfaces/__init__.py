"""Public interface definitions for all external service providers.

Every external API or service is accessed exclusively through the
abstract base classes defined in this package.  Concrete adapters live in
``marginalia/providers/`` and are wired together in ``marginalia/main.py``.

    Interface          ->  Concrete implementations
    ---------------------------------------------------------------
    ILLMProvider       ->  AnthropicLLMProvider, OpenAILLMProvider
    ICatalogProvider   ->  OpenLibraryProvider, GoogleBooksProvider
    ISourceScraper     ->  GoodreadsScraper, RedditScraper,
                           GuardianScraper, LitHubScraper
    IKnowledgeStore    ->  MemoryKnowledgeStore
"""

from marginalia.interfaces.catalog_provider import ICatalogProvider
from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.interfaces.source_scraper import ISourceScraper

__all__ = [
    "ICatalogProvider",
    "IKnowledgeStore",
    "ILLMProvider",
    "ISourceScraper",
]
