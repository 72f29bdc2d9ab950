"""Shared pytest fixtures for the Marginalia test suite."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.models.book import BookMetadata
from marginalia.models.knowledge import BookKnowledge, Chunk, ChunkType, InterpretiveLandscape

# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def make_response(
    url: str,
    *,
    json_body: Any = None,
    text: str | None = None,
    status_code: int = 200,
) -> httpx.Response:
    """Build an ``httpx.Response`` bound to a request so ``raise_for_status`` works."""
    request = httpx.Request("GET", url)
    if json_body is not None:
        return httpx.Response(status_code, json=json_body, request=request)
    return httpx.Response(status_code, text=text or "", request=request)


def routed_client(routes: dict[str, Any]) -> MagicMock:
    """A mock ``httpx.AsyncClient`` whose ``get`` answers by URL.

    Each route value is a dict/list (served as JSON), a str (served as
    HTML), an ``httpx.Response``, or an exception instance (raised).
    Unknown URLs answer 404.
    """
    client = MagicMock(spec=httpx.AsyncClient)

    async def _get(url: str, **kwargs: Any) -> httpx.Response:
        value = routes.get(url)
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, httpx.Response):
            return value
        if isinstance(value, (dict, list)):
            return make_response(url, json_body=value)
        if isinstance(value, str):
            return make_response(url, text=value)
        return make_response(url, status_code=404)

    client.get = AsyncMock(side_effect=_get)
    return client


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def sample_metadata() -> BookMetadata:
    return BookMetadata(
        id="OL45804W",
        title="Never Let Me Go",
        author="Kazuo Ishiguro",
        year=2005,
        cover="https://covers.openlibrary.org/b/id/1-L.jpg",
        synopsis="Kathy H. looks back on her years at Hailsham.",
        genre=["Fiction", "Dystopia"],
        page_count=288,
        goodreads_rating=3.8,
        ratings_count=1200,
    )


@pytest.fixture
def partial_metadata() -> BookMetadata:
    """What the browser sends after a search pick: id, title, author, year."""
    return BookMetadata(id="OL45804W", title="Never Let Me Go", author="Kazuo Ishiguro", year=2005)


@pytest.fixture
def make_chunk() -> Callable[..., Chunk]:
    counter = {"n": 0}

    def _make(
        content: str,
        chunk_type: ChunkType = ChunkType.READER_REVIEW,
        source: str | None = None,
        rating: int | None = None,
    ) -> Chunk:
        counter["n"] += 1
        default_sources = {
            ChunkType.READER_REVIEW: "Goodreads",
            ChunkType.CRITIC_REVIEW: "The Guardian",
            ChunkType.COMMUNITY_DISCUSSION: "Reddit",
            ChunkType.AUTHOR_INTERVIEW: "The Paris Review",
        }
        return Chunk(
            id=f"chunk-{counter['n']}",
            content=content,
            source=source or default_sources[chunk_type],
            source_url="https://example.com",
            type=chunk_type,
            rating=rating,
        )

    return _make


@pytest.fixture
def sample_chunks(make_chunk: Callable[..., Chunk]) -> list[Chunk]:
    return [
        make_chunk("Kathy's narration is devastating in its calm acceptance.", rating=5),
        make_chunk("I found the pacing slow but the ending haunted me.", rating=3),
        make_chunk(
            "Ishiguro's restraint makes the clones' passivity the real horror.",
            ChunkType.CRITIC_REVIEW,
        ),
        make_chunk(
            "Why don't they run? The whole thread argues about Tommy and Ruth.",
            ChunkType.COMMUNITY_DISCUSSION,
        ),
    ]


@pytest.fixture
def sample_landscape() -> InterpretiveLandscape:
    return InterpretiveLandscape(
        critic_consensus="Critics praise its restraint.",
        reader_sentiment="Readers find it haunting.",
        the_debate="Why the students never rebel.",
    )


@pytest.fixture
def sample_knowledge(
    sample_metadata: BookMetadata,
    sample_chunks: list[Chunk],
    sample_landscape: InterpretiveLandscape,
) -> BookKnowledge:
    return BookKnowledge(
        metadata=sample_metadata,
        chunks=sample_chunks,
        interpretive_landscape=sample_landscape,
        question_prompts=["Is Kathy a reliable narrator?"],
        chunk_count=len(sample_chunks),
        sources=["Goodreads", "The Guardian", "Reddit"],
    )


# ---------------------------------------------------------------------------
# LLM mock
# ---------------------------------------------------------------------------


LANDSCAPE_JSON = json.dumps(
    {
        "criticConsensus": "Critics admire the restraint.",
        "readerSentiment": "Readers are moved and unsettled.",
        "theDebate": "Whether the students' passivity is plausible.",
        "questionPrompts": [
            "Is Kathy a reliable narrator?",
            "Why does nobody run?",
            "What is Hailsham really for?",
            "Does Tommy's art matter?",
            "Is the ending hopeful?",
            "An extra sixth prompt?",
        ],
    }
)


def stream_of(*tokens: str) -> Callable[..., AsyncIterator[str]]:
    """Side effect for ``stream_chat`` that yields *tokens*."""

    def _stream(*args: Any, **kwargs: Any) -> AsyncIterator[str]:
        async def _gen() -> AsyncIterator[str]:
            for token in tokens:
                yield token

        return _gen()

    return _stream


@pytest.fixture
def mock_llm() -> MagicMock:
    """Available LLM returning a valid landscape and a short streamed reply."""
    llm = MagicMock(spec=ILLMProvider)
    llm.complete = AsyncMock(return_value=LANDSCAPE_JSON)
    llm.stream_chat = MagicMock(side_effect=stream_of("Kathy ", "is ", "unreliable."))
    llm.is_available.return_value = True
    llm.get_provider_name.return_value = "anthropic"
    return llm


# ---------------------------------------------------------------------------
# Helper fixtures (test modules are not importable packages)
# ---------------------------------------------------------------------------


@pytest.fixture
def http_client_for() -> Callable[[dict[str, Any]], MagicMock]:
    return routed_client


@pytest.fixture
def response_for() -> Callable[..., httpx.Response]:
    return make_response


@pytest.fixture
def token_stream() -> Callable[..., Callable[..., AsyncIterator[str]]]:
    return stream_of


@pytest.fixture
def landscape_json() -> str:
    return LANDSCAPE_JSON
