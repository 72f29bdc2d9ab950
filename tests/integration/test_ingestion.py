"""Integration tests for the ingestion pipeline.

Runs IngestionPipeline end to end with mock scrapers and a mock LLM
behind the real synthesizer, store and progress tracker, and checks the
event sequence, the stored pack, and the degradation paths.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from marginalia.interfaces.source_scraper import ISourceScraper
from marginalia.models.book import BookMetadata
from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.models.pipeline import IngestionEvent, IngestionStatus, IngestionStep
from marginalia.pipeline.ingestion import IngestionPipeline
from marginalia.pipeline.progress_tracker import ProgressTracker
from marginalia.providers.store.memory_store import MemoryKnowledgeStore
from marginalia.services.landscape_synthesizer import EMPTY_LANDSCAPE, LandscapeSynthesizer
from marginalia.services.metadata_enrichment import MetadataEnricher
from marginalia.utils.errors import PipelineError

READER_STEP = "Reading Goodreads reviews"
CRITIC_STEP = "Loading critical reviews"
FORUM_STEP = "Scanning Reddit discussions"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _scraper(
    name: str,
    step: str,
    chunk_type: ChunkType,
    chunks: list[Chunk] | None = None,
    delay: float = 0.0,
    error: Exception | None = None,
) -> MagicMock:
    scraper = MagicMock(spec=ISourceScraper)
    scraper.get_source_name.return_value = name
    scraper.step_name = step
    scraper.chunk_type = chunk_type

    async def _fetch(title: str, author: str) -> list[Chunk]:
        await asyncio.sleep(delay)
        if error is not None:
            raise error
        return list(chunks or [])

    scraper.fetch = AsyncMock(side_effect=_fetch)
    return scraper


class _Harness:
    """Pipeline plus the collaborators a test inspects."""

    def __init__(
        self,
        scrapers: list[MagicMock],
        metadata: BookMetadata,
        llm: MagicMock,
        source_deadline: float | None = 5.0,
    ) -> None:
        self.enricher = MagicMock(spec=MetadataEnricher)
        self.enricher.enrich = AsyncMock(return_value=metadata)
        self.store = MemoryKnowledgeStore()
        self.tracker = ProgressTracker()
        self.events: list[IngestionEvent] = []
        self.tracker.register_listener(metadata.id, lambda _id, event: self.events.append(event))
        self.pipeline = IngestionPipeline(
            enricher=self.enricher,
            scrapers=scrapers,
            synthesizer=LandscapeSynthesizer(llm),
            store=self.store,
            progress_tracker=self.tracker,
            source_deadline=source_deadline,
        )

    def steps(self) -> list[tuple[str, str]]:
        return [(event.step, event.status.value) for event in self.events]

    def final(self, step: str) -> IngestionEvent:
        return [e for e in self.events if e.step == step and e.status is not IngestionStatus.LOADING][-1]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_full_run_builds_and_stores_pack(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        reader_chunks = [make_chunk("A quietly devastating book about memory.", rating=5)]
        critic_chunks = [make_chunk("Ishiguro's restraint is total.", ChunkType.CRITIC_REVIEW)]
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW, reader_chunks),
                _scraper("The Guardian", CRITIC_STEP, ChunkType.CRITIC_REVIEW, critic_chunks, delay=0.01),
            ],
            sample_metadata,
            mock_llm,
        )

        knowledge = await harness.pipeline.ingest(partial_metadata)

        assert harness.steps() == [
            (IngestionStep.FETCH_METADATA, "loading"),
            (IngestionStep.FETCH_METADATA, "done"),
            (READER_STEP, "loading"),
            (CRITIC_STEP, "loading"),
            (READER_STEP, "done"),
            (CRITIC_STEP, "done"),
            (IngestionStep.SYNTHESIZE, "loading"),
            (IngestionStep.READY, "done"),
        ]
        assert knowledge.chunk_count == 2
        assert knowledge.sources == ["Goodreads", "The Guardian"]
        assert [c.source for c in knowledge.chunks] == ["Goodreads", "The Guardian"]
        assert knowledge.interpretive_landscape.critic_consensus == "Critics admire the restraint."
        assert len(knowledge.question_prompts) == 5
        assert await harness.store.get("OL45804W") == knowledge

        ready = harness.events[-1]
        assert ready.is_terminal
        assert ready.sources == ["Goodreads", "The Guardian"]
        assert ready.landscape == knowledge.interpretive_landscape
        assert ready.quote == "A quietly devastating book about memory."
        harness.enricher.enrich.assert_awaited_once_with(partial_metadata)

    @pytest.mark.asyncio
    async def test_scrapers_receive_enriched_title_and_author(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        mock_llm: MagicMock,
    ) -> None:
        scraper = _scraper("Reddit", "Scanning Reddit discussions", ChunkType.COMMUNITY_DISCUSSION)
        harness = _Harness([scraper], sample_metadata, mock_llm)

        await harness.pipeline.ingest(partial_metadata)

        scraper.fetch.assert_awaited_once_with("Never Let Me Go", "Kazuo Ishiguro")


class TestDegradation:
    @pytest.mark.asyncio
    async def test_zero_chunks_still_reaches_ready(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW),
                _scraper("The Guardian", CRITIC_STEP, ChunkType.CRITIC_REVIEW),
            ],
            sample_metadata,
            mock_llm,
        )

        knowledge = await harness.pipeline.ingest(partial_metadata)

        assert harness.final(READER_STEP).status is IngestionStatus.FAILED
        assert harness.final(CRITIC_STEP).status is IngestionStatus.FAILED
        assert knowledge.chunk_count == 0
        assert knowledge.sources == []
        assert knowledge.interpretive_landscape == EMPTY_LANDSCAPE
        assert knowledge.question_prompts == []
        mock_llm.complete.assert_not_called()

        ready = harness.events[-1]
        assert ready.step == IngestionStep.READY
        assert ready.status is IngestionStatus.DONE
        assert ready.quote is None
        assert ready.sources == []

    @pytest.mark.asyncio
    async def test_slow_scraper_hits_deadline(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW, [make_chunk("Fine.")]),
                _scraper(
                    "The Guardian",
                    CRITIC_STEP,
                    ChunkType.CRITIC_REVIEW,
                    [make_chunk("Never arrives.", ChunkType.CRITIC_REVIEW)],
                    delay=2.0,
                ),
            ],
            sample_metadata,
            mock_llm,
            source_deadline=0.05,
        )

        knowledge = await harness.pipeline.ingest(partial_metadata)

        assert harness.final(CRITIC_STEP).status is IngestionStatus.FAILED
        assert knowledge.sources == ["Goodreads"]

    @pytest.mark.asyncio
    async def test_raising_scraper_counts_as_empty(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW, error=RuntimeError("bad markup")),
                _scraper(
                    "The Guardian",
                    CRITIC_STEP,
                    ChunkType.CRITIC_REVIEW,
                    [make_chunk("Measured praise.", ChunkType.CRITIC_REVIEW)],
                ),
            ],
            sample_metadata,
            mock_llm,
        )

        knowledge = await harness.pipeline.ingest(partial_metadata)

        assert harness.final(READER_STEP).status is IngestionStatus.FAILED
        assert harness.final(CRITIC_STEP).status is IngestionStatus.DONE
        assert knowledge.sources == ["The Guardian"]

    @pytest.mark.asyncio
    async def test_orchestration_failure_publishes_failed(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness([], sample_metadata, mock_llm)
        harness.enricher.enrich = AsyncMock(side_effect=RuntimeError("merge exploded"))

        with pytest.raises(PipelineError):
            await harness.pipeline.ingest(partial_metadata)

        last = harness.events[-1]
        assert last.step == IngestionStep.FAILED
        assert last.status is IngestionStatus.FAILED
        assert last.is_terminal
        assert await harness.store.get("OL45804W") is None
        assert harness.pipeline.is_running("OL45804W") is False


class TestQuoteGate:
    @pytest.mark.asyncio
    async def test_critic_waits_for_pending_reader(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper(
                    "Goodreads",
                    READER_STEP,
                    ChunkType.READER_REVIEW,
                    [make_chunk("Reader words.", rating=4)],
                    delay=0.05,
                ),
                _scraper(
                    "The Guardian",
                    CRITIC_STEP,
                    ChunkType.CRITIC_REVIEW,
                    [make_chunk("Critic words.", ChunkType.CRITIC_REVIEW)],
                ),
            ],
            sample_metadata,
            mock_llm,
        )

        await harness.pipeline.ingest(partial_metadata)

        assert harness.final(CRITIC_STEP).quote is None
        assert harness.final(READER_STEP).quote == "Reader words."

    @pytest.mark.asyncio
    async def test_forum_quote_released_when_reader_settles_empty_later(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW, delay=0.05),
                _scraper(
                    "Reddit",
                    FORUM_STEP,
                    ChunkType.COMMUNITY_DISCUSSION,
                    [make_chunk("Forum words.", ChunkType.COMMUNITY_DISCUSSION, source="Reddit")],
                ),
            ],
            sample_metadata,
            mock_llm,
        )

        await harness.pipeline.ingest(partial_metadata)

        settled = [
            (e.step, e.status.value, e.quote)
            for e in harness.events
            if e.step in (READER_STEP, FORUM_STEP) and e.status is not IngestionStatus.LOADING
        ]
        assert settled == [
            (FORUM_STEP, "done", None),
            (READER_STEP, "failed", None),
            (FORUM_STEP, "done", "Forum words."),
        ]
        assert harness.events[-1].quote == "Forum words."

    @pytest.mark.asyncio
    async def test_critic_text_never_becomes_the_quote(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW),
                _scraper(
                    "Reddit",
                    FORUM_STEP,
                    ChunkType.COMMUNITY_DISCUSSION,
                    [make_chunk("Forum words.", ChunkType.COMMUNITY_DISCUSSION, source="Reddit")],
                    delay=0.05,
                ),
                _scraper(
                    "The Guardian",
                    CRITIC_STEP,
                    ChunkType.CRITIC_REVIEW,
                    [make_chunk("Critic words.", ChunkType.CRITIC_REVIEW, source="The Guardian")],
                ),
            ],
            sample_metadata,
            mock_llm,
        )

        await harness.pipeline.ingest(partial_metadata)

        quoted = [(e.step, e.quote) for e in harness.events if e.quote is not None]
        assert quoted == [(FORUM_STEP, "Forum words."), (IngestionStep.READY, "Forum words.")]

    @pytest.mark.asyncio
    async def test_no_quote_from_critic_only_run(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper(
                    "The Guardian",
                    CRITIC_STEP,
                    ChunkType.CRITIC_REVIEW,
                    [make_chunk("Critic words.", ChunkType.CRITIC_REVIEW, source="The Guardian")],
                ),
            ],
            sample_metadata,
            mock_llm,
        )

        knowledge = await harness.pipeline.ingest(partial_metadata)

        assert knowledge.sources == ["The Guardian"]
        assert all(event.quote is None for event in harness.events)

    @pytest.mark.asyncio
    async def test_quote_is_truncated(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [_scraper("Goodreads", READER_STEP, ChunkType.READER_REVIEW, [make_chunk("x" * 500)])],
            sample_metadata,
            mock_llm,
        )

        await harness.pipeline.ingest(partial_metadata)

        quote = harness.final(READER_STEP).quote
        assert quote is not None
        assert len(quote) == 200


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_run(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        make_chunk: Callable[..., Chunk],
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness(
            [
                _scraper(
                    "Goodreads",
                    READER_STEP,
                    ChunkType.READER_REVIEW,
                    [make_chunk("Shared.")],
                    delay=0.05,
                )
            ],
            sample_metadata,
            mock_llm,
        )

        first = harness.pipeline.start(partial_metadata)
        second = harness.pipeline.start(partial_metadata)
        assert first is second
        assert harness.pipeline.is_running("OL45804W")
        assert harness.pipeline.running_count() == 1

        results: list[Any] = await asyncio.gather(first, harness.pipeline.ingest(partial_metadata))

        assert results[0] is results[1]
        harness.enricher.enrich.assert_awaited_once()
        assert harness.pipeline.running_count() == 0

    @pytest.mark.asyncio
    async def test_finished_run_allows_a_fresh_one(
        self,
        partial_metadata: BookMetadata,
        sample_metadata: BookMetadata,
        mock_llm: MagicMock,
    ) -> None:
        harness = _Harness([], sample_metadata, mock_llm)

        await harness.pipeline.ingest(partial_metadata)
        await harness.pipeline.ingest(partial_metadata)

        assert harness.enricher.enrich.await_count == 2
