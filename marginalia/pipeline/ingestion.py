"""Ingestion orchestrator: from a search hit to a stored knowledge pack.

Runs the per-book state machine::

    Fetching metadata -> Scraping (parallel) -> Synthesizing -> Ready
                                                             \\-> Failed

and broadcasts every transition through the injected
:class:`ProgressTracker`.  Source failures are normal: a scraper that
errors or times out reports ``failed`` for its own step and contributes
no chunks, and the run carries on with whatever the others found, even
nothing at all.  Only an error in the orchestration itself ends the run
with an ``Ingestion failed`` event.

Runs are single-flight per book id.  A second request for a book that is
already being ingested joins the running task instead of starting a
duplicate.  Runs are not tied to any consumer: when the client watching
a run disconnects, the run keeps going to completion (every fetch is
bounded by a deadline) and still stores its pack.
"""

from __future__ import annotations

import asyncio

import structlog

from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.interfaces.source_scraper import ISourceScraper
from marginalia.models.book import BookMetadata
from marginalia.models.knowledge import BookKnowledge, Chunk, ChunkType
from marginalia.models.pipeline import IngestionEvent, IngestionStatus, IngestionStep
from marginalia.pipeline.progress_tracker import ProgressTracker
from marginalia.services.landscape_synthesizer import LandscapeSynthesizer
from marginalia.services.metadata_enrichment import MetadataEnricher
from marginalia.utils.concurrency import gather_settled, with_deadline
from marginalia.utils.errors import PipelineError
from marginalia.utils.logging import get_logger
from marginalia.utils.text_normalizer import excerpt

QUOTE_MAX_CHARS = 200

# Only reader and forum text supplies the ambient quote; lower rank wins.
_QUOTE_RANK: dict[ChunkType, int] = {
    ChunkType.READER_REVIEW: 0,
    ChunkType.COMMUNITY_DISCUSSION: 1,
}


def pick_quote(chunks: list[Chunk]) -> str | None:
    """Return the leading excerpt of the first best-ranked quotable chunk, or ``None``."""
    candidates = [chunk for chunk in chunks if chunk.type in _QUOTE_RANK]
    if not candidates:
        return None
    best = min(candidates, key=lambda c: _QUOTE_RANK[c.type])
    return excerpt(best.content, QUOTE_MAX_CHARS) or None


class _QuoteGate:
    """Decides which scraper completion carries the ambient quote.

    A source with a quote is held until every source of a better rank
    has settled without one, then released exactly once.  Sources settle
    in any order, so a held quote can be released by a later completion
    of some other source.
    """

    def __init__(self, scrapers: list[ISourceScraper]) -> None:
        self._ranks = [_QUOTE_RANK.get(s.chunk_type) for s in scrapers]
        self._settled_without_quote: set[int] = set()
        self._held: dict[int, str] = {}
        self.issued: str | None = None

    def settle(self, index: int, chunks: list[Chunk]) -> tuple[int, str] | None:
        """Record a completion; return ``(scraper index, quote)`` once the quote is released."""
        quote = pick_quote(chunks) if self._ranks[index] is not None else None
        if quote is None:
            self._settled_without_quote.add(index)
        else:
            self._held[index] = quote
        return self._release()

    def _release(self) -> tuple[int, str] | None:
        if self.issued is not None or not self._held:
            return None
        index = min(self._held, key=lambda i: (self._ranks[i], i))
        rank = self._ranks[index]
        for other, other_rank in enumerate(self._ranks):
            if other_rank is None or other in self._settled_without_quote:
                continue
            if other_rank < rank:
                return None
        self.issued = self._held.pop(index)
        return index, self.issued


class IngestionPipeline:
    """Builds and stores a :class:`BookKnowledge` pack for one book.

    All collaborators are injected; the pipeline never creates them.

    Parameters
    ----------
    enricher:
        Completes the partial metadata record.
    scrapers:
        Discourse sources, run concurrently.  Their order is the order
        chunks and sources appear in the pack.
    synthesizer:
        Produces the interpretive landscape and question prompts.
    store:
        Destination for the finished pack.
    progress_tracker:
        Receives every progress event.
    source_deadline:
        Upper bound in seconds on each scraper.  A scraper that runs
        past it counts as empty.
    """

    def __init__(
        self,
        enricher: MetadataEnricher,
        scrapers: list[ISourceScraper],
        synthesizer: LandscapeSynthesizer,
        store: IKnowledgeStore,
        progress_tracker: ProgressTracker,
        source_deadline: float | None = 60.0,
    ) -> None:
        self._enricher = enricher
        self._scrapers = scrapers
        self._synthesizer = synthesizer
        self._store = store
        self._progress = progress_tracker
        self._source_deadline = source_deadline
        self._in_flight: dict[str, asyncio.Task[BookKnowledge]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, partial: BookMetadata) -> asyncio.Task[BookKnowledge]:
        """Start ingesting *partial*, or return the run already in flight for its id."""
        book_id = partial.id
        running = self._in_flight.get(book_id)
        if running is not None and not running.done():
            self._logger.info("ingestion_joined", book_id=book_id)
            return running

        task = asyncio.create_task(self._run(partial), name=f"ingest:{book_id}")
        self._in_flight[book_id] = task
        task.add_done_callback(lambda t: self._finished(book_id, t))
        return task

    async def ingest(self, partial: BookMetadata) -> BookKnowledge:
        """Ingest *partial* and wait for the finished pack.

        Raises
        ------
        PipelineError
            If orchestration itself failed.
        """
        return await self.start(partial)

    def is_running(self, book_id: str) -> bool:
        task = self._in_flight.get(book_id)
        return task is not None and not task.done()

    def running_count(self) -> int:
        return sum(1 for task in self._in_flight.values() if not task.done())

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def _run(self, partial: BookMetadata) -> BookKnowledge:
        book_id = partial.id
        self._logger.info("ingestion_started", book_id=book_id, title=partial.title)
        try:
            return await self._run_steps(partial)
        except Exception as exc:
            self._logger.error(
                "ingestion_failed",
                book_id=book_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await self._emit(book_id, IngestionStep.FAILED, IngestionStatus.FAILED)
            raise PipelineError(message=f"Ingestion failed for {book_id}: {exc}") from exc

    async def _run_steps(self, partial: BookMetadata) -> BookKnowledge:
        book_id = partial.id

        # Step 1: metadata.  A degraded record is still "done".
        await self._emit(book_id, IngestionStep.FETCH_METADATA, IngestionStatus.LOADING)
        metadata = await self._enricher.enrich(partial)
        await self._emit(book_id, IngestionStep.FETCH_METADATA, IngestionStatus.DONE)

        # Step 2: all scrapers at once, each reporting its own outcome.
        for scraper in self._scrapers:
            await self._emit(book_id, scraper.step_name, IngestionStatus.LOADING)

        gate = _QuoteGate(self._scrapers)
        results = await gather_settled(
            [
                self._run_scraper(book_id, idx, scraper, metadata, gate)
                for idx, scraper in enumerate(self._scrapers)
            ],
            labels=[scraper.get_source_name() for scraper in self._scrapers],
            logger=self._logger,
        )

        # Step 3: aggregate in scraper order.
        chunks: list[Chunk] = []
        sources: list[str] = []
        for scraper, result in zip(self._scrapers, results):
            if isinstance(result, BaseException) or not result:
                continue
            chunks.extend(result)
            if scraper.get_source_name() not in sources:
                sources.append(scraper.get_source_name())

        # Step 4: synthesis.
        await self._emit(book_id, IngestionStep.SYNTHESIZE, IngestionStatus.LOADING)
        landscape, prompts = await self._synthesizer.synthesize(metadata, chunks)

        # Step 5: store and announce.
        knowledge = BookKnowledge(
            metadata=metadata,
            chunks=chunks,
            interpretive_landscape=landscape,
            question_prompts=prompts,
            chunk_count=len(chunks),
            sources=sources,
        )
        await self._store.set(metadata.id, knowledge)
        await self._progress.publish(
            book_id,
            IngestionEvent(
                step=IngestionStep.READY,
                status=IngestionStatus.DONE,
                quote=gate.issued,
                landscape=landscape,
                sources=sources,
            ),
        )
        self._logger.info(
            "ingestion_complete",
            book_id=book_id,
            chunks=len(chunks),
            sources=sources,
            prompts=len(prompts),
        )
        return knowledge

    async def _run_scraper(
        self,
        book_id: str,
        index: int,
        scraper: ISourceScraper,
        metadata: BookMetadata,
        gate: _QuoteGate,
    ) -> list[Chunk]:
        try:
            chunks = await with_deadline(
                scraper.fetch(metadata.title, metadata.author), self._source_deadline
            )
        except asyncio.TimeoutError:
            self._logger.warning(
                "scraper_deadline_exceeded",
                source=scraper.get_source_name(),
                deadline=self._source_deadline,
            )
            chunks = []
        except Exception as exc:
            # Scrapers resolve their own errors; this covers a broken one.
            self._logger.warning(
                "scraper_raised",
                source=scraper.get_source_name(),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            chunks = []

        released = gate.settle(index, chunks)
        status = IngestionStatus.DONE if chunks else IngestionStatus.FAILED
        own_quote = released[1] if released is not None and released[0] == index else None
        await self._emit(book_id, scraper.step_name, status, quote=own_quote)

        if released is not None and released[0] != index:
            # This completion unblocked a source that had already reported done.
            held_index, quote = released
            await self._emit(
                book_id, self._scrapers[held_index].step_name, IngestionStatus.DONE, quote=quote
            )
        return chunks

    async def _emit(
        self,
        book_id: str,
        step: str,
        status: IngestionStatus,
        quote: str | None = None,
    ) -> None:
        await self._progress.publish(book_id, IngestionEvent(step=step, status=status, quote=quote))

    def _finished(self, book_id: str, task: asyncio.Task[BookKnowledge]) -> None:
        if self._in_flight.get(book_id) is task:
            del self._in_flight[book_id]
        # Mark the outcome retrieved; the failure was already logged and
        # published, and a detached run may have no awaiter.
        if not task.cancelled():
            task.exception()
