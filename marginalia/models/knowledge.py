"""Knowledge-pack models: chunks, the interpretive landscape, and the pack itself.

A :class:`Chunk` is the atomic unit of retrievable evidence.  Chunks are
produced by a scraper + chunker pair, never mutated, and only ever live
inside a :class:`BookKnowledge` aggregate.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import Field, model_validator

from marginalia.models.book import BookMetadata, WireModel


class ChunkType(str, Enum):  # noqa: UP042
    """Kind of discourse a chunk was extracted from."""

    READER_REVIEW = "reader_review"
    CRITIC_REVIEW = "critic_review"
    AUTHOR_INTERVIEW = "author_interview"
    COMMUNITY_DISCUSSION = "community_discussion"


class Chunk(WireModel):
    """A bounded-size, provenance-tagged span of source text."""

    id: str
    content: str = Field(min_length=1)
    # Display name of the origin, e.g. "Goodreads" or "The Guardian".
    source: str
    source_url: str | None = None
    type: ChunkType
    rating: int | None = Field(default=None, ge=1, le=5)

    @model_validator(mode="after")
    def _rating_only_on_reader_reviews(self) -> Chunk:
        if self.rating is not None and self.type is not ChunkType.READER_REVIEW:
            raise ValueError("rating is only valid on reader_review chunks")
        return self


class InterpretiveLandscape(WireModel):
    """Three short synthesized summaries of the discourse around a book."""

    critic_consensus: str
    reader_sentiment: str
    the_debate: str


class BookKnowledge(WireModel):
    """The complete knowledge pack for one book, keyed by ``metadata.id``.

    Invariants: ``chunk_count`` equals ``len(chunks)`` and ``sources``
    names exactly the sources that contributed at least one chunk.
    """

    metadata: BookMetadata
    chunks: list[Chunk] = Field(default_factory=list)
    interpretive_landscape: InterpretiveLandscape
    question_prompts: list[str] = Field(default_factory=list)
    chunk_count: int = Field(default=0, ge=0)
    ingested_at: datetime = Field(
        default_factory=lambda: datetime.now(tz=timezone.utc)  # noqa: UP017
    )
    sources: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_aggregate(self) -> BookKnowledge:
        if self.chunk_count != len(self.chunks):
            raise ValueError(
                f"chunk_count={self.chunk_count} does not match {len(self.chunks)} chunks"
            )
        contributing = {chunk.source for chunk in self.chunks}
        if set(self.sources) != contributing or len(self.sources) != len(set(self.sources)):
            raise ValueError(
                f"sources {self.sources} must list each contributing source exactly once"
            )
        return self

    @property
    def book_id(self) -> str:
        return self.metadata.id
