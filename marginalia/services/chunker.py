"""Sentence-preserving text chunking for discourse sources.

Splits scraped text into :class:`~marginalia.models.knowledge.Chunk`
objects of roughly ``target_chars`` characters (~400 tokens), so that a
retrieval result always fits comfortably in an LLM prompt.

Boundaries fall only between sentences, on ``.``, ``!`` or ``?``
followed by whitespace.  Sentences are accumulated greedily; when the
next sentence would push the buffer past the bound, the buffer is
flushed and the sentence starts a new one.  A single sentence longer
than the bound is emitted whole rather than cut mid-sentence.
"""

from __future__ import annotations

import re
import uuid

import structlog

from marginalia.models.knowledge import Chunk, ChunkType

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TARGET_CHARS = 1600

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")


class TextChunker:
    """Splits text into sentence-aligned chunks.

    Parameters
    ----------
    target_chars:
        Upper bound on chunk length in characters (default 1600).
    """

    def __init__(self, target_chars: int = DEFAULT_TARGET_CHARS) -> None:
        self._target_chars = target_chars

    @property
    def target_chars(self) -> int:
        return self._target_chars

    def chunk(
        self,
        text: str,
        source: str,
        source_url: str | None,
        chunk_type: ChunkType,
        rating: int | None = None,
    ) -> list[Chunk]:
        """Split *text* into :class:`Chunk` objects tagged with the given provenance.

        Parameters
        ----------
        text:
            Raw text from one review, post, comment or article.
        source:
            Display name of the source, copied onto every chunk.
        source_url:
            Page the text came from, if any.
        chunk_type:
            Kind of discourse the text represents.
        rating:
            Optional 1-5 star rating; only meaningful for reader reviews.

        Returns
        -------
        list[Chunk]
            Chunks in text order.  Empty or whitespace-only input returns
            an empty list.
        """
        pieces = self.split(text)
        chunks = [
            Chunk(
                id=str(uuid.uuid4()),
                content=piece,
                source=source,
                source_url=source_url,
                type=chunk_type,
                rating=rating,
            )
            for piece in pieces
        ]
        if len(chunks) > 1:
            logger.debug("text_split", source=source, num_chunks=len(chunks), chars=len(text))
        return chunks

    def split(self, text: str) -> list[str]:
        """Return the chunk bodies for *text* without wrapping them in models."""
        if not text or not text.strip():
            return []

        stripped = text.strip()
        if len(stripped) <= self._target_chars:
            return [stripped]

        pieces: list[str] = []
        current = ""
        for sentence in _SENTENCE_BOUNDARY_RE.split(stripped):
            if not sentence:
                continue
            candidate = f"{current} {sentence}" if current else sentence
            if len(candidate) > self._target_chars and current:
                pieces.append(current)
                current = sentence
            else:
                current = candidate

        if current.strip():
            pieces.append(current.strip())
        return pieces


def chunk_text(
    text: str,
    source: str,
    source_url: str | None,
    chunk_type: ChunkType,
    rating: int | None = None,
    target_chars: int = DEFAULT_TARGET_CHARS,
) -> list[Chunk]:
    """Functional shortcut for ``TextChunker(target_chars).chunk(...)``."""
    return TextChunker(target_chars).chunk(text, source, source_url, chunk_type, rating)
