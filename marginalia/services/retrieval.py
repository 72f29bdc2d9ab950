"""Keyword retrieval over a book's chunk set.

Ranks chunks against a chat message without embeddings: query and chunk
are tokenized the same way, exact token hits and partial (substring)
hits are scored, the score is damped by chunk length and then weighted
by chunk type.  The ranked list is re-ordered so the first results span
as many chunk types as possible before the rest is filled by score.

When the query carries no meaningful tokens ("what do you think?"), the
engine falls back to a round-robin sample across chunk types instead of
returning arbitrary low-scoring chunks.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

import structlog

from marginalia.models.knowledge import Chunk, ChunkType

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_TOP_K = 8

_NON_WORD_RE = re.compile(r"[^\w\s]")

STOP_WORDS = frozenset(
    {
        "a", "an", "the", "is", "it", "in", "on", "at", "to", "for", "of",
        "and", "or", "but", "with", "this", "that", "was", "are", "be",
        "been", "have", "has", "had", "do", "did", "what", "how", "why",
        "when", "where", "i", "you", "he", "she", "we", "they", "me",
        "him", "her", "us", "them",
    }
)


@dataclass(frozen=True)
class RetrievalWeights:
    """Scoring constants for :class:`RetrievalEngine`."""

    exact_match: float = 1.0
    partial_match: float = 0.5
    type_multipliers: dict[ChunkType, float] = field(
        default_factory=lambda: {
            ChunkType.CRITIC_REVIEW: 1.3,
            ChunkType.AUTHOR_INTERVIEW: 1.4,
        }
    )

    @classmethod
    def from_config(cls, config: dict) -> RetrievalWeights:
        """Build weights from the ``retrieval`` section of ``config.yaml``."""
        multipliers = {
            ChunkType(name): float(value)
            for name, value in (config.get("type_multipliers") or {}).items()
        }
        defaults = cls()
        return cls(
            exact_match=float(config.get("exact_match_weight", defaults.exact_match)),
            partial_match=float(config.get("partial_match_weight", defaults.partial_match)),
            type_multipliers=multipliers or defaults.type_multipliers,
        )

    def multiplier(self, chunk_type: ChunkType) -> float:
        return self.type_multipliers.get(chunk_type, 1.0)


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation and drop short tokens and stop words."""
    cleaned = _NON_WORD_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in STOP_WORDS]


class RetrievalEngine:
    """Scores and selects the chunks most relevant to a query."""

    def __init__(self, weights: RetrievalWeights | None = None) -> None:
        self._weights = weights or RetrievalWeights()

    def retrieve(self, query: str, chunks: list[Chunk], top_k: int = DEFAULT_TOP_K) -> list[Chunk]:
        """Return at most *top_k* chunks for *query*.

        Parameters
        ----------
        query:
            The user's message.
        chunks:
            Every chunk in the book's knowledge pack, in pack order.
        top_k:
            Maximum number of chunks to return.

        Returns
        -------
        list[Chunk]
            Type-diverse picks first, then the best remaining by score.
        """
        if not chunks or top_k <= 0:
            return []

        query_tokens = tokenize(query)
        if not query_tokens:
            logger.debug("retrieval_diversity_sample", chunks=len(chunks), top_k=top_k)
            return self.diversity_sample(chunks, top_k)

        scored = [(self.score(query_tokens, chunk), chunk) for chunk in chunks]
        # sorted() is stable, so ties keep pack order.
        scored.sort(key=lambda pair: pair[0], reverse=True)
        candidates = [chunk for _, chunk in scored[: top_k * 2]]

        selected = self._diversify(candidates, top_k)
        logger.debug(
            "retrieval_complete",
            query_tokens=len(query_tokens),
            candidates=len(candidates),
            selected=len(selected),
        )
        return selected

    def score(self, query_tokens: list[str], chunk: Chunk) -> float:
        """Score one chunk against already-tokenized query tokens."""
        chunk_tokens = tokenize(chunk.content)
        token_set = set(chunk_tokens)

        raw = 0.0
        for token in query_tokens:
            if token in token_set:
                raw += self._weights.exact_match
            raw += self._weights.partial_match * sum(
                1 for other in token_set if other != token and token in other
            )

        normalized = raw / math.log(len(chunk_tokens) + 2)
        return normalized * self._weights.multiplier(chunk.type)

    @staticmethod
    def diversity_sample(chunks: list[Chunk], top_k: int) -> list[Chunk]:
        """Round-robin across chunk types, in order of first appearance."""
        buckets: dict[ChunkType, list[Chunk]] = {}
        for chunk in chunks:
            buckets.setdefault(chunk.type, []).append(chunk)

        sample: list[Chunk] = []
        depth = 0
        while len(sample) < top_k:
            took_any = False
            for bucket in buckets.values():
                if depth < len(bucket):
                    sample.append(bucket[depth])
                    took_any = True
                    if len(sample) == top_k:
                        break
            if not took_any:
                break
            depth += 1
        return sample

    @staticmethod
    def _diversify(candidates: list[Chunk], top_k: int) -> list[Chunk]:
        selected: list[Chunk] = []
        seen_types: set[ChunkType] = set()
        for chunk in candidates:
            if len(selected) >= top_k:
                break
            if chunk.type not in seen_types:
                seen_types.add(chunk.type)
                selected.append(chunk)

        chosen = {chunk.id for chunk in selected}
        for chunk in candidates:
            if len(selected) >= top_k:
                break
            if chunk.id not in chosen:
                chosen.add(chunk.id)
                selected.append(chunk)
        return selected
