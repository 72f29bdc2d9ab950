"""Interpretive-landscape synthesis.

One LLM completion per ingested book distils the scraped discourse into
three short summaries (critic consensus, reader sentiment, the central
debate) and five discussion questions rendered as buttons in the chat
UI.  The model is asked for a bare JSON object; anything that fails to
parse or validate is replaced by neutral fallback text, so synthesis
can never fail an ingestion.
"""

from __future__ import annotations

import json
import re
from typing import NamedTuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.models.book import BookMetadata
from marginalia.models.knowledge import Chunk, InterpretiveLandscape
from marginalia.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_SAMPLE_SIZE = 20
QUESTION_PROMPT_COUNT = 5

# Returned without an LLM call when ingestion found nothing at all.
EMPTY_LANDSCAPE = InterpretiveLandscape(
    critic_consensus="Limited critical coverage found.",
    reader_sentiment="Reader responses vary widely.",
    the_debate="No strong consensus found in online discussion.",
)

# Returned when the LLM call or its output is unusable.
FALLBACK_LANDSCAPE = InterpretiveLandscape(
    critic_consensus="Critical perspectives vary across sources.",
    reader_sentiment="Reader responses are divided.",
    the_debate="Multiple interpretations coexist in the discourse around this book.",
)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

_SYSTEM_PROMPT = (
    "You analyze reader and critic responses to a book and summarize the "
    "discourse around it.\n\n"
    "From the source excerpts you are given:\n"
    "1. Write THREE very concise summaries (STRICTLY 1-2 sentences each, max 50 words each):\n"
    "   - CRITICS: the critical consensus in one line\n"
    "   - READERS: the dominant reader sentiment in one line\n"
    "   - THE DEBATE: the single biggest point of disagreement\n"
    "2. Generate exactly 5 SHORT discussion questions (max 15 words each). They are "
    "displayed as clickable buttons, so they must be brief and specific to THIS book, "
    'e.g. "Is Kathy a reliable narrator or in deep denial?"\n\n'
    "Be specific and grounded in the sources.\n\n"
    "Return ONLY a JSON object in this format (no markdown, no backticks):\n"
    '{"criticConsensus": "...", "readerSentiment": "...", "theDebate": "...", '
    '"questionPrompts": ["...", "...", "...", "...", "..."]}'
)


class LandscapeResult(NamedTuple):
    landscape: InterpretiveLandscape
    question_prompts: list[str]


class _LandscapePayload(BaseModel):
    """The exact JSON object the model is asked to return."""

    model_config = ConfigDict(alias_generator=to_camel, extra="forbid")

    critic_consensus: str = Field(min_length=1)
    reader_sentiment: str = Field(min_length=1)
    the_debate: str = Field(min_length=1)
    question_prompts: list[str]


class LandscapeSynthesizer:
    """Builds the interpretive landscape and question prompts for a book."""

    def __init__(
        self,
        llm: ILLMProvider,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        max_tokens: int = 800,
    ) -> None:
        self._llm = llm
        self._sample_size = sample_size
        self._max_tokens = max_tokens

    async def synthesize(self, metadata: BookMetadata, chunks: list[Chunk]) -> LandscapeResult:
        """Summarize *chunks* for *metadata*; never raises."""
        if not chunks:
            logger.info("landscape_skipped_no_chunks", book_id=metadata.id)
            return LandscapeResult(EMPTY_LANDSCAPE, [])

        if not self._llm.is_available():
            logger.info(
                "landscape_skipped_no_llm",
                book_id=metadata.id,
                provider=self._llm.get_provider_name(),
            )
            return LandscapeResult(FALLBACK_LANDSCAPE, [])

        try:
            raw = await self._llm.complete(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=self._build_user_prompt(metadata, chunks),
                max_tokens=self._max_tokens,
            )
            result = self.parse(raw)
        except (LLMError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "landscape_generation_failed",
                book_id=metadata.id,
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            return LandscapeResult(FALLBACK_LANDSCAPE, [])
        except Exception as exc:
            # Client-side failures the adapter does not wrap in LLMError.
            logger.error(
                "landscape_generation_crashed",
                book_id=metadata.id,
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            return LandscapeResult(FALLBACK_LANDSCAPE, [])

        logger.info(
            "landscape_generated",
            book_id=metadata.id,
            sampled=min(len(chunks), self._sample_size),
            prompts=len(result.question_prompts),
        )
        return result

    @staticmethod
    def parse(raw: str) -> LandscapeResult:
        """Strip code fences, then parse and validate the model's JSON.

        Raises :class:`json.JSONDecodeError` or
        :class:`pydantic.ValidationError` on malformed output.
        """
        text = _CODE_FENCE_RE.sub("", raw.strip())
        payload = _LandscapePayload.model_validate(json.loads(text))
        landscape = InterpretiveLandscape(
            critic_consensus=payload.critic_consensus,
            reader_sentiment=payload.reader_sentiment,
            the_debate=payload.the_debate,
        )
        prompts = [p.strip() for p in payload.question_prompts if p.strip()]
        return LandscapeResult(landscape, prompts[:QUESTION_PROMPT_COUNT])

    def _build_user_prompt(self, metadata: BookMetadata, chunks: list[Chunk]) -> str:
        excerpts = "\n\n---\n\n".join(
            f"[{chunk.source} — {chunk.type.value}]\n{chunk.content}"
            for chunk in chunks[: self._sample_size]
        )
        return (
            f'Book: "{metadata.title}" by {metadata.author}\n\n'
            f"Source excerpts:\n{excerpts}"
        )
