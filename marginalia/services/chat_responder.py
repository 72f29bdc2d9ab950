"""Grounded chat over an ingested book.

For each user turn the responder retrieves the most relevant chunks from
the book's knowledge pack, builds a companion-persona system prompt
around them and streams the LLM's reply back unchanged.  The list of
sources behind the retrieved chunks is computed up front so the HTTP
layer can send it as a header before the first token.

Responding is split in two so that errors a caller must see (book not
ingested, no LLM configured) surface before any streaming begins:

    reply = await responder.prepare(book_id, message, history)
    async for token in reply.stream: ...
"""

from __future__ import annotations

from collections import Counter
from collections.abc import AsyncIterator
from dataclasses import dataclass

import structlog

from marginalia.interfaces.knowledge_store import IKnowledgeStore
from marginalia.interfaces.llm_provider import ILLMProvider
from marginalia.models.book import BookMetadata
from marginalia.models.chat import ChatMessage
from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.services.retrieval import DEFAULT_TOP_K, RetrievalEngine
from marginalia.utils.errors import BookNotIngestedError, LLMError, ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)

_MANIFEST_LABELS: dict[ChunkType, str] = {
    ChunkType.READER_REVIEW: "reader reviews",
    ChunkType.CRITIC_REVIEW: "critical reviews from the literary press",
    ChunkType.COMMUNITY_DISCUSSION: "community discussion threads",
    ChunkType.AUTHOR_INTERVIEW: "author interviews",
}

_PERSONA_RULES = (
    "Your role is to help the user process, understand, and discuss this book, "
    "as a thoughtful companion who has read it and absorbed the discourse around it.\n\n"
    "Core principles:\n"
    "- Assume the user has finished the book. Discuss freely, including the ending.\n"
    "- Do NOT summarise the plot unless explicitly asked; the user knows it.\n"
    "- Be specific. Reference actual scenes, passages, characters and structural choices.\n"
    "- Surface interpretive tensions: where readers disagree, where critics diverge "
    "from audiences, where the book resists easy reading.\n"
    "- Cite sources by name inline: \"Goodreads readers broadly felt...\", "
    "\"The Guardian argues...\", \"Reddit discussions often circle around...\"\n"
    "- Never just tell the user what something means. Offer readings and ask "
    "questions back so they arrive at their own synthesis.\n"
    "- Match the user's tone, whether analytical, emotional or casual.\n"
    "- If sources are thin, say so plainly: \"There isn't much critical coverage "
    "of this one, but...\"\n"
    "- Keep responses conversational and focused, not lecture-length."
)

_NO_PASSAGES_MARKER = (
    "[No specific source passages retrieved for this query. "
    "Draw on your general knowledge about this book.]"
)


@dataclass
class ChatReply:
    """A prepared reply: its source list and a lazily started token stream."""

    sources: list[str]
    stream: AsyncIterator[str]


class ChatResponder:
    """Answers user messages about an ingested book."""

    def __init__(
        self,
        llm: ILLMProvider,
        store: IKnowledgeStore,
        retrieval: RetrievalEngine | None = None,
        top_k: int = DEFAULT_TOP_K,
        max_tokens: int = 1024,
    ) -> None:
        self._llm = llm
        self._store = store
        self._retrieval = retrieval or RetrievalEngine()
        self._top_k = top_k
        self._max_tokens = max_tokens

    async def prepare(
        self,
        book_id: str,
        message: str,
        history: list[ChatMessage] | None = None,
    ) -> ChatReply:
        """Retrieve context and set up the streaming completion.

        Raises
        ------
        BookNotIngestedError
            If no knowledge pack exists for *book_id*.
        ProviderUnavailableError
            If the LLM provider has no credentials configured.
        """
        knowledge = await self._store.get(book_id)
        if knowledge is None:
            raise BookNotIngestedError(book_id)
        if not self._llm.is_available():
            raise ProviderUnavailableError(
                message="No LLM provider is configured",
                provider_name=self._llm.get_provider_name(),
            )

        retrieved = self._retrieval.retrieve(message, knowledge.chunks, self._top_k)
        sources = list(dict.fromkeys(chunk.source for chunk in retrieved))
        system_prompt = build_system_prompt(knowledge.metadata, retrieved, knowledge.sources)
        messages = to_llm_messages(history or [], message)

        logger.info(
            "chat_prepared",
            book_id=book_id,
            retrieved=len(retrieved),
            sources=sources,
            history_turns=len(history or []),
        )
        return ChatReply(sources=sources, stream=self._stream(book_id, system_prompt, messages))

    async def _stream(
        self,
        book_id: str,
        system_prompt: str,
        messages: list[dict[str, str]],
    ) -> AsyncIterator[str]:
        emitted = 0
        try:
            async for token in self._llm.stream_chat(
                system_prompt=system_prompt,
                messages=messages,
                max_tokens=self._max_tokens,
            ):
                emitted += len(token)
                yield token
        except LLMError as exc:
            # Headers are already sent; the stream just ends early.
            logger.error("chat_stream_failed", book_id=book_id, error=str(exc), chars=emitted)
            return
        logger.debug("chat_stream_complete", book_id=book_id, chars=emitted)


def to_llm_messages(history: list[ChatMessage], message: str) -> list[dict[str, str]]:
    """Convert *history* to provider messages and append the new user turn."""
    messages = [turn.to_llm_message() for turn in history]
    messages.append({"role": "user", "content": message})
    return messages


def build_system_prompt(
    metadata: BookMetadata,
    retrieved: list[Chunk],
    sources: list[str],
) -> str:
    """Assemble the companion system prompt for one chat turn."""
    year = f" ({metadata.year})" if metadata.year else ""
    lines = [
        f'You are a knowledgeable book companion for "{metadata.title}" by {metadata.author}{year}.',
        "",
        "You have access to the following knowledge sources: "
        + (", ".join(sources) if sources else "limited sources available"),
    ]

    counts = Counter(chunk.type for chunk in retrieved)
    for chunk_type, label in _MANIFEST_LABELS.items():
        if counts[chunk_type]:
            lines.append(f"- {counts[chunk_type]} {label}")
    if not sources:
        lines.append(
            "- Note: Limited online discussion was found, so draw on your own knowledge directly."
        )

    prompt = "\n".join(lines) + "\n\n" + _PERSONA_RULES

    if retrieved:
        blocks = "\n\n".join(
            f"--- {_source_label(chunk)} ---\n{chunk.content}" for chunk in retrieved
        )
        prompt += f"\n\nRelevant source passages:\n{blocks}"
    else:
        prompt += f"\n\n{_NO_PASSAGES_MARKER}"
    return prompt


def _source_label(chunk: Chunk) -> str:
    return f"{chunk.source} ({chunk.rating}★)" if chunk.rating else chunk.source
