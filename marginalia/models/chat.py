"""Conversation turn model."""

from __future__ import annotations

from enum import Enum

from marginalia.models.book import WireModel


class ChatRole(str, Enum):  # noqa: UP042
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(WireModel):
    """One turn of a conversation, held only by the calling session."""

    role: ChatRole
    content: str
    # Source names the assistant drew on; only set on assistant turns.
    sources: list[str] | None = None

    def to_llm_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}
