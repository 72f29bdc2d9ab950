"""Abstract base class for LLM service providers.

Defines the contract for the large-language-model backend used for the
one-shot landscape synthesis and for streamed chat replies.
Implementations wrap the Anthropic API (Claude) or an OpenAI-compatible
endpoint; every call site stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator


# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider
# Located in: marginalia/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the synthesizer and chat responder."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        marginalia.utils.errors.LLMError
            If the API call fails or returns an invalid response.
        """

    @abstractmethod
    def stream_chat(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AsyncIterator[str]:
        """Stream a multi-turn chat completion as text fragments.

        Parameters
        ----------
        system_prompt:
            Instructions and retrieved context for the whole conversation.
        messages:
            Ordered ``{"role", "content"}`` turns ending with the new
            user message.  Roles are ``"user"`` or ``"assistant"``.
        temperature:
            Sampling temperature.
        max_tokens:
            Upper bound on the reply length.

        Returns
        -------
        AsyncIterator[str]
            Text deltas in arrival order, unmodified.

        Raises
        ------
        marginalia.utils.errors.LLMError
            If the request fails before or during streaming.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider has the credentials it needs.

        Implementations check configuration only; no network call is made.
        """
