"""Custom exception hierarchy for Marginalia.

All application exceptions inherit from :class:`MarginaliaError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "anthropic", "open_library", "reddit") caused the
failure.

    MarginaliaError  (base -- catch-all for any marginalia error)
    +-- SourceError              (scraper / catalog fetch failure)
    +-- LLMError                 (any LLM API call failure)
    +-- ProviderUnavailableError (external service not configured / unreachable)
    +-- PipelineError            (ingestion orchestration)
    +-- ConfigurationError       (startup / missing config)
    +-- BookNotIngestedError     (chat against a book with no knowledge pack)
    +-- InvalidRequestError      (caller supplied missing or malformed input)

``SourceError`` never leaves a provider: scrapers and catalog adapters
raise it internally and resolve it to an empty result at their own
boundary.
"""


class MarginaliaError(Exception):
    """Base exception for all Marginalia errors.

    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[reddit] HTTP 429``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# External source errors
# ---------------------------------------------------------------------------

class SourceError(MarginaliaError):
    """Raised inside a scraper or catalog adapter when a fetch fails.

    Timeouts, non-2xx responses, and markup that does not match the
    expected shape all surface as this error before being absorbed.
    """

    def __init__(
        self,
        message: str = "Source fetch failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(MarginaliaError):
    """Raised when an external service is not configured or unreachable."""

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(MarginaliaError):
    """Raised when an LLM API call fails or returns an unusable response."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(MarginaliaError):
    """Raised when ingestion orchestration fails outside a delegated call."""

    def __init__(
        self,
        message: str = "Ingestion pipeline failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(MarginaliaError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Caller-facing errors
# ---------------------------------------------------------------------------

class BookNotIngestedError(MarginaliaError):
    """Raised when a chat turn targets a book with no stored knowledge pack."""

    def __init__(self, book_id: str) -> None:
        self._book_id = book_id
        super().__init__(
            message=(
                f"Book not ingested yet: {book_id}. "
                "Run ingestion for this book before chatting."
            )
        )

    @property
    def book_id(self) -> str:
        return self._book_id


class InvalidRequestError(MarginaliaError):
    """Raised when a caller omits required fields or sends a malformed payload."""

    def __init__(self, message: str = "Invalid request") -> None:
        super().__init__(message=message)
