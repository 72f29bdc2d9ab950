"""Application settings loaded from environment variables via pydantic-settings.

Values are read from two sources, in priority order:

  1. Environment variables, e.g. ``ANTHROPIC_API_KEY=sk-ant-...``
  2. The ``.env`` file in the project root (local development)

Field ``guardian_api_key`` maps to env var ``GUARDIAN_API_KEY`` and so on.
Every credential is optional.  An empty string means "not configured" and
the matching adapter drops to its public tier: Google Books is queried
without a key, The Guardian with its shared ``test`` key.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Marginalia application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === LLM Providers ===
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-6"
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, etc.)
    openai_text_model: str = ""

    # === Catalogs & sources ===
    google_books_api_key: str = ""
    guardian_api_key: str = "test"

    # === Knowledge store ===
    store_max_books: int = 500
    store_ttl_seconds: int = 0  # 0 = keep for the process lifetime

    # === Retrieval & generation ===
    retrieval_top_k: int = 8
    chat_max_tokens: int = 1024
    landscape_max_tokens: int = 800
    # Upper bound on any single fan-out operation (one scraper, one lookup).
    source_deadline_seconds: float = 60.0

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty API keys configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
