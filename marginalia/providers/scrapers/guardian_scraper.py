"""The Guardian critic-review scraper.

Queries the Guardian Open Platform content API restricted to the books
section.  The API returns article text directly via ``show-fields`` so no
HTML parsing is needed.  The public ``test`` key works for low-volume use.
"""

from __future__ import annotations

from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.providers.scrapers.base import BaseScraper

_SEARCH_URL = "https://content.guardianapis.com/search"
_MIN_ARTICLE_CHARS = 100


class GuardianScraper(BaseScraper):
    """Collects book-section articles from The Guardian."""

    def __init__(self, *args, api_key: str = "test", max_articles: int = 4, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._api_key = api_key or "test"
        self._max_articles = max_articles

    def get_source_name(self) -> str:
        return "The Guardian"

    @property
    def step_name(self) -> str:
        return "Loading critical reviews"

    @property
    def chunk_type(self) -> ChunkType:
        return ChunkType.CRITIC_REVIEW

    async def _scrape(self, title: str, author: str) -> list[Chunk]:
        payload = await self._fetch_json(
            _SEARCH_URL,
            {
                "q": f"{title} {author}",
                "section": "books",
                "api-key": self._api_key,
                "show-fields": "bodyText,standfirst",
                "page-size": 5,
            },
        )
        if not isinstance(payload, dict):
            return []

        articles = (payload.get("response") or {}).get("results") or []
        chunks: list[Chunk] = []
        for article in articles[: self._max_articles]:
            fields = article.get("fields") or {}
            combined = "\n\n".join(
                part for part in (fields.get("standfirst"), fields.get("bodyText")) if part
            )
            if len(combined) <= _MIN_ARTICLE_CHARS:
                continue
            chunks.extend(
                self._chunker.chunk(
                    f"[The Guardian — {article.get('webTitle', '')}]\n{combined}",
                    self.get_source_name(),
                    article.get("webUrl"),
                    self.chunk_type,
                )
            )
        return chunks
