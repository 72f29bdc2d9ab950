"""Literary Hub critic-review scraper.

Runs the site search, follows the first couple of article links and
keeps the substantial paragraphs of each article.  When the paragraph
markup yields too little text, trafilatura's main-content extraction
is tried instead.
"""

from __future__ import annotations

import trafilatura

from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.providers.scrapers.base import BaseScraper
from marginalia.utils.text_normalizer import collapse_whitespace

_SEARCH_URL = "https://lithub.com/"
_LINK_SELECTOR = "article a, .post-title a, h2 a, h3 a"
_PARAGRAPH_SELECTOR = "article p, .entry-content p, .post-content p"
_MIN_PARAGRAPH_CHARS = 50
_MIN_BODY_CHARS = 200


class LitHubScraper(BaseScraper):
    """Collects essays and reviews from lithub.com."""

    def __init__(self, *args, max_articles: int = 2, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._max_articles = max_articles

    def get_source_name(self) -> str:
        return "Literary Hub"

    @property
    def step_name(self) -> str:
        return "Browsing literary magazines"

    @property
    def chunk_type(self) -> ChunkType:
        return ChunkType.CRITIC_REVIEW

    async def _scrape(self, title: str, author: str) -> list[Chunk]:
        search = await self._fetch_page(_SEARCH_URL, params={"s": f"{title} {author}"})
        if search is None:
            return []

        links: list[str] = []
        for anchor in search.select(_LINK_SELECTOR):
            href = anchor.get("href")
            if href and "lithub.com" in href and href not in links:
                links.append(href)

        chunks: list[Chunk] = []
        for link in links[: self._max_articles]:
            chunks.extend(await self._article_chunks(link))
        return chunks

    async def _article_chunks(self, url: str) -> list[Chunk]:
        page = await self._fetch_page(url)
        if page is None:
            return []

        heading = page.select_one("h1")
        heading_text = heading.get_text(strip=True) if heading else ""

        paragraphs = [p.get_text(" ", strip=True) for p in page.select(_PARAGRAPH_SELECTOR)]
        body = " ".join(p for p in paragraphs if len(p) > _MIN_PARAGRAPH_CHARS)
        if len(body) <= _MIN_BODY_CHARS:
            extracted = trafilatura.extract(str(page), include_comments=False)
            if extracted:
                self._logger.debug("lithub_trafilatura_fallback", url=url, paragraph_chars=len(body))
                body = max(body, collapse_whitespace(extracted), key=len)

        if len(body) <= _MIN_BODY_CHARS:
            return []
        return self._chunker.chunk(
            f"[Literary Hub — {heading_text}]\n{body}",
            self.get_source_name(),
            url,
            self.chunk_type,
        )
