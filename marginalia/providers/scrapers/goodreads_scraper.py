"""Goodreads reader-review scraper.

Searches Goodreads for ``title author``, follows the first book link and
extracts review cards from the book page.  Goodreads reshuffles its
markup often, so every lookup tries a list of selectors in order and
takes the first that matches.  When no review card yields usable text,
the main page content is kept as a single coarse chunk instead.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Tag

from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.providers.scrapers.base import BaseScraper
from marginalia.utils.text_normalizer import collapse_whitespace

_BASE_URL = "https://www.goodreads.com"

_BOOK_LINK_SELECTORS = (
    "a.bookTitle",
    'a[href*="/book/show/"]',
    ".bookTitle a",
    'table.tableList a[href*="/book/show/"]',
)
_REVIEW_SELECTORS = (
    '[data-testid="review"]',
    ".ReviewCard",
    "article.ReviewCard",
    '[itemprop="reviews"]',
    ".review",
)
_CONTENT_SELECTORS = (
    '[data-testid="contentContainer"]',
    ".ReviewText__content",
    ".ReviewCard__text",
    "span.readable",
)
_RATING_SELECTOR = '[aria-label*="star"], [aria-label*="Rating"], [data-testid*="rating"]'
_MAIN_CONTENT_SELECTORS = (".BookPage__mainContent", "main")

_MIN_CARD_TEXT_CHARS = 50
_MIN_REVIEW_CHARS = 100
_MIN_FALLBACK_CHARS = 500
_FALLBACK_MAX_CHARS = 3000
_RATING_DIGIT_RE = re.compile(r"([1-5])")


class GoodreadsScraper(BaseScraper):
    """Scrapes individual reader reviews from a Goodreads book page."""

    _DEFAULT_TIMEOUT = 25.0

    def __init__(self, *args, max_reviews: int = 12, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._max_reviews = max_reviews

    def get_source_name(self) -> str:
        return "Goodreads"

    @property
    def step_name(self) -> str:
        return "Reading Goodreads reviews"

    @property
    def chunk_type(self) -> ChunkType:
        return ChunkType.READER_REVIEW

    async def _scrape(self, title: str, author: str) -> list[Chunk]:
        search = await self._fetch_page(f"{_BASE_URL}/search", params={"q": f"{title} {author}"})
        if search is None:
            return []

        book_url = self._find_book_url(search)
        if not book_url:
            self._logger.info("goodreads_no_book_found", title=title)
            return []

        page = await self._fetch_page(book_url)
        if page is None:
            return []

        chunks: list[Chunk] = []
        for card in self._find_review_cards(page)[: self._max_reviews]:
            text = self._review_text(card)
            if len(text) > _MIN_REVIEW_CHARS:
                chunks.extend(
                    self._chunker.chunk(
                        text, self.get_source_name(), book_url, self.chunk_type, self._rating(card)
                    )
                )

        if not chunks:
            chunks = self._fallback_chunks(page, title, book_url)
        return chunks

    # ------------------------------------------------------------------
    # Markup helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _find_book_url(soup: BeautifulSoup) -> str | None:
        for selector in _BOOK_LINK_SELECTORS:
            link = soup.select_one(selector)
            href = link.get("href") if link else None
            if href:
                return href if href.startswith("http") else f"{_BASE_URL}{href}"
        return None

    @staticmethod
    def _find_review_cards(soup: BeautifulSoup) -> list[Tag]:
        for selector in _REVIEW_SELECTORS:
            cards = soup.select(selector)
            if cards:
                return cards
        return []

    @staticmethod
    def _review_text(card: Tag) -> str:
        text = ""
        for selector in _CONTENT_SELECTORS:
            node = card.select_one(selector)
            text = node.get_text(" ", strip=True) if node else ""
            if len(text) > _MIN_CARD_TEXT_CHARS:
                break
        return text.strip()

    @staticmethod
    def _rating(card: Tag) -> int | None:
        node = card.select_one(_RATING_SELECTOR)
        label = node.get("aria-label") if node else None
        if not label:
            return None
        match = _RATING_DIGIT_RE.search(label)
        return int(match.group(1)) if match else None

    def _fallback_chunks(self, page: BeautifulSoup, title: str, book_url: str) -> list[Chunk]:
        for selector in _MAIN_CONTENT_SELECTORS:
            node = page.select_one(selector)
            if node is None:
                continue
            body = collapse_whitespace(node.get_text(" "))
            if len(body) > _MIN_FALLBACK_CHARS:
                self._logger.info("goodreads_raw_text_fallback", title=title, chars=len(body))
                return self._chunker.chunk(
                    f"[Goodreads page content for {title}]\n{body[:_FALLBACK_MAX_CHARS]}",
                    self.get_source_name(),
                    book_url,
                    self.chunk_type,
                )
        return []
