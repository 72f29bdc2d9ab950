"""Reddit community-discussion scraper.

Uses Reddit's public ``.json`` endpoints: two subreddit-restricted
searches (r/books, r/literature) plus a site-wide quoted-title search.
Posts are deduplicated by permalink and the most-discussed ones are
kept.  Each kept post contributes its self text and its highest-scored
top-level comments.  Requests are spaced out because Reddit rate-limits
anonymous clients aggressively: searches are spaced by one second and
comment-thread fetches by 0.8 seconds.
"""

from __future__ import annotations

from typing import Any

from marginalia.models.knowledge import Chunk, ChunkType
from marginalia.providers.scrapers.base import BaseScraper

_BASE_URL = "https://www.reddit.com"
_REMOVED_MARKERS = frozenset({"[deleted]", "[removed]"})
_MIN_SELFTEXT_CHARS = 80
_MIN_COMMENT_CHARS = 60


class RedditScraper(BaseScraper):
    """Collects Reddit posts and top comments that discuss a book."""

    _DEFAULT_TIMEOUT = 12.0
    _DEFAULT_DELAY = 1.0

    def __init__(
        self,
        *args,
        max_posts: int = 6,
        comments_per_post: int = 4,
        comment_delay: float | None = None,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._max_posts = max_posts
        self._comments_per_post = comments_per_post
        # Comment threads are fetched slightly faster than searches.
        self._comment_delay = (
            comment_delay if comment_delay is not None else min(0.8, self._request_delay)
        )

    def get_source_name(self) -> str:
        return "Reddit"

    @property
    def step_name(self) -> str:
        return "Scanning Reddit discussions"

    @property
    def chunk_type(self) -> ChunkType:
        return ChunkType.COMMUNITY_DISCUSSION

    async def _scrape(self, title: str, author: str) -> list[Chunk]:
        searches = [
            (f"{_BASE_URL}/r/books/search.json", {"q": title, "restrict_sr": 1, "limit": 5}),
            (f"{_BASE_URL}/r/literature/search.json", {"q": title, "restrict_sr": 1, "limit": 3}),
            (f"{_BASE_URL}/search.json", {"q": f'"{title}" {author}', "limit": 5, "type": "link"}),
        ]
        posts: list[dict[str, Any]] = []
        for url, params in searches:
            listing = await self._fetch_json(url, {**params, "sort": "relevance", "t": "all"})
            posts.extend(self._listing_posts(listing))

        selected = self._select_posts(posts)
        self._logger.info("reddit_posts_selected", title=title, posts=len(selected))

        chunks: list[Chunk] = []
        for post in selected:
            post_url = f"{_BASE_URL}{post['permalink']}"
            subreddit = post.get("subreddit", "")

            selftext = post.get("selftext") or ""
            if len(selftext) > _MIN_SELFTEXT_CHARS and selftext not in _REMOVED_MARKERS:
                chunks.extend(
                    self._chunker.chunk(
                        f"[r/{subreddit}: {post.get('title', '')}]\n{selftext}",
                        self.get_source_name(),
                        post_url,
                        self.chunk_type,
                    )
                )

            thread = await self._fetch_json(
                f"{post_url}.json", {"limit": 8, "sort": "top"}, delay=self._comment_delay
            )
            for body in self._top_comments(thread):
                chunks.extend(
                    self._chunker.chunk(
                        f"[Discussion in r/{subreddit}]\n{body}",
                        self.get_source_name(),
                        post_url,
                        self.chunk_type,
                    )
                )
        return chunks

    # ------------------------------------------------------------------
    # Listing helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _listing_posts(listing: Any) -> list[dict[str, Any]]:
        if not isinstance(listing, dict):
            return []
        children = (listing.get("data") or {}).get("children") or []
        return [c["data"] for c in children if isinstance(c.get("data"), dict) and c["data"].get("permalink")]

    def _select_posts(self, posts: list[dict[str, Any]]) -> list[dict[str, Any]]:
        seen: set[str] = set()
        unique: list[dict[str, Any]] = []
        for post in posts:
            if post["permalink"] in seen:
                continue
            seen.add(post["permalink"])
            unique.append(post)
        unique.sort(key=lambda p: p.get("num_comments") or 0, reverse=True)
        return unique[: self._max_posts]

    def _top_comments(self, thread: Any) -> list[str]:
        """Return the bodies of the best top-level comments in a thread listing."""
        if not isinstance(thread, list) or len(thread) < 2 or not isinstance(thread[1], dict):
            return []
        children = (thread[1].get("data") or {}).get("children") or []
        comments = [
            c["data"]
            for c in children
            if c.get("kind") == "t1" and isinstance(c.get("data"), dict)
        ]
        comments = [
            c
            for c in comments
            if len(c.get("body") or "") > _MIN_COMMENT_CHARS and c["body"] not in _REMOVED_MARKERS
        ]
        comments.sort(key=lambda c: c.get("score") or 0, reverse=True)
        return [c["body"] for c in comments[: self._comments_per_post]]
