"""Book identity models: the canonical metadata record and search hits.

Field names are snake_case in Python and camelCase on the wire
(``page_count`` <-> ``pageCount``) via pydantic's alias generator, so the
same models validate inbound JSON from the browser and serialize outbound
responses without hand-written mapping code.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Prefix that marks an id as a Google Books volume id rather than an
# Open Library work id (e.g. "gb_zyTCAlFPjgYC" vs "OL45804W").
GOOGLE_BOOKS_ID_PREFIX = "gb_"

SYNOPSIS_MAX_CHARS = 2000
GENRE_MAX_ENTRIES = 5

WIRE_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
)


class WireModel(BaseModel):
    """Base for models that cross the HTTP boundary in camelCase."""

    model_config = WIRE_CONFIG

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BookMetadata(WireModel):
    """Canonical identity record for one book.

    Built by merging a partial search hit with the primary and secondary
    catalog lookups.  Numbers default to ``0`` and strings to ``""`` when
    unknown; only the two rating fields may be absent.
    """

    id: str = Field(min_length=1, description="Catalog id; 'gb_' prefix marks Google Books.")
    title: str = ""
    author: str = ""
    year: int = Field(default=0, ge=0, description="First publication year, 0 = unknown.")
    cover: str = ""
    synopsis: str = ""
    genre: list[str] = Field(default_factory=list)
    page_count: int = Field(default=0, ge=0)
    goodreads_rating: float | None = Field(default=None, ge=0.0, le=5.0)
    ratings_count: int | None = Field(default=None, ge=0)


class SearchResult(WireModel):
    """Lightweight search hit shown in the search dropdown."""

    id: str
    title: str
    author: str
    year: int = 0
    cover: str = ""

    def dedupe_key(self) -> str:
        return f"{self.title.lower()}-{self.author.lower()}"
