"""Metadata enrichment: turn a search hit into a complete book record.

The partial record a user picks from the search dropdown carries only
id, title, author, year and a thumbnail.  Enrichment asks the primary
catalog (keyed by id) and the secondary catalog (keyed by a
title + author query) in parallel and merges the answers field by field.

Merge rule, applied to every field independently::

    primary  >  secondary  >  partial  >  default

A value counts as present only when it is non-empty (``0``, ``""`` and
``[]`` fall through).  A catalog that errors or times out contributes
nothing; enrichment itself never raises.
"""

from __future__ import annotations

from typing import Any

import structlog

from marginalia.interfaces.catalog_provider import ICatalogProvider
from marginalia.models.book import GENRE_MAX_ENTRIES, SYNOPSIS_MAX_CHARS, BookMetadata
from marginalia.utils.concurrency import gather_settled

logger = structlog.get_logger(logger_name=__name__)

_MERGED_FIELDS = (
    "title",
    "author",
    "year",
    "cover",
    "synopsis",
    "genre",
    "page_count",
    "goodreads_rating",
    "ratings_count",
)


class MetadataEnricher:
    """Merges primary and secondary catalog lookups into one record.

    Parameters
    ----------
    primary:
        Catalog consulted by id.  Skipped when it does not handle the
        partial's id (e.g. a ``gb_`` id and Open Library).
    secondary:
        Catalog consulted by title + author.
    deadline:
        Upper bound in seconds on each lookup.
    """

    def __init__(
        self,
        primary: ICatalogProvider,
        secondary: ICatalogProvider,
        deadline: float | None = 20.0,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._deadline = deadline

    async def enrich(self, partial: BookMetadata) -> BookMetadata:
        """Return a fully populated :class:`BookMetadata` for *partial*."""
        lookups = [self._secondary.lookup_fields(partial)]
        labels = [self._secondary.get_provider_name()]
        if self._primary.handles_id(partial.id):
            lookups.insert(0, self._primary.lookup_fields(partial))
            labels.insert(0, self._primary.get_provider_name())

        results = await gather_settled(lookups, deadline=self._deadline, labels=labels, logger=logger)
        settled = [r if isinstance(r, dict) else {} for r in results]
        primary_fields = settled[0] if len(settled) == 2 else {}
        secondary_fields = settled[-1]

        enriched = merge_metadata(partial, primary_fields, secondary_fields)
        logger.info(
            "metadata_enriched",
            book_id=enriched.id,
            synopsis=bool(enriched.synopsis),
            genre=len(enriched.genre),
            page_count=enriched.page_count,
            rating=enriched.goodreads_rating,
        )
        return enriched


def merge_metadata(
    partial: BookMetadata,
    primary: dict[str, Any],
    secondary: dict[str, Any],
) -> BookMetadata:
    """Merge catalog field dicts over *partial*; first non-empty value wins."""
    base = partial.model_dump()
    merged: dict[str, Any] = {"id": partial.id}
    for name in _MERGED_FIELDS:
        value = next(
            (v for v in (primary.get(name), secondary.get(name), base.get(name)) if v),
            None,
        )
        if value is not None:
            merged[name] = value

    merged["synopsis"] = (merged.get("synopsis") or "")[:SYNOPSIS_MAX_CHARS]
    merged["genre"] = list(merged.get("genre") or [])[:GENRE_MAX_ENTRIES]
    return BookMetadata(**merged)
