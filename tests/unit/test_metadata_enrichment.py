"""Unit tests for MetadataEnricher and the field-by-field merge rule."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from marginalia.interfaces.catalog_provider import ICatalogProvider
from marginalia.models.book import BookMetadata
from marginalia.services.metadata_enrichment import MetadataEnricher, merge_metadata


def _catalog(name: str, fields: dict | Exception, handles: bool = True) -> MagicMock:
    catalog = MagicMock(spec=ICatalogProvider)
    if isinstance(fields, Exception):
        catalog.lookup_fields = AsyncMock(side_effect=fields)
    else:
        catalog.lookup_fields = AsyncMock(return_value=fields)
    catalog.handles_id.return_value = handles
    catalog.get_provider_name.return_value = name
    return catalog


# ======================================================================
# merge_metadata
# ======================================================================


class TestMergeMetadata:
    def test_primary_beats_secondary_beats_partial(self, partial_metadata: BookMetadata) -> None:
        merged = merge_metadata(
            partial_metadata,
            {"synopsis": "From Open Library.", "year": 2004},
            {"synopsis": "From Google.", "page_count": 288, "year": 2006},
        )
        assert merged.synopsis == "From Open Library."
        assert merged.page_count == 288
        assert merged.year == 2004
        assert merged.title == "Never Let Me Go"

    def test_empty_values_fall_through(self, partial_metadata: BookMetadata) -> None:
        merged = merge_metadata(
            partial_metadata,
            {"synopsis": "", "page_count": 0, "genre": []},
            {"synopsis": "Secondary synopsis.", "page_count": 300, "genre": ["Fiction"]},
        )
        assert merged.synopsis == "Secondary synopsis."
        assert merged.page_count == 300
        assert merged.genre == ["Fiction"]

    def test_partial_year_survives_when_catalogs_know_none(
        self, partial_metadata: BookMetadata
    ) -> None:
        merged = merge_metadata(partial_metadata, {}, {})
        assert merged.year == 2005
        assert merged.synopsis == ""
        assert merged.goodreads_rating is None

    def test_synopsis_and_genre_are_capped(self, partial_metadata: BookMetadata) -> None:
        merged = merge_metadata(
            partial_metadata,
            {"synopsis": "s" * 5000, "genre": [f"g{i}" for i in range(9)]},
            {},
        )
        assert len(merged.synopsis) == 2000
        assert merged.genre == ["g0", "g1", "g2", "g3", "g4"]

    def test_id_is_never_replaced(self, partial_metadata: BookMetadata) -> None:
        merged = merge_metadata(partial_metadata, {"id": "OTHER"}, {"id": "gb_x"})
        assert merged.id == "OL45804W"

    def test_rating_fields_come_from_catalog(self, partial_metadata: BookMetadata) -> None:
        merged = merge_metadata(
            partial_metadata, {"goodreads_rating": 3.9, "ratings_count": 512}, {}
        )
        assert merged.goodreads_rating == 3.9
        assert merged.ratings_count == 512


# ======================================================================
# MetadataEnricher
# ======================================================================


class TestMetadataEnricher:
    @pytest.mark.asyncio
    async def test_merges_both_lookups(self, partial_metadata: BookMetadata) -> None:
        primary = _catalog("open_library", {"synopsis": "Primary.", "genre": ["Dystopia"]})
        secondary = _catalog("google_books", {"synopsis": "Secondary.", "page_count": 288})
        enricher = MetadataEnricher(primary, secondary)

        enriched = await enricher.enrich(partial_metadata)

        assert enriched.synopsis == "Primary."
        assert enriched.genre == ["Dystopia"]
        assert enriched.page_count == 288
        primary.lookup_fields.assert_awaited_once_with(partial_metadata)
        secondary.lookup_fields.assert_awaited_once_with(partial_metadata)

    @pytest.mark.asyncio
    async def test_primary_skipped_for_foreign_id(self) -> None:
        partial = BookMetadata(id="gb_abc", title="Klara and the Sun", author="Kazuo Ishiguro")
        primary = _catalog("open_library", {"synopsis": "Should not be used."}, handles=False)
        secondary = _catalog("google_books", {"synopsis": "From Google."})

        enriched = await MetadataEnricher(primary, secondary).enrich(partial)

        assert enriched.synopsis == "From Google."
        primary.lookup_fields.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_lookups_degrade_to_partial(self, partial_metadata: BookMetadata) -> None:
        primary = _catalog("open_library", RuntimeError("boom"))
        secondary = _catalog("google_books", RuntimeError("also boom"))

        enriched = await MetadataEnricher(primary, secondary).enrich(partial_metadata)

        assert enriched == merge_metadata(partial_metadata, {}, {})
        assert enriched.title == "Never Let Me Go"

    @pytest.mark.asyncio
    async def test_slow_lookup_is_cut_off_by_deadline(self, partial_metadata: BookMetadata) -> None:
        async def _slow(_partial: BookMetadata) -> dict:
            await asyncio.sleep(5)
            return {"synopsis": "Too late."}

        primary = _catalog("open_library", {})
        primary.lookup_fields = AsyncMock(side_effect=_slow)
        secondary = _catalog("google_books", {"page_count": 100})

        enriched = await MetadataEnricher(primary, secondary, deadline=0.05).enrich(partial_metadata)

        assert enriched.synopsis == ""
        assert enriched.page_count == 100
