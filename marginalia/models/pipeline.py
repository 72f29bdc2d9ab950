"""Ingestion progress models.

An :class:`IngestionEvent` is a transient signal pushed to the client
while a knowledge pack is being built.  Events are never stored beyond
the progress tracker's latest-event snapshot.
"""

from __future__ import annotations

from enum import Enum

from marginalia.models.book import WireModel
from marginalia.models.knowledge import InterpretiveLandscape


class IngestionStatus(str, Enum):  # noqa: UP042
    PENDING = "pending"
    LOADING = "loading"
    DONE = "done"
    FAILED = "failed"


class IngestionStep:
    """Human-readable step names shown in the loading UI.

    Scraper steps are owned by the scrapers themselves (see
    ``ISourceScraper.step_name``); only the pipeline-level steps live here.
    """

    FETCH_METADATA = "Fetching book details"
    SYNTHESIZE = "Building knowledge base"
    READY = "Ready"
    FAILED = "Ingestion failed"
    METADATA_MISSING = "Error: metadata missing"

    TERMINAL = frozenset({READY, FAILED, METADATA_MISSING})


class IngestionEvent(WireModel):
    """One progress record on the ingestion stream."""

    step: str
    status: IngestionStatus
    quote: str | None = None
    landscape: InterpretiveLandscape | None = None
    sources: list[str] | None = None

    @property
    def is_terminal(self) -> bool:
        """``True`` for the record that closes the stream."""
        if self.step == IngestionStep.READY:
            return self.status is IngestionStatus.DONE
        return self.step in IngestionStep.TERMINAL and self.status is IngestionStatus.FAILED
