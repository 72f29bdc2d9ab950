"""Ingestion progress tracking with callback-based listener notification.

Records the latest :class:`IngestionEvent` for each book being ingested
and broadcasts every event to the listeners registered for that book.
Listeners are keyed by book id, so several ingestions can run side by
side without cross-talk, and several clients watching the *same*
ingestion each receive the full event sequence.

    IngestionPipeline --publish()--> ProgressTracker --callback()--> SSE stream queue
                                                     --callback()--> CLI printer

A listener that raises is logged and skipped; it never blocks the
pipeline or the other listeners.  Both sync and async callbacks are
supported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from marginalia.models.pipeline import IngestionEvent
from marginalia.utils.logging import get_logger


class ProgressTracker:
    """Tracks and broadcasts ingestion progress via callbacks."""

    def __init__(self) -> None:
        self._latest: dict[str, IngestionEvent] = {}
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def publish(self, book_id: str, event: IngestionEvent) -> None:
        """Record *event* as the latest for *book_id* and notify listeners."""
        self._latest[book_id] = event
        self._logger.debug(
            "progress_event",
            book_id=book_id,
            step=event.step,
            status=event.status.value,
        )
        await self._notify_listeners(book_id, event)

    def register_listener(self, book_id: str, callback: Callable) -> None:
        """Register *callback* to receive ``(book_id, event)`` for *book_id*."""
        listeners = self._listeners.setdefault(book_id, [])
        if callback not in listeners:
            listeners.append(callback)
            self._logger.debug(
                "listener_registered",
                book_id=book_id,
                total_listeners=len(listeners),
            )

    def unregister_listener(self, book_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(book_id, [])
        if callback in listeners:
            listeners.remove(callback)
            self._logger.debug(
                "listener_unregistered",
                book_id=book_id,
                remaining_listeners=len(listeners),
            )
        if not listeners:
            self._listeners.pop(book_id, None)

    def latest(self, book_id: str) -> IngestionEvent | None:
        """Return the most recent event published for *book_id*, if any."""
        return self._latest.get(book_id)

    def listener_count(self, book_id: str) -> int:
        return len(self._listeners.get(book_id, []))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(self, book_id: str, event: IngestionEvent) -> None:
        # Copy: a listener may unregister itself while being notified.
        for callback in list(self._listeners.get(book_id, [])):
            try:
                result = callback(book_id, event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    book_id=book_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
