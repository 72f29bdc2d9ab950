"""Server-Sent Events rendering of ingestion progress.

Each :class:`IngestionEvent` becomes one ``data: <json>\\n\\n`` record
with camelCase keys and unset fields omitted, e.g.::

    data: {"step":"Reading Goodreads reviews","status":"done","quote":"..."}

The live stream is fed by a queue registered as a progress-tracker
listener *before* the run starts, so no event can slip between starting
the run and subscribing to it.  The stream ends after the first
terminal event, or when the run finishes and the queue is drained.
Closing the stream only unsubscribes; the run itself carries on.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from marginalia.models.book import BookMetadata
from marginalia.models.knowledge import BookKnowledge
from marginalia.models.pipeline import IngestionEvent, IngestionStatus, IngestionStep
from marginalia.pipeline.ingestion import IngestionPipeline
from marginalia.pipeline.progress_tracker import ProgressTracker

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: IngestionEvent) -> str:
    """Render one event as an SSE ``data:`` record."""
    return f"data: {json.dumps(event.to_wire(), ensure_ascii=False, separators=(',', ':'))}\n\n"


def ready_event(knowledge: BookKnowledge) -> IngestionEvent:
    """The single event sent for a book that is already ingested."""
    return IngestionEvent(
        step=IngestionStep.READY,
        status=IngestionStatus.DONE,
        landscape=knowledge.interpretive_landscape,
        sources=knowledge.sources,
    )


def metadata_missing_event() -> IngestionEvent:
    return IngestionEvent(step=IngestionStep.METADATA_MISSING, status=IngestionStatus.FAILED)


async def single_event(event: IngestionEvent) -> AsyncIterator[str]:
    yield format_sse(event)


async def ingestion_events(
    pipeline: IngestionPipeline,
    tracker: ProgressTracker,
    partial: BookMetadata,
) -> AsyncIterator[str]:
    """Start (or join) the ingestion of *partial* and yield its events as SSE records."""
    book_id = partial.id
    queue: asyncio.Queue[IngestionEvent] = asyncio.Queue()

    def _enqueue(_book_id: str, event: IngestionEvent) -> None:
        queue.put_nowait(event)

    tracker.register_listener(book_id, _enqueue)
    try:
        joined = pipeline.is_running(book_id)
        task = pipeline.start(partial)

        # A late joiner first sees where the run currently is.
        latest = tracker.latest(book_id) if joined else None
        if latest is not None:
            yield format_sse(latest)
            if latest.is_terminal:
                return

        while True:
            if not queue.empty():
                event = queue.get_nowait()
            elif task.done():
                break
            else:
                getter = asyncio.ensure_future(queue.get())
                await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if not getter.done():
                    getter.cancel()
                    continue
                event = getter.result()

            yield format_sse(event)
            if event.is_terminal:
                break
    finally:
        tracker.unregister_listener(book_id, _enqueue)
