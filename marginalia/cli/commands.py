# =============================================================================
# marginalia/cli/commands.py — Command-line search, ingestion and chat
# =============================================================================
#
# Runs the same services as the API server, without the server:
#
#   python -m marginalia.cli search "the remains of the day"
#   python -m marginalia.cli ingest OL45804W
#   python -m marginalia.cli ask OL45804W "Is Stevens an unreliable narrator?"
#
# Progress events are printed to stdout as JSON lines (the same camelCase
# records the SSE endpoint sends); log output goes to stderr.
# =============================================================================

"""Command-line interface for Marginalia.

Usage::

    python -m marginalia.cli search <query>
    python -m marginalia.cli ingest <book-id>
    python -m marginalia.cli ask <book-id> <question>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from marginalia.models.book import BookMetadata
from marginalia.models.pipeline import IngestionEvent
from marginalia.utils.errors import BookNotIngestedError, PipelineError, ProviderUnavailableError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _suppress_logs() -> None:
    """Send structlog and stdlib logging to stderr at WARNING+ level.

    Must run before ``marginalia.main`` is imported: structlog caches
    loggers on first use.
    """
    import logging
    import os

    import structlog

    os.environ["LOG_LEVEL"] = "WARNING"

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.WARNING),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.WARNING)
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _print_event(_book_id: str, event: IngestionEvent) -> None:
    print(json.dumps(event.to_wire(), ensure_ascii=False), flush=True)


async def _resolve_book(components: dict[str, Any], book_id: str) -> BookMetadata | None:
    detail = await components["catalog_service"].get_book(book_id)
    if detail is None:
        print(f"Error: Book not found: {book_id}", file=sys.stderr)
        return None
    return detail.metadata


async def _ensure_ingested(components: dict[str, Any], book_id: str, show_progress: bool) -> bool:
    """Ingest *book_id* unless a pack already exists.

    Returns False, after printing the reason, when the book cannot be found
    or the run fails.
    """
    if await components["knowledge_store"].get(book_id) is not None:
        return True

    metadata = await _resolve_book(components, book_id)
    if metadata is None:
        return False

    tracker = components["progress_tracker"]
    if show_progress:
        tracker.register_listener(book_id, _print_event)
    try:
        await components["pipeline"].ingest(metadata)
    except PipelineError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return False
    finally:
        if show_progress:
            tracker.unregister_listener(book_id, _print_event)
    return True


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _search(components: dict[str, Any], args: argparse.Namespace) -> int:
    results = await components["catalog_service"].search(args.query)
    if args.json_output:
        print(json.dumps([r.to_wire() for r in results], ensure_ascii=False, indent=2))
        return 0

    if not results:
        print("No results.", file=sys.stderr)
        return 0
    for result in results:
        year = f" ({result.year})" if result.year else ""
        print(f"{result.id:<16} {result.title} by {result.author}{year}")
    return 0


async def _ingest(components: dict[str, Any], args: argparse.Namespace) -> int:
    ok = await _ensure_ingested(components, args.book_id, show_progress=True)
    return 0 if ok else 1


async def _ask(components: dict[str, Any], args: argparse.Namespace) -> int:
    if not await _ensure_ingested(components, args.book_id, show_progress=args.verbose):
        return 1

    try:
        reply = await components["chat_responder"].prepare(args.book_id, args.question)
    except (BookNotIngestedError, ProviderUnavailableError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    async for token in reply.stream:
        sys.stdout.write(token)
        sys.stdout.flush()
    sys.stdout.write("\n")
    if reply.sources:
        print(f"Sources: {', '.join(reply.sources)}", file=sys.stderr)
    return 0


_COMMANDS = {
    "search": _search,
    "ingest": _ingest,
    "ask": _ask,
}


async def _run(args: argparse.Namespace) -> int:
    # Deferred import: marginalia.main reads settings and configures
    # logging at import time.
    from marginalia.main import build_components, config, settings

    components = build_components(settings, config)
    try:
        return await _COMMANDS[args.command](components, args)
    finally:
        await components["http_client"].aclose()


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser with ``search``, ``ingest`` and ``ask`` subcommands."""
    parser = argparse.ArgumentParser(
        prog="python -m marginalia.cli",
        description="Search books, build their knowledge packs, and ask about them.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show log output and ingestion progress on every command.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search the book catalogs.")
    search.add_argument("query", type=str, help="Title or author.")
    search.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print results as JSON.",
    )

    ingest = sub.add_parser("ingest", help="Build the knowledge pack for a book.")
    ingest.add_argument("book_id", type=str, help="Catalog id from a search result.")

    ask = sub.add_parser("ask", help="Ask one question about a book (ingests it first).")
    ask.add_argument("book_id", type=str, help="Catalog id from a search result.")
    ask.add_argument("question", type=str, help="The question to ask.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point; exits with 0 on success and 1 on failure."""
    args = build_parser().parse_args(argv)
    if not args.verbose:
        _suppress_logs()
    sys.exit(asyncio.run(_run(args)))
