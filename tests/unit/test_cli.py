"""Unit tests for the command-line interface in marginalia.cli.commands."""

from __future__ import annotations

import json
from argparse import Namespace
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from marginalia.cli.commands import _ask, _ingest, _search, build_parser
from marginalia.models.book import BookMetadata, SearchResult
from marginalia.models.knowledge import BookKnowledge
from marginalia.models.pipeline import IngestionEvent, IngestionStatus, IngestionStep
from marginalia.pipeline.progress_tracker import ProgressTracker
from marginalia.services.catalog_service import BookDetail
from marginalia.services.chat_responder import ChatReply
from marginalia.utils.errors import PipelineError, ProviderUnavailableError


def _components(
    stored: BookKnowledge | None = None,
    detail: BookDetail | None = None,
) -> dict[str, Any]:
    catalog = MagicMock()
    catalog.search = AsyncMock(
        return_value=[
            SearchResult(id="OL45804W", title="Never Let Me Go", author="Kazuo Ishiguro", year=2005),
            SearchResult(id="gb_1", title="Klara and the Sun", author="Kazuo Ishiguro"),
        ]
    )
    catalog.get_book = AsyncMock(return_value=detail)

    store = MagicMock()
    store.get = AsyncMock(return_value=stored)

    tracker = ProgressTracker()

    async def _ingest(metadata: BookMetadata) -> None:
        await tracker.publish(
            metadata.id,
            IngestionEvent(step=IngestionStep.FETCH_METADATA, status=IngestionStatus.LOADING),
        )

    pipeline = MagicMock()
    pipeline.ingest = AsyncMock(side_effect=_ingest)

    return {
        "catalog_service": catalog,
        "knowledge_store": store,
        "progress_tracker": tracker,
        "pipeline": pipeline,
        "chat_responder": MagicMock(),
    }


class TestBuildParser:
    def test_search(self) -> None:
        args = build_parser().parse_args(["search", "remains of the day", "--json"])
        assert args.command == "search"
        assert args.query == "remains of the day"
        assert args.json_output is True
        assert args.verbose is False

    def test_ask(self) -> None:
        args = build_parser().parse_args(["-v", "ask", "OL45804W", "Who is Miss Kenton?"])
        assert args.command == "ask"
        assert args.book_id == "OL45804W"
        assert args.question == "Who is Miss Kenton?"
        assert args.verbose is True

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestSearchCommand:
    @pytest.mark.asyncio
    async def test_plain_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        code = await _search(_components(), Namespace(query="ishiguro", json_output=False))

        out = capsys.readouterr().out.splitlines()
        assert code == 0
        assert out[0].startswith("OL45804W")
        assert out[0].endswith("Never Let Me Go by Kazuo Ishiguro (2005)")
        assert out[1].endswith("Klara and the Sun by Kazuo Ishiguro")

    @pytest.mark.asyncio
    async def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        await _search(_components(), Namespace(query="ishiguro", json_output=True))
        payload = json.loads(capsys.readouterr().out)
        assert payload[0]["id"] == "OL45804W"


class TestIngestCommand:
    @pytest.mark.asyncio
    async def test_prints_progress_as_json_lines(
        self, sample_metadata: BookMetadata, capsys: pytest.CaptureFixture[str]
    ) -> None:
        components = _components(detail=BookDetail(status="fresh", metadata=sample_metadata))

        code = await _ingest(components, Namespace(book_id="OL45804W"))

        assert code == 0
        line = json.loads(capsys.readouterr().out.strip())
        assert line == {"step": "Fetching book details", "status": "loading"}
        assert components["progress_tracker"].listener_count("OL45804W") == 0

    @pytest.mark.asyncio
    async def test_unknown_book(self, capsys: pytest.CaptureFixture[str]) -> None:
        components = _components()
        code = await _ingest(components, Namespace(book_id="OL404W"))

        assert code == 1
        assert "Book not found" in capsys.readouterr().err
        components["pipeline"].ingest.assert_not_called()

    @pytest.mark.asyncio
    async def test_pipeline_failure_exits_nonzero(
        self, sample_metadata: BookMetadata, capsys: pytest.CaptureFixture[str]
    ) -> None:
        components = _components(detail=BookDetail(status="fresh", metadata=sample_metadata))
        components["pipeline"].ingest = AsyncMock(
            side_effect=PipelineError("Ingestion failed for OL45804W: boom")
        )

        code = await _ingest(components, Namespace(book_id="OL45804W"))

        assert code == 1
        assert "Error: Ingestion failed for OL45804W: boom" in capsys.readouterr().err
        assert components["progress_tracker"].listener_count("OL45804W") == 0

    @pytest.mark.asyncio
    async def test_already_ingested_is_skipped(self, sample_knowledge: BookKnowledge) -> None:
        components = _components(stored=sample_knowledge)
        assert await _ingest(components, Namespace(book_id="OL45804W")) == 0
        components["pipeline"].ingest.assert_not_called()


class TestAskCommand:
    @pytest.mark.asyncio
    async def test_streams_answer_and_sources(
        self,
        sample_knowledge: BookKnowledge,
        token_stream: Callable[..., Callable[..., AsyncIterator[str]]],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        components = _components(stored=sample_knowledge)
        components["chat_responder"].prepare = AsyncMock(
            return_value=ChatReply(sources=["Reddit"], stream=token_stream("He ", "cared.")())
        )

        code = await _ask(
            components, Namespace(book_id="OL45804W", question="Did Tommy care?", verbose=False)
        )

        captured = capsys.readouterr()
        assert code == 0
        assert captured.out == "He cared.\n"
        assert "Sources: Reddit" in captured.err

    @pytest.mark.asyncio
    async def test_llm_unavailable(
        self, sample_knowledge: BookKnowledge, capsys: pytest.CaptureFixture[str]
    ) -> None:
        components = _components(stored=sample_knowledge)
        components["chat_responder"].prepare = AsyncMock(
            side_effect=ProviderUnavailableError("No LLM provider is configured", "anthropic")
        )

        code = await _ask(
            components, Namespace(book_id="OL45804W", question="Why?", verbose=False)
        )

        assert code == 1
        assert "No LLM provider is configured" in capsys.readouterr().err
