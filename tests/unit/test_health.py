"""Unit tests for the connectivity check and index inspection."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from conftest import InMemoryIndex, make_document
from ingest.errors import AuthError, IndexQueryError
from ingest.health import IndexReport, check_status, inspect_index


class TestCheckStatus:
    def test_all_healthy(self, index: InMemoryIndex) -> None:
        tokens = MagicMock()
        tokens.get_token.return_value = "tok"

        report = check_status(tokens, index)

        assert report.ok
        assert report.to_dict()["errors"] == []

    def test_collects_every_failure(self, index: InMemoryIndex) -> None:
        tokens = MagicMock()
        tokens.get_token.side_effect = AuthError("Graph token fetch failed: 401 - invalid_client")
        index.query_error = IndexQueryError("Azure Search count failed: 403 - Forbidden")

        report = check_status(tokens, index)

        assert not report.ok
        assert (report.graph_token_ok, report.search_ok) == (False, False)
        assert report.errors == [
            "Graph token: Graph token fetch failed: 401 - invalid_client",
            "Search index: Azure Search count failed: 403 - Forbidden",
        ]


class TestInspectIndex:
    def test_count_and_sample(self, index: InMemoryIndex) -> None:
        index.upsert([make_document(i) for i in range(3)])

        report = inspect_index(index)

        assert report.document_count == 3
        assert report.sample["id"] == "file-1_0"
        assert index.query_calls[-1]["filter"] == {}

    def test_empty_index(self, index: InMemoryIndex) -> None:
        report = inspect_index(index)
        assert report.to_dict() == {"documentCount": 0, "sample": None}

    def test_preview_is_truncated(self) -> None:
        report = IndexReport(1, {"id": "x_0", "file_name": "x.txt", "chunk_offset": 0, "content": "y" * 500})
        assert report.to_dict()["sample"]["contentPreview"] == "y" * 100

    def test_index_errors_propagate(self, index: InMemoryIndex) -> None:
        index.query_error = IndexQueryError("unreachable")
        with pytest.raises(IndexQueryError):
            inspect_index(index)
