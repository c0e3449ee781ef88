"""Connectivity checks and a quick look inside the search index.

``check_status`` answers whether a run could start at all: can a Graph
token be obtained, and does the search index answer. ``inspect_index``
reports how many chunk documents the index holds plus one sample.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from ingest.errors import IngestError
from ingest.graph_auth import GraphTokenProvider

logger = logging.getLogger(__name__)

SAMPLE_FIELDS = ("id", "file_name", "chunk_offset", "content")
PREVIEW_CHARS = 100


@dataclass
class StatusReport:
    graph_token_ok: bool = False
    search_ok: bool = False
    errors: list[str] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.graph_token_ok and self.search_ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "graphTokenOk": self.graph_token_ok,
            "searchOk": self.search_ok,
            "errors": list(self.errors),
            "timestamp": self.checked_at.isoformat(),
        }


@dataclass
class IndexReport:
    document_count: int
    sample: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        sample = None
        if self.sample is not None:
            content = self.sample.get("content") or ""
            sample = {
                "id": self.sample.get("id"),
                "fileName": self.sample.get("file_name"),
                "chunkOffset": self.sample.get("chunk_offset"),
                "contentPreview": content[:PREVIEW_CHARS],
            }
        return {"documentCount": self.document_count, "sample": sample}


def check_status(token_provider: GraphTokenProvider, index) -> StatusReport:
    report = StatusReport()
    try:
        token_provider.get_token()
        report.graph_token_ok = True
    except IngestError as exc:
        logger.error("Graph token check failed: %s", exc)
        report.errors.append(f"Graph token: {exc}")

    try:
        index.count()
        report.search_ok = True
    except IngestError as exc:
        logger.error("Search index check failed: %s", exc)
        report.errors.append(f"Search index: {exc}")
    return report


def inspect_index(index) -> IndexReport:
    count = index.count()
    rows = index.query({}, SAMPLE_FIELDS, top=1)
    logger.info("Index holds %d documents", count)
    return IndexReport(count, rows[0] if rows else None)
