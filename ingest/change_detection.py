"""Incremental sync: compare the remote tree with what the index already holds.

The index is the only durable state. A file counts as indexed as of the
latest ``updated_at`` among its chunk documents, and only files that are
new or modified since then go through extraction and embedding again.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dt_parser

from ingest.models import FileClassification, RemoteItem

logger = logging.getLogger(__name__)

QUERY_PAGE_SIZE = 1000


def _as_utc(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        value = dt_parser.isoparse(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def get_indexed_watermarks(index, tenant_id: str, page_size: int = QUERY_PAGE_SIZE) -> dict[str, datetime | None]:
    """Map every indexed ``file_id`` of the tenant to its latest ``updated_at``.

    Pages through the index with ``top``/``skip`` until a short page. Backend
    failures surface as :class:`ingest.errors.IndexQueryError`.
    """
    watermarks: dict[str, datetime | None] = {}
    skip = 0
    while True:
        page = index.query(
            filter={"tenant_id": tenant_id},
            select=["file_id", "updated_at"],
            top=page_size,
            skip=skip,
        )

        for doc in page:
            file_id = doc.get("file_id")
            if not file_id:
                continue
            try:
                updated_at = _as_utc(doc.get("updated_at"))
            except (TypeError, ValueError):
                logger.warning("Ignoring unparseable updated_at for %s: %r", file_id, doc.get("updated_at"))
                updated_at = None
            current = watermarks.get(file_id)
            if file_id not in watermarks or (updated_at and (current is None or updated_at > current)):
                watermarks[file_id] = updated_at

        if len(page) < page_size:
            break
        skip += page_size
    return watermarks


def classify_file(
    item: RemoteItem,
    watermarks: dict[str, datetime | None],
    supported_extensions: Collection[str],
) -> FileClassification:
    if item.extension not in supported_extensions:
        return FileClassification.UNSUPPORTED
    if item.id not in watermarks:
        return FileClassification.NEW

    watermark = watermarks[item.id]
    if item.last_modified_at is None or watermark is None:
        # Without both timestamps there is nothing to compare; re-process.
        return FileClassification.UPDATED
    if _as_utc(item.last_modified_at) > watermark:
        return FileClassification.UPDATED
    return FileClassification.UNCHANGED
