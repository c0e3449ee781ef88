from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone

from ingest.drive_sync import content_hash
from ingest.models import ChunkDocument, RemoteItem

BOUNDARY_CHARS = ".!?\n"
MIN_CHUNK_CHARS = 200


def _boundary_cut(text: str, start: int, end: int, chunk_size: int) -> int:
    """Position just after the last sentence end or newline in the window, if it is past the halfway mark."""
    break_point = max(text.rfind(ch, start, end) for ch in BOUNDARY_CHARS)
    if break_point > start + chunk_size * 0.5:
        return break_point + 1
    return end


def split_text(text: str, chunk_size: int = 1000, overlap: int = 200, min_chars: int = MIN_CHUNK_CHARS) -> list[str]:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= overlap < chunk_size:
        raise ValueError(f"chunk_overlap ({overlap}) must be >= 0 and smaller than chunk_size ({chunk_size})")

    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = start + chunk_size
        if end < len(text):
            end = _boundary_cut(text, start, end, chunk_size)

        chunk = text[start:end].strip()
        if len(chunk) >= min_chars:
            chunks.append(chunk)
        if end >= len(text):
            break

        next_start = end - overlap
        start = next_start if next_start > start else end
    return chunks


def build_chunk_documents(
    item: RemoteItem,
    chunks: Sequence[str],
    vectors: Sequence[list[float]],
    tenant_id: str,
) -> list[ChunkDocument]:
    updated_at = item.last_modified_at or datetime.now(timezone.utc)
    out: list[ChunkDocument] = []
    for idx, (text, vector) in enumerate(zip(chunks, vectors, strict=True)):
        out.append(
            ChunkDocument(
                id=f"{item.id}_{idx}",
                tenant_id=tenant_id,
                file_id=item.id,
                file_path=item.file_path,
                file_name=item.name,
                web_url=item.web_url,
                mime_type=item.mime_type or "text/plain",
                chunk_id=f"{item.id}_chunk_{idx}",
                chunk_offset=idx,
                content=text,
                content_vector=vector,
                content_hash=content_hash(text),
                updated_at=updated_at,
            )
        )
    return out
