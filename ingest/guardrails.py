from __future__ import annotations

from ingest.errors import GuardrailViolation
from ingest.models import SkipReason

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024
MAX_TEXT_LENGTH = 300_000
MAX_CHUNKS = 300


def check_file_size(size_bytes: int, limit: int = MAX_FILE_SIZE_BYTES) -> None:
    if size_bytes > limit:
        raise GuardrailViolation(
            SkipReason.FILE_TOO_LARGE,
            f"too large: {size_bytes / 1024 / 1024:.1f}MB, max {limit / 1024 / 1024:.0f}MB",
        )


def check_text_length(length: int, limit: int = MAX_TEXT_LENGTH) -> None:
    if length > limit:
        raise GuardrailViolation(SkipReason.TEXT_TOO_LONG, f"too much text: {length} chars, max {limit}")


def check_chunk_count(count: int, limit: int = MAX_CHUNKS) -> None:
    if count > limit:
        raise GuardrailViolation(SkipReason.TOO_MANY_CHUNKS, f"too many chunks: {count}, max {limit}")
