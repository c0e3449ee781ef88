from __future__ import annotations

import logging
from typing import Callable

from ingest.errors import ExtractionError
from ingest.parse_docx import parse_docx
from ingest.parse_pdf import parse_pdf
from ingest.parse_pptx import parse_pptx

logger = logging.getLogger(__name__)


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8-sig")


PARSERS: dict[str, Callable[[bytes], str]] = {
    "txt": _decode_text,
    "md": _decode_text,
    "pdf": parse_pdf,
    "docx": parse_docx,
    "pptx": parse_pptx,
}
SUPPORTED_EXTENSIONS = frozenset(PARSERS)


def file_extension(file_name: str) -> str:
    return file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""


def extract_text(data: bytes, file_name: str) -> str:
    """Plain text of *data*, parsed according to the extension of *file_name*."""
    ext = file_extension(file_name)
    parser = PARSERS.get(ext)
    if parser is None:
        raise ExtractionError(ext or "unknown", f"unsupported file type: {file_name}")

    try:
        text = parser(data)
    except Exception as exc:  # noqa: BLE001
        raise ExtractionError(ext, exc) from exc

    if not text.strip():
        logger.warning("No text extracted from %s", file_name)
        return ""
    return text
