from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

SOURCE_NAME = "onedrive"


@dataclass
class RemoteItem:
    id: str
    name: str
    web_url: str
    is_folder: bool
    mime_type: str | None
    size_bytes: int | None
    last_modified_at: datetime | None
    folder_path: str = ""

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1].lower() if "." in self.name else ""

    @property
    def file_path(self) -> str:
        return f"{self.folder_path}/{self.name}" if self.folder_path else self.name


class FileClassification(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    UNSUPPORTED = "unsupported"


class SkipReason(str, Enum):
    UNCHANGED = "unchanged"
    UNSUPPORTED = "unsupported"
    FILE_TOO_LARGE = "file_too_large"
    TEXT_TOO_LONG = "text_too_long"
    TOO_MANY_CHUNKS = "too_many_chunks"
    FETCH_FAILED = "fetch_failed"
    EXTRACTION_FAILED = "extraction_failed"
    EMBEDDING_FAILED = "embedding_failed"

    @property
    def is_oversize(self) -> bool:
        return self in (SkipReason.FILE_TOO_LARGE, SkipReason.TEXT_TOO_LONG, SkipReason.TOO_MANY_CHUNKS)

    @property
    def is_error(self) -> bool:
        return self in (SkipReason.FETCH_FAILED, SkipReason.EXTRACTION_FAILED, SkipReason.EMBEDDING_FAILED)


@dataclass
class ChunkDocument:
    id: str
    tenant_id: str
    file_id: str
    file_path: str
    file_name: str
    web_url: str
    mime_type: str
    chunk_id: str
    chunk_offset: int
    content: str
    content_vector: list[float]
    content_hash: str
    updated_at: datetime
    source: str = SOURCE_NAME

    def to_index_fields(self) -> dict[str, Any]:
        """Field names as stored in the search index."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "source": self.source,
            "file_id": self.file_id,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "file_web_url": self.web_url,
            "mime_type": self.mime_type,
            "chunk_id": self.chunk_id,
            "chunk_offset": self.chunk_offset,
            "content": self.content,
            "content_vector": self.content_vector,
            "content_hash": self.content_hash,
            "updated_at": self.updated_at,
        }


@dataclass
class ProcessedFile:
    item: RemoteItem
    classification: FileClassification
    documents: list[ChunkDocument]


@dataclass
class FileSkipped:
    item: RemoteItem
    reason: SkipReason
    detail: str = ""


FileOutcome = Union[ProcessedFile, FileSkipped]


class Stage(str, Enum):
    LISTING = "listing"
    CLASSIFYING = "classifying"
    PROCESSING = "processing"
    UPSERTING = "upserting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestSummary:
    scanned: int = 0
    new: int = 0
    updated: int = 0
    unchanged_skipped: int = 0
    unsupported_skipped: int = 0
    oversize_skipped: int = 0
    documents_upserted: int = 0
    errors: list[str] = field(default_factory=list)
    stage: Stage = Stage.LISTING
    fatal_error: str | None = None

    @property
    def success(self) -> bool:
        return self.stage == Stage.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "stage": self.stage.value,
            "scanned": self.scanned,
            "newCount": self.new,
            "updatedCount": self.updated,
            "unchangedSkipped": self.unchanged_skipped,
            "unsupportedSkipped": self.unsupported_skipped,
            "oversizeSkipped": self.oversize_skipped,
            "documentsUpserted": self.documents_upserted,
            "errors": list(self.errors),
            "fatalError": self.fatal_error,
        }
