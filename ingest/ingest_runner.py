from __future__ import annotations

import argparse
import json
import logging
import time
from collections.abc import Collection
from dataclasses import replace
from typing import Callable

from dotenv import load_dotenv

from db.index import build_search_index
from ingest.change_detection import classify_file, get_indexed_watermarks
from ingest.chunking import MIN_CHUNK_CHARS, build_chunk_documents, split_text
from ingest.config import Settings, load_settings
from ingest.drive_sync import DriveProvider, GraphDriveProvider
from ingest.embed_and_upsert import Embedder, OpenAIEmbedder, write_documents
from ingest.errors import (
    EmbeddingError,
    ExtractionError,
    GuardrailViolation,
    IngestError,
    IndexWriteError,
    IngestTimeoutError,
    RemoteFetchError,
)
from ingest.extract import SUPPORTED_EXTENSIONS, extract_text
from ingest.graph_auth import GraphTokenProvider
from ingest.guardrails import (
    MAX_CHUNKS,
    MAX_FILE_SIZE_BYTES,
    MAX_TEXT_LENGTH,
    check_chunk_count,
    check_file_size,
    check_text_length,
)
from ingest.health import StatusReport, check_status, inspect_index
from ingest.models import (
    ChunkDocument,
    FileClassification,
    FileOutcome,
    FileSkipped,
    IngestSummary,
    ProcessedFile,
    RemoteItem,
    SkipReason,
    Stage,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


class Deadline:
    """Wall-clock budget for a whole run; zero or None disables it."""

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic) -> None:
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds if seconds else None

    def check(self, stage: Stage) -> None:
        if self._expires_at is not None and self._clock() > self._expires_at:
            raise IngestTimeoutError(f"Ingestion timed out after {self.seconds:.0f}s during {stage.value}")


def process_file(
    item: RemoteItem,
    classification: FileClassification,
    provider: DriveProvider,
    embedder: Embedder,
    tenant_id: str,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
    min_chunk_chars: int = MIN_CHUNK_CHARS,
    max_file_size: int = MAX_FILE_SIZE_BYTES,
    max_text_length: int = MAX_TEXT_LENGTH,
    max_chunks: int = MAX_CHUNKS,
    deadline: Deadline | None = None,
) -> FileOutcome:
    """Fetch, extract, chunk and embed one file.

    Every file-local failure comes back as a :class:`FileSkipped`; only
    run-fatal errors (auth) propagate. A file yields all of its documents
    or none.
    """
    try:
        if item.size_bytes is not None:
            check_file_size(item.size_bytes, max_file_size)

        data = provider.get_content(item.id, max_bytes=max_file_size)
        logger.info("   Downloaded: %d bytes", len(data))
        check_file_size(len(data), max_file_size)

        text = extract_text(data, item.name)
        logger.info("   Extracted text: %d chars", len(text))
        check_text_length(len(text), max_text_length)

        chunks = split_text(text, chunk_size=chunk_size, overlap=chunk_overlap, min_chars=min_chunk_chars)
        logger.info("   Chunked into %d chunks", len(chunks))
        check_chunk_count(len(chunks), max_chunks)

        vectors = []
        for chunk in chunks:
            if deadline is not None:
                deadline.check(Stage.PROCESSING)
            vectors.append(embedder.embed(chunk))
    except GuardrailViolation as exc:
        return FileSkipped(item, exc.reason, exc.detail)
    except RemoteFetchError as exc:
        return FileSkipped(item, SkipReason.FETCH_FAILED, str(exc))
    except ExtractionError as exc:
        return FileSkipped(item, SkipReason.EXTRACTION_FAILED, str(exc))
    except EmbeddingError as exc:
        return FileSkipped(item, SkipReason.EMBEDDING_FAILED, str(exc))

    documents = build_chunk_documents(item, chunks, vectors, tenant_id)
    return ProcessedFile(item, classification, documents)


def _record(summary: IngestSummary, outcome: FileOutcome) -> None:
    if isinstance(outcome, ProcessedFile):
        if outcome.classification == FileClassification.NEW:
            summary.new += 1
        else:
            summary.updated += 1
        return

    reason = outcome.reason
    if reason == SkipReason.UNCHANGED:
        summary.unchanged_skipped += 1
    elif reason == SkipReason.UNSUPPORTED:
        summary.unsupported_skipped += 1
    elif reason.is_oversize:
        summary.oversize_skipped += 1
        logger.warning("%s skipped (%s)", outcome.item.name, outcome.detail)
    else:
        summary.errors.append(f"{outcome.item.file_path}: {reason.value}: {outcome.detail}")
        logger.error("Error processing %s: %s", outcome.item.name, outcome.detail)


def run_ingestion(
    provider: DriveProvider,
    index,
    embedder: Embedder,
    settings: Settings,
    *,
    force_all: bool = False,
    force_file_id: str | None = None,
    timeout_seconds: float | None = None,
    supported_extensions: Collection[str] = SUPPORTED_EXTENSIONS,
    clock: Callable[[], float] = time.monotonic,
) -> IngestSummary:
    summary = IngestSummary()
    deadline = Deadline(timeout_seconds if timeout_seconds is not None else settings.timeout_seconds, clock)

    try:
        summary.stage = Stage.LISTING
        logger.info("Listing files under %s", settings.onedrive_folder_path)
        root_id = provider.get_root_id()
        folder_id = provider.resolve_folder_path(root_id, settings.onedrive_folder_path)
        files = []
        for item in provider.list_files_recursive(folder_id):
            if force_file_id and item.id != force_file_id:
                continue
            files.append(item)
        summary.scanned = len(files)
        logger.info("Found %d files", len(files))
        deadline.check(summary.stage)

        summary.stage = Stage.CLASSIFYING
        watermarks = get_indexed_watermarks(index, settings.ms_tenant_id)
        logger.info("Found %d already indexed files", len(watermarks))
        categorized = []
        for item in files:
            classification = classify_file(item, watermarks, supported_extensions)
            if force_all and classification == FileClassification.UNCHANGED:
                classification = FileClassification.UPDATED
            categorized.append((item, classification))

        summary.stage = Stage.PROCESSING
        documents: list[ChunkDocument] = []
        for i, (item, classification) in enumerate(categorized, start=1):
            deadline.check(summary.stage)
            if classification == FileClassification.UNSUPPORTED:
                logger.info("%d/%d: %s (not supported)", i, len(files), item.name)
                _record(summary, FileSkipped(item, SkipReason.UNSUPPORTED))
                continue
            if classification == FileClassification.UNCHANGED:
                _record(summary, FileSkipped(item, SkipReason.UNCHANGED))
                continue

            logger.info("%d/%d: %s (%s)", i, len(files), item.name, classification.value)
            outcome = process_file(
                item,
                classification,
                provider,
                embedder,
                settings.ms_tenant_id,
                chunk_size=settings.chunk_size,
                chunk_overlap=settings.chunk_overlap,
                deadline=deadline,
            )
            _record(summary, outcome)
            if isinstance(outcome, ProcessedFile):
                documents.extend(outcome.documents)

        logger.info(
            "Summary: new=%d updated=%d unchanged=%d unsupported=%d oversize=%d errors=%d documents=%d",
            summary.new,
            summary.updated,
            summary.unchanged_skipped,
            summary.unsupported_skipped,
            summary.oversize_skipped,
            len(summary.errors),
            len(documents),
        )

        if not documents:
            if summary.errors:
                summary.stage = Stage.FAILED
                summary.fatal_error = "No documents were produced; every processed file failed"
                logger.error("Ingestion failed: no documents were processed and upserted")
            else:
                summary.stage = Stage.DONE
                logger.info("No documents to upsert; all files were unchanged, unsupported or empty")
            return summary

        summary.stage = Stage.UPSERTING
        deadline.check(summary.stage)
        summary.documents_upserted = write_documents(index, documents, batch_size=settings.upsert_batch_size)
        summary.stage = Stage.DONE
        logger.info("Ingestion completed: %d documents upserted", summary.documents_upserted)
    except IngestError as exc:
        if isinstance(exc, IndexWriteError):
            summary.documents_upserted = exc.written
        logger.error("Ingestion failed during %s: %s", summary.stage.value, exc)
        summary.fatal_error = f"{type(exc).__name__}: {exc}"
        summary.stage = Stage.FAILED
    return summary


def build_pipeline(settings: Settings):
    tokens = GraphTokenProvider(settings.ms_tenant_id, settings.ms_client_id, settings.ms_client_secret)
    provider = GraphDriveProvider(tokens, settings.onedrive_user_principal_name)
    embedder = OpenAIEmbedder(
        settings.openai_api_key,
        model=settings.openai_embed_model,
        dimensions=settings.embedding_dim,
    )
    return provider, build_search_index(settings), embedder


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync a OneDrive folder into the vector index")
    parser.add_argument("--force-all", action="store_true", help="re-process files even if unchanged")
    parser.add_argument("--force-file-id", help="only consider the file with this item id")
    parser.add_argument("--chunk-size", type=int)
    parser.add_argument("--chunk-overlap", type=int)
    parser.add_argument("--timeout-seconds", type=float)
    parser.add_argument("--init-index", action="store_true", help="create or verify the index schema first")
    parser.add_argument("--json-summary", action="store_true", help="print the run summary as JSON")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--status", action="store_true", help="check Graph credentials and the search index, then exit")
    mode.add_argument("--check-index", action="store_true", help="print the index document count and a sample, then exit")
    args = parser.parse_args(argv)

    load_dotenv()
    try:
        settings = load_settings()
    except ValueError as exc:
        if args.status:
            print(json.dumps(StatusReport(errors=[f"Config: {exc}"]).to_dict(), indent=2))
            return 1
        parser.error(str(exc))

    overrides = {}
    if args.chunk_size is not None:
        overrides["chunk_size"] = args.chunk_size
    if args.chunk_overlap is not None:
        overrides["chunk_overlap"] = args.chunk_overlap
    if overrides:
        try:
            settings = replace(settings, **overrides)
        except ValueError as exc:
            parser.error(str(exc))

    provider, index, embedder = build_pipeline(settings)

    if args.status:
        report = check_status(provider.token_provider, index)
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.ok else 1

    if args.check_index:
        try:
            index_report = inspect_index(index)
        except IngestError as exc:
            logger.error("Index check failed: %s", exc)
            return 1
        print(json.dumps(index_report.to_dict(), indent=2))
        return 0

    if args.init_index:
        try:
            index.ensure_schema()
        except (IngestError, ValueError) as exc:
            logger.error("Index setup failed: %s", exc)
            return 1

    summary = run_ingestion(
        provider,
        index,
        embedder,
        settings,
        force_all=args.force_all,
        force_file_id=args.force_file_id,
        timeout_seconds=args.timeout_seconds,
    )

    if args.json_summary:
        print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
