from __future__ import annotations


class IngestError(Exception):
    """Base class for ingestion failures."""


class PathResolutionError(IngestError):
    def __init__(self, path: str, segment: str) -> None:
        super().__init__(f"Folder not found: {segment!r} (while resolving {path!r})")
        self.path = path
        self.segment = segment


class AuthError(IngestError):
    pass


class RemoteFetchError(IngestError):
    def __init__(self, message: str, status: int | None = None, body: str = "") -> None:
        detail = f"{message}: {status} - {body}" if status is not None else message
        super().__init__(detail)
        self.status = status
        self.body = body


class ExtractionError(IngestError):
    def __init__(self, fmt: str, cause: object) -> None:
        super().__init__(f"{fmt.upper()} parsing failed: {cause}")
        self.format = fmt
        self.cause = cause


class GuardrailViolation(IngestError):
    """A size or count limit was exceeded; the file is skipped, not failed."""

    def __init__(self, reason, detail: str) -> None:
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


class EmbeddingError(IngestError):
    pass


class IndexQueryError(IngestError):
    pass


class IndexWriteError(IngestError):
    """An upsert batch was rejected; ``written`` counts documents committed before it."""

    written = 0


class IngestTimeoutError(IngestError, TimeoutError):
    pass
