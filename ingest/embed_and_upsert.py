from __future__ import annotations

import logging
from typing import Protocol, Sequence

import openai
from openai import OpenAI

from ingest.errors import EmbeddingError, IndexWriteError
from ingest.models import ChunkDocument

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 100
EMBED_TIMEOUT_SECONDS = 60.0
EMBED_MAX_RETRIES = 2


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def _openai_client(api_key: str | None) -> OpenAI:
    if not api_key:
        raise ValueError("OPENAI_API_KEY is required")
    return OpenAI(api_key=api_key, timeout=EMBED_TIMEOUT_SECONDS, max_retries=EMBED_MAX_RETRIES)


class OpenAIEmbedder:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        client: OpenAI | None = None,
    ) -> None:
        self.client = client or _openai_client(api_key)
        self.model = model
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        try:
            response = self.client.embeddings.create(model=self.model, input=[text])
        except openai.OpenAIError as exc:
            raise EmbeddingError(f"OpenAI embedding failed: {exc}") from exc

        embedding = response.data[0].embedding
        if self.dimensions and len(embedding) != self.dimensions:
            raise EmbeddingError(
                f"Embedding model {self.model} returned {len(embedding)} dimensions, index expects {self.dimensions}"
            )
        return embedding


def write_documents(index, documents: Sequence[ChunkDocument], batch_size: int = UPSERT_BATCH_SIZE) -> int:
    """Upsert *documents* in fixed-size batches, one batch at a time.

    A failing batch aborts the write; batches already sent stay committed.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    total_batches = (len(documents) + batch_size - 1) // batch_size
    written = 0
    for batch_no, offset in enumerate(range(0, len(documents), batch_size), start=1):
        batch = list(documents[offset : offset + batch_size])
        logger.info("Upserting batch %d/%d (%d documents)", batch_no, total_batches, len(batch))
        try:
            index.upsert(batch)
        except IndexWriteError as exc:
            logger.error("Batch %d/%d failed after %d documents were written", batch_no, total_batches, written)
            exc.written = written
            raise
        written += len(batch)
    return written
