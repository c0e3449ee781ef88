from __future__ import annotations

from typing import Any, Protocol, Sequence

from db.azure_search import AzureSearchIndex
from db.pgvector_index import PgVectorIndex
from ingest.config import Settings
from ingest.models import ChunkDocument


class SearchIndex(Protocol):
    def query(self, filter: dict[str, Any], select: Sequence[str], top: int, skip: int = 0) -> list[dict[str, Any]]: ...

    def upsert(self, documents: Sequence[ChunkDocument]) -> None: ...

    def search(self, vector: list[float], top_k: int = 5) -> list[dict[str, Any]]: ...

    def count(self) -> int: ...

    def ensure_schema(self) -> None: ...


def build_search_index(settings: Settings) -> SearchIndex:
    if settings.index_backend == "azure":
        return AzureSearchIndex(
            endpoint=settings.azure_search_endpoint,
            api_key=settings.azure_search_api_key,
            index_name=settings.azure_search_index_name,
            embedding_dim=settings.embedding_dim,
        )
    return PgVectorIndex(settings.database_url, embedding_dim=settings.embedding_dim)
