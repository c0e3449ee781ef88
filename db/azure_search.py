"""Azure AI Search backend, spoken to over its REST API."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

import requests

from ingest.errors import IndexQueryError, IndexWriteError
from ingest.models import ChunkDocument

logger = logging.getLogger(__name__)

SEARCH_API_VERSION = "2024-03-01-Preview"
INDEX_API_VERSION = "2023-11-01"
VECTOR_PROFILE = "content-vector-profile"
VECTOR_ALGORITHM = "content-vector-hnsw"


def odata_literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_filter(filter: dict[str, Any]) -> str | None:
    clauses = [f"{field} eq {odata_literal(value)}" for field, value in filter.items()]
    return " and ".join(clauses) or None


def _serialize(doc: ChunkDocument) -> dict[str, Any]:
    fields = doc.to_index_fields()
    for key, value in fields.items():
        if isinstance(value, datetime):
            fields[key] = value.isoformat()
    fields["@search.action"] = "upload"
    return fields


def index_definition(index_name: str, embedding_dim: int) -> dict[str, Any]:
    def field(name: str, type_: str = "Edm.String", **flags: Any) -> dict[str, Any]:
        return {"name": name, "type": type_, "retrievable": True, **flags}

    return {
        "name": index_name,
        "fields": [
            field("id", key=True, filterable=True, sortable=True),
            field("tenant_id", filterable=True),
            field("source", filterable=True),
            field("file_id", filterable=True, sortable=True),
            field("file_path", filterable=True),
            field("file_name", filterable=True, searchable=True),
            field("file_web_url"),
            field("mime_type", filterable=True),
            field("chunk_id", filterable=True),
            field("chunk_offset", "Edm.Int32", filterable=True, sortable=True),
            field("content", searchable=True),
            field(
                "content_vector",
                "Collection(Edm.Single)",
                searchable=True,
                dimensions=embedding_dim,
                vectorSearchProfile=VECTOR_PROFILE,
            ),
            field("content_hash"),
            field("updated_at", "Edm.DateTimeOffset", filterable=True, sortable=True),
        ],
        "vectorSearch": {
            "algorithms": [
                {
                    "name": VECTOR_ALGORITHM,
                    "kind": "hnsw",
                    "hnswParameters": {"metric": "cosine", "m": 4, "efConstruction": 400, "efSearch": 500},
                }
            ],
            "profiles": [{"name": VECTOR_PROFILE, "algorithm": VECTOR_ALGORITHM}],
        },
    }


def _json(resp: requests.Response, error: type[Exception], message: str) -> dict[str, Any]:
    try:
        payload = resp.json()
    except ValueError as exc:
        raise error(f"{message}: response is not JSON: {resp.text[:200]}") from exc
    if not isinstance(payload, dict):
        raise error(f"{message}: expected a JSON object, got {resp.text[:200]}")
    return payload


class AzureSearchIndex:
    def __init__(
        self,
        endpoint: str,
        api_key: str,
        index_name: str,
        embedding_dim: int = 1536,
        session: requests.Session | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.index_name = index_name
        self.embedding_dim = embedding_dim
        self.session = session or requests.Session()
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self._api_key}

    def _post(self, path: str, api_version: str, body: dict[str, Any], timeout: int = 60) -> requests.Response:
        url = f"{self.endpoint}/indexes/{self.index_name}/{path}"
        return self.session.post(url, params={"api-version": api_version}, headers=self._headers(), json=body, timeout=timeout)

    def query(self, filter: dict[str, Any], select: Sequence[str], top: int, skip: int = 0) -> list[dict[str, Any]]:
        body: dict[str, Any] = {
            "search": "*",
            "select": ",".join(select),
            "top": top,
            "skip": skip,
            "orderby": "file_id,id",
        }
        odata = build_filter(filter)
        if odata:
            body["filter"] = odata
        try:
            resp = self._post("docs/search", SEARCH_API_VERSION, body)
        except requests.RequestException as exc:
            raise IndexQueryError(f"Azure Search query failed: {exc}") from exc
        if not resp.ok:
            raise IndexQueryError(f"Azure Search query failed: {resp.status_code} - {resp.text}")
        return _json(resp, IndexQueryError, "Azure Search query failed").get("value", [])

    def upsert(self, documents: Sequence[ChunkDocument]) -> None:
        try:
            resp = self._post("docs/index", INDEX_API_VERSION, {"value": [_serialize(doc) for doc in documents]}, timeout=120)
        except requests.RequestException as exc:
            raise IndexWriteError(f"Azure Search upsert failed: {exc}") from exc
        if not resp.ok:
            raise IndexWriteError(f"Azure Search upsert failed: {resp.status_code} - {resp.text}")

        # 207 Multi-Status: the request went through but some documents did not.
        payload = _json(resp, IndexWriteError, "Azure Search upsert failed")
        failed = [r for r in payload.get("value", []) if not r.get("status", False)]
        if failed:
            details = "; ".join(f"{r.get('key')}: {r.get('errorMessage')}" for r in failed[:5])
            raise IndexWriteError(f"Azure Search rejected {len(failed)} of {len(documents)} documents: {details}")

    def search(self, vector: list[float], top_k: int = 5) -> list[dict[str, Any]]:
        body = {
            "vectorQueries": [{"kind": "vector", "vector": vector, "k": top_k, "fields": "content_vector"}],
            "select": "id,file_name,file_path,file_web_url,chunk_id,content,updated_at",
            "top": top_k,
        }
        try:
            resp = self._post("docs/search", SEARCH_API_VERSION, body)
        except requests.RequestException as exc:
            raise IndexQueryError(f"Azure Search failed: {exc}") from exc
        if not resp.ok:
            raise IndexQueryError(f"Azure Search failed: {resp.status_code} - {resp.text}")
        return _json(resp, IndexQueryError, "Azure Search failed").get("value", [])

    def count(self) -> int:
        url = f"{self.endpoint}/indexes/{self.index_name}/docs/$count"
        try:
            resp = self.session.get(
                url, params={"api-version": INDEX_API_VERSION}, headers=self._headers(), timeout=30
            )
        except requests.RequestException as exc:
            raise IndexQueryError(f"Azure Search count failed: {exc}") from exc
        if not resp.ok:
            raise IndexQueryError(f"Azure Search count failed: {resp.status_code} - {resp.text}")
        try:
            return int(resp.text.strip())
        except ValueError as exc:
            raise IndexQueryError(f"Azure Search count failed: unexpected body {resp.text[:200]!r}") from exc

    def ensure_schema(self) -> None:
        """Create the index if missing; refuse an existing one whose vector size differs."""
        url = f"{self.endpoint}/indexes/{self.index_name}"
        params = {"api-version": INDEX_API_VERSION}
        try:
            resp = self.session.get(url, params=params, headers=self._headers(), timeout=30)
        except requests.RequestException as exc:
            raise IndexWriteError(f"Failed to read index {self.index_name}: {exc}") from exc
        if resp.ok:
            definition = _json(resp, IndexWriteError, f"Failed to read index {self.index_name}")
            fields = {f.get("name"): f for f in definition.get("fields", [])}
            dims = fields.get("content_vector", {}).get("dimensions")
            if dims != self.embedding_dim:
                raise ValueError(
                    f"Index {self.index_name} has content_vector dimensions {dims}, embedding model produces {self.embedding_dim}"
                )
            logger.info("Index %s already exists", self.index_name)
            return
        if resp.status_code != 404:
            raise IndexWriteError(f"Failed to read index {self.index_name}: {resp.status_code} - {resp.text}")

        try:
            resp = self.session.put(
                url,
                params=params,
                headers=self._headers(),
                json=index_definition(self.index_name, self.embedding_dim),
                timeout=60,
            )
        except requests.RequestException as exc:
            raise IndexWriteError(f"Failed to create index {self.index_name}: {exc}") from exc
        if not resp.ok:
            raise IndexWriteError(f"Failed to create index {self.index_name}: {resp.status_code} - {resp.text}")
        logger.info("Created index %s (%d dimensions)", self.index_name, self.embedding_dim)
