"""Shared pytest configuration, fixtures and in-memory fakes."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import pytest

from ingest.config import Settings
from ingest.errors import IndexWriteError
from ingest.models import ChunkDocument, RemoteItem


def make_item(
    item_id: str,
    name: str,
    modified: datetime | None = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    size: int | None = None,
    folder_path: str = "",
    mime_type: str | None = "text/plain",
) -> RemoteItem:
    return RemoteItem(
        id=item_id,
        name=name,
        web_url=f"https://onedrive.example/{item_id}",
        is_folder=False,
        mime_type=mime_type,
        size_bytes=size,
        last_modified_at=modified,
        folder_path=folder_path,
    )


def make_document(idx: int, file_id: str = "file-1") -> ChunkDocument:
    return ChunkDocument(
        id=f"{file_id}_{idx}",
        tenant_id="tenant-1",
        file_id=file_id,
        file_path=f"Docs/{file_id}.txt",
        file_name=f"{file_id}.txt",
        web_url=f"https://onedrive.example/{file_id}",
        mime_type="text/plain",
        chunk_id=f"{file_id}_chunk_{idx}",
        chunk_offset=idx,
        content=f"chunk {idx}",
        content_vector=[0.1, 0.2, 0.3],
        content_hash="abc",
        updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )


class FakeResponse:
    """Just enough of ``requests.Response`` for the HTTP clients under test."""

    def __init__(self, status: int = 200, payload: Any = None, content: bytes = b"", text: str | None = None) -> None:
        self.status_code = status
        self._payload = payload
        self._content = content
        self.text = text if text is not None else json.dumps(payload)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if self._payload is None:
            return json.loads(self.text)
        return self._payload

    def iter_content(self, chunk_size: int = 1):
        for start in range(0, len(self._content), chunk_size):
            yield self._content[start : start + chunk_size]

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> bool:
        return False


class FakeSession:
    """Routes GET requests by URL; each route is a response or a list served in order."""

    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = {url: list(r) if isinstance(r, list) else [r] for url, r in routes.items()}
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        responses = self.routes[url]
        return responses.pop(0) if len(responses) > 1 else responses[0]


class FakeDrive:
    """A remote folder held in memory: item id -> (RemoteItem, content)."""

    def __init__(self, files: dict[str, tuple[RemoteItem, bytes]] | None = None) -> None:
        self.files = dict(files or {})
        self.fetched: list[str] = []
        self.listing_error: Exception | None = None
        self.content_errors: dict[str, Exception] = {}

    def put(self, item: RemoteItem, content: bytes) -> None:
        self.files[item.id] = (item, content)

    def get_root_id(self) -> str:
        return "root"

    def resolve_folder_path(self, root_id: str, path: str) -> str:
        if self.listing_error:
            raise self.listing_error
        return "folder"

    def list_files_recursive(self, folder_id: str):
        for item, _ in self.files.values():
            yield item

    def get_content(self, item_id: str, max_bytes: int | None = None) -> bytes:
        self.fetched.append(item_id)
        if item_id in self.content_errors:
            raise self.content_errors[item_id]
        return self.files[item_id][1]


class InMemoryIndex:
    """Search index keyed by document id; upsert replaces whole documents."""

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.upsert_calls: list[int] = []
        self.query_calls: list[dict[str, Any]] = []
        self.fail_upsert_on_call: int | None = None
        self.query_error: Exception | None = None

    def query(self, filter: dict[str, Any], select, top: int, skip: int = 0) -> list[dict[str, Any]]:
        self.query_calls.append({"filter": filter, "select": list(select), "top": top, "skip": skip})
        if self.query_error:
            raise self.query_error
        matching = [
            doc for doc in self.docs.values() if all(doc.get(key) == value for key, value in filter.items())
        ]
        matching.sort(key=lambda d: (d["file_id"], d["id"]))
        return [{key: doc[key] for key in select} for doc in matching[skip : skip + top]]

    def upsert(self, documents) -> None:
        self.upsert_calls.append(len(documents))
        if self.fail_upsert_on_call == len(self.upsert_calls):
            raise IndexWriteError("Index upsert failed: 503 - unavailable")
        for doc in documents:
            self.docs[doc.id] = doc.to_index_fields()

    def search(self, vector, top_k: int = 5):
        return list(self.docs.values())[:top_k]

    def count(self) -> int:
        if self.query_error:
            raise self.query_error
        return len(self.docs)

    def ensure_schema(self) -> None:
        pass

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {key: dict(value) for key, value in self.docs.items()}


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls = 0
        self.error: Exception | None = None

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.error:
            raise self.error
        return [float(len(text)), 1.0, 0.0]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="sk-test",
        ms_tenant_id="tenant-1",
        ms_client_id="client-1",
        ms_client_secret="secret",
        onedrive_user_principal_name="user@example.com",
        onedrive_folder_path="Docs",
        database_url="postgresql://localhost/test",
    )


@pytest.fixture
def index() -> InMemoryIndex:
    return InMemoryIndex()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()
