"""Unit tests for the Graph tree walker and content fetcher."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeResponse, FakeSession
from ingest.drive_sync import GraphDriveProvider, normalize_item_id, parse_item
from ingest.errors import GuardrailViolation, PathResolutionError, RemoteFetchError
from ingest.models import SkipReason

BASE = "https://graph.test/v1.0"
USER = f"{BASE}/users/user%40example.com"


def children_url(item_id: str) -> str:
    return f"{BASE}/drives/drive-1/items/{item_id}/children"


def folder(item_id: str, name: str) -> dict:
    return {"id": item_id, "name": name, "webUrl": f"https://od/{name}", "folder": {"childCount": 1}}


def file(item_id: str, name: str, modified: str = "2024-05-01T12:00:00Z", size: int = 10) -> dict:
    return {
        "id": item_id,
        "name": name,
        "webUrl": f"https://od/{name}",
        "file": {"mimeType": "text/plain"},
        "size": size,
        "lastModifiedDateTime": modified,
    }


def page(items: list[dict], next_link: str | None = None) -> FakeResponse:
    payload: dict = {"value": items}
    if next_link:
        payload["@odata.nextLink"] = next_link
    return FakeResponse(payload=payload)


@pytest.fixture
def tree_session() -> FakeSession:
    return FakeSession(
        {
            f"{USER}/drive": FakeResponse(payload={"id": "drive-1"}),
            f"{USER}/drive/root": FakeResponse(payload={"id": "drive-1!root"}),
            children_url("root"): page([folder("drive-1!docs", "Docs"), file("r1", "Docs.txt")], "https://graph.test/next-root"),
            "https://graph.test/next-root": page([file("top", "top.txt")]),
            children_url("docs"): page([file("a", "a.txt"), folder("drive-1!sub", "Sub"), file("b", "b.pdf")]),
            children_url("sub"): page([folder("drive-1!deep", "Deep"), file("c", "c.md")], "https://graph.test/next-sub"),
            "https://graph.test/next-sub": page([file("d", "d.xlsx")]),
            children_url("deep"): page([file("e", "e.docx")]),
        }
    )


@pytest.fixture
def provider(tree_session: FakeSession) -> GraphDriveProvider:
    tokens = MagicMock()
    tokens.get_token.return_value = "tok"
    return GraphDriveProvider(tokens, "user@example.com", session=tree_session, base_url=BASE)


class TestParsing:
    def test_normalize_item_id(self) -> None:
        assert normalize_item_id("b!abc!ITEM") == "abc!ITEM"
        assert normalize_item_id("drive-1!ITEM") == "ITEM"
        assert normalize_item_id("ITEM") == "ITEM"

    def test_parse_item(self) -> None:
        item = parse_item(file("drive-1!x", "Report.PDF", modified="2024-05-01T14:00:00+02:00", size=42))
        assert item.id == "x"
        assert item.extension == "pdf"
        assert item.size_bytes == 42
        assert item.mime_type == "text/plain"
        assert not item.is_folder
        assert item.last_modified_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def test_parse_folder_without_timestamp(self) -> None:
        item = parse_item(folder("f", "Sub"))
        assert item.is_folder
        assert item.last_modified_at is None
        assert item.mime_type is None


class TestWalker:
    def test_root_id_is_normalized(self, provider: GraphDriveProvider) -> None:
        assert provider.get_root_id() == "root"

    def test_list_children_returns_cursor(self, provider: GraphDriveProvider) -> None:
        items, cursor = provider.list_children("root")
        assert [i.name for i in items] == ["Docs", "Docs.txt"]
        assert cursor == "https://graph.test/next-root"

        items, cursor = provider.list_children("root", cursor)
        assert [i.name for i in items] == ["top.txt"]
        assert cursor is None

    def test_resolve_folder_path(self, provider: GraphDriveProvider) -> None:
        assert provider.resolve_folder_path("drive-1!root", "/Docs/Sub/") == "sub"
        assert provider.resolve_folder_path("root", "") == "root"

    def test_resolve_requires_folder_match(self, provider: GraphDriveProvider) -> None:
        with pytest.raises(PathResolutionError) as excinfo:
            provider.resolve_folder_path("root", "Docs.txt")
        assert excinfo.value.segment == "Docs.txt"

    def test_resolve_missing_segment(self, provider: GraphDriveProvider) -> None:
        with pytest.raises(PathResolutionError, match="Missing"):
            provider.resolve_folder_path("root", "Docs/Missing")

    def test_resolve_searches_every_page(self, provider: GraphDriveProvider, tree_session: FakeSession) -> None:
        with pytest.raises(PathResolutionError):
            provider.resolve_folder_path("root", "Nowhere")
        urls = [call["url"] for call in tree_session.calls]
        assert "https://graph.test/next-root" in urls

    def test_lists_all_descendant_files(self, provider: GraphDriveProvider) -> None:
        files = list(provider.list_files_recursive("drive-1!docs"))

        assert [f.name for f in files] == ["a.txt", "b.pdf", "c.md", "d.xlsx", "e.docx"]
        assert [f.file_path for f in files] == ["a.txt", "b.pdf", "Sub/c.md", "Sub/d.xlsx", "Sub/Deep/e.docx"]
        assert not any(f.is_folder for f in files)

    def test_sends_bearer_token(self, provider: GraphDriveProvider, tree_session: FakeSession) -> None:
        provider.get_root_id()
        assert tree_session.calls[0]["headers"] == {"Authorization": "Bearer tok"}

    def test_error_carries_status_and_body(self) -> None:
        session = FakeSession(
            {
                f"{USER}/drive": FakeResponse(payload={"id": "drive-1"}),
                children_url("root"): FakeResponse(status=403, text='{"error": "accessDenied"}'),
            }
        )
        provider = GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

        with pytest.raises(RemoteFetchError) as excinfo:
            list(provider.list_files_recursive("root"))
        assert excinfo.value.status == 403
        assert excinfo.value.body == '{"error": "accessDenied"}'
        assert "accessDenied" in str(excinfo.value)

    def test_network_error_is_remote_fetch_error(self) -> None:
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("unreachable")
        provider = GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

        with pytest.raises(RemoteFetchError, match="unreachable"):
            provider.get_root_id()

    def test_html_body_is_remote_fetch_error(self) -> None:
        session = FakeSession({f"{USER}/drive/root": FakeResponse(text="<html>proxy login</html>")})
        provider = GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

        with pytest.raises(RemoteFetchError, match="not JSON") as excinfo:
            provider.get_root_id()
        assert excinfo.value.status == 200

    def test_response_without_id(self) -> None:
        session = FakeSession({f"{USER}/drive": FakeResponse(payload={"name": "OneDrive"})})
        provider = GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

        with pytest.raises(RemoteFetchError, match="no id"):
            provider.list_children("root")

    def test_child_without_id(self) -> None:
        session = FakeSession(
            {
                f"{USER}/drive": FakeResponse(payload={"id": "drive-1"}),
                children_url("root"): page([{"name": "ghost.txt", "file": {}}]),
            }
        )
        provider = GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

        with pytest.raises(RemoteFetchError, match="ghost.txt"):
            list(provider.list_files_recursive("root"))


class TestContentFetcher:
    def _provider(self, response: FakeResponse) -> GraphDriveProvider:
        session = FakeSession(
            {
                f"{USER}/drive": FakeResponse(payload={"id": "drive-1"}),
                f"{BASE}/drives/drive-1/items/ITEM/content": response,
            }
        )
        return GraphDriveProvider(MagicMock(), "user@example.com", session=session, base_url=BASE)

    def test_downloads_bytes(self) -> None:
        data = b"x" * 300_000
        assert self._provider(FakeResponse(content=data)).get_content("drive-1!ITEM") == data

    def test_exact_limit_is_allowed(self) -> None:
        data = b"x" * 1000
        assert self._provider(FakeResponse(content=data)).get_content("ITEM", max_bytes=1000) == data

    def test_stops_reading_past_limit(self) -> None:
        provider = self._provider(FakeResponse(content=b"x" * 1001))
        with pytest.raises(GuardrailViolation) as excinfo:
            provider.get_content("ITEM", max_bytes=1000)
        assert excinfo.value.reason == SkipReason.FILE_TOO_LARGE

    def test_download_error(self) -> None:
        provider = self._provider(FakeResponse(status=404, text="itemNotFound"))
        with pytest.raises(RemoteFetchError) as excinfo:
            provider.get_content("ITEM")
        assert excinfo.value.status == 404
        assert "itemNotFound" in str(excinfo.value)
