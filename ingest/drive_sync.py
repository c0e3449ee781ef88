from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable, Iterator
from datetime import timezone
from typing import Any, Protocol
from urllib.parse import quote

import requests
from dateutil import parser as dt_parser

from ingest.errors import GuardrailViolation, PathResolutionError, RemoteFetchError
from ingest.graph_auth import GraphTokenProvider
from ingest.models import RemoteItem, SkipReason

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class DriveProvider(Protocol):
    def get_root_id(self) -> str: ...

    def resolve_folder_path(self, root_id: str, path: str) -> str: ...

    def list_files_recursive(self, folder_id: str) -> Iterable[RemoteItem]: ...

    def get_content(self, item_id: str, max_bytes: int | None = None) -> bytes: ...


def normalize_item_id(item_id: str) -> str:
    """Strip the ``driveId!`` prefix some Graph responses put on item ids."""
    return item_id.split("!", 1)[1] if "!" in item_id else item_id


def parse_item(entry: dict[str, Any], folder_path: str = "") -> RemoteItem:
    if not entry.get("id"):
        raise RemoteFetchError(f"Graph item without an id: {entry.get('name')!r}")
    modified_time = None
    if entry.get("lastModifiedDateTime"):
        try:
            modified_time = dt_parser.isoparse(entry["lastModifiedDateTime"]).astimezone(timezone.utc)
        except ValueError:
            logger.warning("Unparseable lastModifiedDateTime on %s: %r", entry.get("name"), entry["lastModifiedDateTime"])

    return RemoteItem(
        id=normalize_item_id(entry["id"]),
        name=entry.get("name", ""),
        web_url=entry.get("webUrl", ""),
        is_folder="folder" in entry,
        mime_type=(entry.get("file") or {}).get("mimeType"),
        size_bytes=entry.get("size"),
        last_modified_at=modified_time,
        folder_path=folder_path,
    )


class GraphDriveProvider:
    """A user's OneDrive, listed and downloaded through Microsoft Graph."""

    def __init__(
        self,
        token_provider: GraphTokenProvider,
        user_principal_name: str,
        session: requests.Session | None = None,
        base_url: str = GRAPH_BASE_URL,
    ) -> None:
        self.token_provider = token_provider
        self.user_principal_name = user_principal_name
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self._drive_id: str | None = None

    @property
    def drive_id(self) -> str:
        if self._drive_id is None:
            data = self._get_json(f"{self._user_url}/drive", "Failed to get OneDrive drive")
            self._drive_id = _required_id(data, "Failed to get OneDrive drive")
        return self._drive_id

    @property
    def _user_url(self) -> str:
        return f"{self.base_url}/users/{quote(self.user_principal_name, safe='')}"

    def get_root_id(self) -> str:
        data = self._get_json(f"{self._user_url}/drive/root", "Failed to get OneDrive root")
        return normalize_item_id(_required_id(data, "Failed to get OneDrive root"))

    def list_children(self, container_id: str, cursor: str | None = None) -> tuple[list[RemoteItem], str | None]:
        url = cursor or f"{self.base_url}/drives/{self.drive_id}/items/{normalize_item_id(container_id)}/children"
        data = self._get_json(url, "Failed to list folder")
        items = [parse_item(entry) for entry in data.get("value", [])]
        return items, data.get("@odata.nextLink")

    def iter_children(self, container_id: str) -> Iterator[RemoteItem]:
        """All children of one folder, following nextLink until the listing is drained."""
        cursor = None
        while True:
            items, cursor = self.list_children(container_id, cursor)
            yield from items
            if not cursor:
                return

    def resolve_folder_path(self, root_id: str, path: str) -> str:
        folder_id = normalize_item_id(root_id)
        for segment in [part for part in path.split("/") if part]:
            match = next(
                (child for child in self.iter_children(folder_id) if child.is_folder and child.name == segment),
                None,
            )
            if match is None:
                raise PathResolutionError(path, segment)
            folder_id = match.id
        return folder_id

    def list_files_recursive(self, folder_id: str) -> Iterator[RemoteItem]:
        stack: list[tuple[str, list[str]]] = [(normalize_item_id(folder_id), [])]
        while stack:
            container_id, path_parts = stack.pop()
            subfolders: list[tuple[str, list[str]]] = []
            for child in self.iter_children(container_id):
                if child.is_folder:
                    subfolders.append((child.id, path_parts + [child.name]))
                    continue
                child.folder_path = "/".join(path_parts)
                yield child
            # Reversed so the first subfolder is popped first (listing order, depth-first).
            stack.extend(reversed(subfolders))

    def get_content(self, item_id: str, max_bytes: int | None = None) -> bytes:
        url = f"{self.base_url}/drives/{self.drive_id}/items/{normalize_item_id(item_id)}/content"
        buffer = bytearray()
        try:
            with self.session.get(url, headers=self._headers(), stream=True, timeout=60) as r:
                if not r.ok:
                    raise RemoteFetchError("Failed to download file", r.status_code, r.text)
                for chunk in r.iter_content(chunk_size=1024 * 128):
                    if not chunk:
                        continue
                    buffer.extend(chunk)
                    if max_bytes is not None and len(buffer) > max_bytes:
                        raise GuardrailViolation(
                            SkipReason.FILE_TOO_LARGE,
                            f"download exceeded {max_bytes} bytes",
                        )
        except requests.RequestException as exc:
            raise RemoteFetchError(f"Failed to download file: {exc}") from exc
        return bytes(buffer)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token_provider.get_token()}"}

    def _get_json(self, url: str, message: str) -> dict[str, Any]:
        try:
            resp = self.session.get(url, headers=self._headers(), timeout=30)
        except requests.RequestException as exc:
            raise RemoteFetchError(f"{message}: {exc}") from exc
        if not resp.ok:
            raise RemoteFetchError(message, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteFetchError(f"{message}: response is not JSON", resp.status_code, resp.text[:200]) from exc
        if not isinstance(data, dict):
            raise RemoteFetchError(f"{message}: expected a JSON object", resp.status_code, resp.text[:200])
        return data


def _required_id(data: dict[str, Any], message: str) -> str:
    if not data.get("id"):
        raise RemoteFetchError(f"{message}: response has no id")
    return data["id"]


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
