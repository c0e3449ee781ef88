from __future__ import annotations

import logging
import threading
import time
from typing import Callable

import requests

from ingest.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_URL = "https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
REFRESH_MARGIN_SECONDS = 5 * 60


class GraphTokenProvider:
    """Client-credentials bearer token for Microsoft Graph, cached until near expiry.

    Refreshes are serialized: concurrent callers wait on the lock and then
    reuse the freshly cached token instead of fetching their own.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        session: requests.Session | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.session = session or requests.Session()
        self._clock = clock
        self._lock = threading.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    def get_token(self) -> str:
        return self.refresh_if_needed()

    def refresh_if_needed(self) -> str:
        with self._lock:
            if self._token and self._expires_at - REFRESH_MARGIN_SECONDS > self._clock():
                return self._token
            self._token, lifetime = self._fetch_token()
            self._expires_at = self._clock() + lifetime
            return self._token

    def _fetch_token(self) -> tuple[str, float]:
        url = TOKEN_URL.format(tenant_id=self.tenant_id)
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            resp = self.session.post(url, data=data, timeout=30)
        except requests.RequestException as exc:
            raise AuthError(f"Graph token request failed: {exc}") from exc

        if not resp.ok:
            raise AuthError(f"Graph token fetch failed: {resp.status_code} - {resp.text}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError(f"Graph token response is not JSON: {resp.text[:200]}") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthError("Graph token response did not contain an access_token")
        logger.info("Obtained Graph token (expires in %ss)", payload.get("expires_in"))
        return token, float(payload.get("expires_in", 3600))
