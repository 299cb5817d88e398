"""
Thin wrapper around the Spotify Web API for anonymous album search.

Only the client-credentials grant is used: no user identity is needed to
search the catalog. One client is built per ingestion run and handed to the
CatalogMatcher explicitly.

Errors are mapped onto the shared taxonomy so the retry loop in
``pitchfork_ingest.scraper.retry`` can wait out Spotify's own rate limit.

The pipeline calls the client from several worker threads at once. HTTP
calls share one ``requests.Session``, which is not thread-safe, so they are
serialized behind a lock.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from typing import Any

import requests

from pitchfork_ingest.domain.models import CatalogCandidate
from pitchfork_ingest.errors import (
    CatalogError,
    FetchError,
    NetworkError,
    RateLimitError,
    ServerError,
    parse_retry_after,
)

logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
SEARCH_URL = "https://api.spotify.com/v1/search"
DEFAULT_TIMEOUT = 10
DEFAULT_SEARCH_LIMIT = 5


class SpotifyCatalogClient:
    """Blocking Spotify client. Call from a worker thread in async code."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        user_agent: str | None = None,
    ) -> None:
        if not client_id or not client_secret:
            msg = "Spotify client id and secret are required."
            raise CatalogError(msg)

        self._client_id = client_id
        self._client_secret = client_secret
        self._session = session or requests.Session()
        self._timeout = timeout
        self._search_limit = search_limit
        self._access_token: str | None = None
        self._lock = threading.Lock()
        if user_agent:
            self._session.headers["User-Agent"] = user_agent

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "SpotifyCatalogClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    @property
    def access_token(self) -> str | None:
        return self._access_token

    def client_credentials_grant(self) -> str:
        """Obtain an app access token and keep it for subsequent searches."""
        response = self._request(
            "POST",
            TOKEN_URL,
            data={"grant_type": "client_credentials"},
            auth=(self._client_id, self._client_secret),
        )
        payload = _json_or_error(response)

        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            msg = "Spotify token response has no access_token."
            raise CatalogError(msg)

        self._access_token = token
        logger.info(
            "Obtained Spotify access token (expires_in=%s).",
            payload.get("expires_in"),
        )
        return token

    def search(
        self,
        query: str,
        types: Sequence[str] = ("album",),
    ) -> list[CatalogCandidate]:
        """Search the catalog. Results keep Spotify's relevance order."""
        if self._access_token is None:
            msg = "client_credentials_grant() must be called before search()."
            raise CatalogError(msg)

        response = self._request(
            "GET",
            SEARCH_URL,
            params={
                "q": query,
                "type": ",".join(types),
                "limit": self._search_limit,
            },
            headers={"Authorization": f"Bearer {self._access_token}"},
        )
        payload = _json_or_error(response)

        items = (payload.get("albums") or {}).get("items") or []
        candidates = [c for c in (_candidate_from_item(i) for i in items) if c]

        logger.debug("Spotify search %r returned %d albums", query, len(candidates))
        return candidates

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            with self._lock:
                response = self._session.request(
                    method, url, timeout=self._timeout, **kwargs
                )
        except (requests.ConnectionError, requests.Timeout) as exc:
            msg = f"Spotify request failed: {exc}"
            raise NetworkError(msg, url=url) from exc

        status = response.status_code
        if status == 429:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            msg = "Spotify rate limit exceeded"
            raise RateLimitError(msg, url=url, retry_after_seconds=retry_after)
        if 500 <= status < 600:
            msg = f"Spotify server error (status={status})"
            raise ServerError(msg, url=url, status_code=status)
        if status in (400, 401, 403) and url == TOKEN_URL:
            msg = f"Spotify rejected the client credentials (status={status})"
            raise CatalogError(msg)
        if status >= 400:
            msg = f"Spotify HTTP {status} for {url}"
            raise FetchError(msg, url=url)
        return response


def _json_or_error(response: requests.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        msg = "Spotify returned a non-JSON response."
        raise CatalogError(msg) from exc
    if not isinstance(payload, dict):
        msg = "Spotify returned an unexpected JSON payload."
        raise CatalogError(msg)
    return payload


def _candidate_from_item(item: Any) -> CatalogCandidate | None:
    if not isinstance(item, dict) or not item.get("uri"):
        return None
    return CatalogCandidate(
        uri=item["uri"],
        display_name=item.get("name", ""),
        artist_names=[
            a["name"]
            for a in item.get("artists") or []
            if isinstance(a, dict) and a.get("name")
        ],
    )
