from __future__ import annotations

from typing import Any, Iterator
from urllib.parse import quote

import requests  # type: ignore[import-untyped]

from sunset_core.errors import NotFoundError, ServiceError
from sunset_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 30.0


def odata_quote(value: str) -> str:
    return value.replace("'", "''")


def path_segment(value: str) -> str:
    return quote(value, safe="")


class GraphClient:
    """Thin JSON client for a Graph-style REST API.

    HTTP 404 maps to NotFoundError. Any other non-2xx status or transport
    failure maps to ServiceError so callers record a failed phase.
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        *,
        access_token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._headers = {"Accept": "application/json"}
        if access_token:
            self._headers["Authorization"] = f"Bearer {access_token}"

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        url = self.url(path)
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers,
                timeout=self._timeout_s,
            )
        except requests.RequestException as exc:
            raise ServiceError(f"{method} {url} failed: {exc}") from exc

        if resp.status_code == 404:
            raise NotFoundError(f"{method} {url} returned 404")
        if resp.status_code < 200 or resp.status_code >= 300:
            logger.warning(
                "Graph request failed",
                extra={"status_code": resp.status_code, "error_message": resp.text[:500]},
            )
            raise ServiceError(f"{method} {url} returned {resp.status_code}")
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ServiceError(f"{method} {url} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ServiceError(f"{method} {url} returned a non-object payload")
        return payload

    def get(self, path: str, *, params: dict[str, str] | None = None) -> dict[str, Any]:
        return self.request("GET", path, params=params) or {}

    def post(self, path: str, json_body: dict[str, Any] | None = None) -> dict[str, Any] | None:
        return self.request("POST", path, json_body=json_body or {})

    def delete(self, path: str) -> None:
        self.request("DELETE", path)

    def iter_collection(
        self,
        path: str,
        *,
        params: dict[str, str] | None = None,
    ) -> Iterator[dict[str, Any]]:
        payload = self.get(path, params=params)
        while True:
            for item in payload.get("value", []) or []:
                if isinstance(item, dict):
                    yield item
            next_link = payload.get("@odata.nextLink")
            if not next_link:
                return
            # nextLink already carries the query string.
            payload = self.get(str(next_link))
