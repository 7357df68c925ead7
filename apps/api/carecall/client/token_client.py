"""Fetch join credentials from the token endpoint."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

FILE_FALLBACK_BASE = "http://localhost:3000"
TOKEN_PATH = "/api/token"


class TokenFetchError(RuntimeError):
    """Raised when a token could not be obtained; the message is user facing."""


@dataclass(frozen=True, slots=True)
class TokenGrant:
    token: str
    uid: int
    app_id: str


def resolve_api_base(page_url: str) -> str:
    """Absolute origin the token endpoint is served from for this page.

    Pages opened from disk talk to the local dev server; every other page
    talks to its own origin, localhost included.
    """

    parts = urlsplit(page_url)
    if parts.scheme == "file" or not parts.netloc:
        return FILE_FALLBACK_BASE
    return f"{parts.scheme}://{parts.netloc}"


class TokenClient:
    """Thin async wrapper over ``POST /api/token``."""

    def __init__(self, base_url: str = "", *, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._timeout = timeout

    @classmethod
    def for_page(cls, page_url: str, **kwargs: object) -> "TokenClient":
        return cls(resolve_api_base(page_url), **kwargs)  # type: ignore[arg-type]

    async def fetch(self, channel_name: str, uid: int | None = None) -> TokenGrant:
        payload: dict[str, object] = {"channelName": channel_name}
        if uid is not None:
            payload["uid"] = uid

        try:
            response = await self._post(payload)
        except httpx.HTTPError as exc:
            logger.warning("Token endpoint unreachable: %s", exc)
            raise TokenFetchError("Network error: unable to reach token endpoint") from exc

        body = _json_or_none(response)
        if not response.is_success:
            message = body.get("error") if isinstance(body, dict) else None
            raise TokenFetchError(message or "Failed to fetch token")

        try:
            grant = TokenGrant(token=str(body["token"]), uid=int(body["uid"]), app_id=str(body["appId"]))
        except (TypeError, KeyError, ValueError) as exc:
            raise TokenFetchError("Malformed token response") from exc
        if not grant.token or not grant.app_id:
            raise TokenFetchError("Malformed token response")
        return grant

    async def _post(self, payload: dict[str, object]) -> httpx.Response:
        url = f"{self._base_url}{TOKEN_PATH}"
        if self._http_client is not None:
            return await self._http_client.post(url, json=payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, json=payload)


def _json_or_none(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return None
