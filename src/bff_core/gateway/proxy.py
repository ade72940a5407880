"""
bff_core.gateway.proxy

Transparent proxy from the BFF to the private backend.

Responsibilities:
- Reject parent-directory traversal before any token or network call.
- Inject the service bearer token and forward method, query and JSON body.
- Return upstream status and body verbatim; map transport failures to 502.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import httpx

from bff_core.errors import PathTraversalRejected, UpstreamUnavailable
from bff_core.gateway.token_cache import TokenCache
from bff_core.observability.logging import get_logger
from bff_core.settings import OAuthClientConfig

log = get_logger(__name__)

_BODYLESS_METHODS = frozenset({"GET", "HEAD", "DELETE", "OPTIONS"})


def sanitize_path(raw: str | None) -> str | None:
    """Return the path with exactly one leading slash, or None if it tries to climb out."""

    raw = raw or ""
    # Also catch an encoded `%2e%2e` that a lenient backend would decode.
    if ".." in raw or ".." in unquote(raw):
        return None
    return "/" + raw.lstrip("/")


@dataclass(slots=True)
class GatewayRequest:
    method: str
    path: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)
    query: str = ""


@dataclass(frozen=True, slots=True)
class GatewayResponse:
    status: int
    data: Any


class GatewayProxy:
    def __init__(self, http: httpx.AsyncClient, token_cache: TokenCache) -> None:
        self._http = http
        self._token_cache = token_cache

    async def proxy_request(
        self,
        base_url: str,
        oauth_config: OAuthClientConfig,
        request: GatewayRequest,
    ) -> GatewayResponse:
        path = sanitize_path(request.path)
        if path is None:
            raise PathTraversalRejected(request.path)

        token = await self._token_cache.get_access_token(oauth_config)
        url = f"{base_url.rstrip('/')}{path}"
        if request.query:
            url = f"{url}?{request.query}"

        method = request.method.upper()
        headers = {"Content-Type": "application/json", **request.headers}
        # Set last: a caller-supplied Authorization header must never reach the backend.
        headers["Authorization"] = f"Bearer {token}"
        content = None
        if request.body is not None and method not in _BODYLESS_METHODS:
            content = json.dumps(request.body)

        log.debug("gateway_request", method=method, path=path)
        try:
            r = await self._http.request(method, url, headers=headers, content=content)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable("Failed to reach backend service") from e

        return GatewayResponse(status=r.status_code, data=_parse_body(r))


def _parse_body(r: httpx.Response) -> Any:
    if not r.content:
        return None
    content_type = r.headers.get("content-type", "")
    if "json" not in content_type:
        return r.text
    try:
        return r.json()
    except ValueError as e:
        raise UpstreamUnavailable("Backend returned an unreadable response") from e


# --- Module Notes -----------------------------------------------------------
# Upstream 4xx/5xx bodies are passed through untouched; only failures to talk to the
# backend at all become BAD_GATEWAY.
