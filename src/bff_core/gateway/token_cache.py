"""
bff_core.gateway.token_cache

OAuth client-credentials token cache for calls to the private backend.

Responsibilities:
- Return the cached token while it is outside the refresh buffer.
- Share one outbound token request between all concurrent callers.
- Allow an explicit reset for forced rotation and tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from bff_core.auth.drivers.base import now_ms
from bff_core.errors import UpstreamUnavailable
from bff_core.observability.logging import get_logger
from bff_core.settings import OAuthClientConfig

log = get_logger(__name__)

EXPIRY_BUFFER_MS = 60_000


@dataclass(frozen=True, slots=True)
class CachedToken:
    access_token: str
    expires_at: int  # epoch ms


class TokenCache:
    """
    One instance per process, created at startup and injected.

    This is service-to-service identity: the token is shared by every user request.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        clock: Callable[[], int] = now_ms,
        buffer_ms: int = EXPIRY_BUFFER_MS,
    ) -> None:
        self._http = http
        self._clock = clock
        self._buffer_ms = buffer_ms
        self._cached: CachedToken | None = None
        self._inflight: asyncio.Task[CachedToken] | None = None

    @property
    def cached(self) -> CachedToken | None:
        return self._cached

    async def get_access_token(self, config: OAuthClientConfig) -> str:
        cached = self._cached
        if cached is not None and self._clock() < cached.expires_at - self._buffer_ms:
            return cached.access_token

        if self._inflight is None:
            self._inflight = asyncio.create_task(self._fetch(config))
        # Shield so one cancelled caller does not cancel the fetch everyone else awaits.
        token = await asyncio.shield(self._inflight)
        return token.access_token

    def clear(self) -> None:
        self._cached = None
        self._inflight = None

    async def _fetch(self, config: OAuthClientConfig) -> CachedToken:
        try:
            log.debug("oauth_token_fetch", endpoint=config.token_endpoint)
            try:
                r = await self._http.post(
                    config.token_endpoint,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": config.client_id,
                        "client_secret": config.client_secret,
                        "scope": config.scope,
                    },
                    headers={"Accept": "application/json"},
                )
            except httpx.HTTPError as e:
                raise UpstreamUnavailable("OAuth token request failed: transport error") from e

            if not r.is_success:
                log.error("oauth_token_request_failed", status=r.status_code)
                raise UpstreamUnavailable(f"OAuth token request failed: {r.status_code}")

            try:
                payload = r.json()
                access_token = payload["access_token"]
                expires_in = int(payload["expires_in"])
            except (ValueError, KeyError, TypeError) as e:
                raise UpstreamUnavailable("OAuth token response was malformed") from e
            if not isinstance(access_token, str) or not access_token:
                raise UpstreamUnavailable("OAuth token response was malformed")

            token = CachedToken(access_token=access_token, expires_at=self._clock() + expires_in * 1000)
            # A `clear()` during the fetch detaches this task; its result must not repopulate the cache.
            if self._inflight is asyncio.current_task():
                self._cached = token
            log.info("oauth_token_acquired", expires_in=expires_in)
            return token
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None


# --- Module Notes -----------------------------------------------------------
# No retries here: a failed fetch fails every caller waiting on it, and the next call
# after that starts a fresh request.
