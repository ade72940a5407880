"""
bff_core.sessions.stores

Key-value session backends with TTL.

Responsibilities:
- Define the `SessionStore` protocol the session handle depends on.
- Provide an in-memory store (dev/test) and a Redis store (deployed environments).
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from bff_core.errors import SessionStoreError
from bff_core.observability.logging import get_logger

log = get_logger(__name__)


class SessionStore(Protocol):
    async def load(self, session_id: str) -> dict[str, Any] | None: ...

    async def save(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None: ...

    async def touch(self, session_id: str, ttl_seconds: int) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    async def ping(self) -> bool: ...


class MemorySessionStore:
    """
    Process-local store. Sessions do not survive restarts and are not shared
    between workers, so this is only suitable for local development and tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._records: dict[str, tuple[float, str]] = {}

    async def load(self, session_id: str) -> dict[str, Any] | None:
        record = self._records.get(session_id)
        if record is None:
            return None
        expires_at, payload = record
        if self._clock() >= expires_at:
            self._records.pop(session_id, None)
            return None
        return json.loads(payload)

    async def save(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None:
        now = self._clock()
        self._sweep(now)
        # Serialize on write so callers cannot mutate stored state through shared references.
        self._records[session_id] = (now + ttl_seconds, json.dumps(data))

    async def touch(self, session_id: str, ttl_seconds: int) -> None:
        record = self._records.get(session_id)
        if record is not None:
            self._records[session_id] = (self._clock() + ttl_seconds, record[1])

    async def delete(self, session_id: str) -> None:
        self._records.pop(session_id, None)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._records)

    def _sweep(self, now: float) -> None:
        # Abandoned sessions are never loaded again; drop them on the write path.
        expired = [sid for sid, (expires_at, _) in self._records.items() if now >= expires_at]
        for sid in expired:
            del self._records[sid]


class RedisSessionStore:
    """Redis-backed sessions: one JSON string per session under `sess:<id>` with an EX TTL."""

    def __init__(self, client: aioredis.Redis, *, prefix: str = "sess:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 5.0) -> RedisSessionStore:
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def _key(self, session_id: str) -> str:
        return f"{self._prefix}{session_id}"

    async def load(self, session_id: str) -> dict[str, Any] | None:
        try:
            payload = await self._client.get(self._key(session_id))
        except RedisError as e:
            raise SessionStoreError("Session store unavailable") from e
        if payload is None:
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            # Undecodable record is treated as no session; the cookie will be replaced.
            log.warning("session_payload_undecodable")
            return None
        return data if isinstance(data, dict) else None

    async def save(self, session_id: str, data: dict[str, Any], ttl_seconds: int) -> None:
        try:
            await self._client.set(self._key(session_id), json.dumps(data), ex=max(1, ttl_seconds))
        except RedisError as e:
            raise SessionStoreError("Failed to persist session") from e

    async def touch(self, session_id: str, ttl_seconds: int) -> None:
        try:
            await self._client.expire(self._key(session_id), max(1, ttl_seconds))
        except RedisError as e:
            raise SessionStoreError("Failed to refresh session expiry") from e

    async def delete(self, session_id: str) -> None:
        try:
            await self._client.delete(self._key(session_id))
        except RedisError as e:
            raise SessionStoreError("Failed to delete session") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


# --- Module Notes -----------------------------------------------------------
# Store failures surface as `SessionStoreError`; the session handle never swallows them,
# so a failed regenerate/save aborts the login instead of leaving a half-migrated session.
