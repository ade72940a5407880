"""
bff_core.sessions.session

The per-request session handle.

Responsibilities:
- Mapping-style access to named session fields (`user`, `csrfSecret`, `lastAuthAt`).
- Lifecycle operations: regenerate (new id), save, destroy.
- Signed session-cookie encoding with secret rotation support.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from bff_core.sessions.stores import SessionStore

# Well-known field names; kept identical to what the SPA-facing session has always stored.
USER_KEY = "user"
CSRF_SECRET_KEY = "csrfSecret"
LAST_AUTH_AT_KEY = "lastAuthAt"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class Session:
    """
    Server-side session bound to one request.

    Mutations only mark the handle as modified; `SessionMiddleware` persists modified
    sessions after the handler returns. `regenerate`, `save` and `destroy` talk to
    the store immediately so callers can sequence them.
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        session_id: str | None = None,
        data: dict[str, Any] | None = None,
        ttl_seconds: int,
        id_factory: Callable[[], str] = new_session_id,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._id_factory = id_factory
        self._data: dict[str, Any] = dict(data or {})
        # A session is "new" until it exists in the store.
        self.is_new = session_id is None
        self.id = session_id or id_factory()
        self.persisted = not self.is_new
        self.modified = False
        self.destroyed = False
        self.regenerated = False

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.modified = True

    def __delitem__(self, key: str) -> None:
        del self._data[key]
        self.modified = True

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def pop(self, key: str, default: Any = None) -> Any:
        if key in self._data:
            self.modified = True
        return self._data.pop(key, default)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    async def regenerate(self) -> None:
        """Discard the current id and data and continue under a fresh id."""

        if self.persisted:
            await self._store.delete(self.id)
        self.id = self._id_factory()
        self._data = {}
        self.persisted = False
        self.destroyed = False
        self.regenerated = True
        self.modified = True

    async def save(self) -> None:
        await self._store.save(self.id, self._data, self._ttl_seconds)
        self.persisted = True
        self.is_new = False
        self.modified = False

    async def touch(self) -> None:
        if self.persisted:
            await self._store.touch(self.id, self._ttl_seconds)

    def abandon(self) -> None:
        # Drop in-memory changes without touching the store (after a failed save).
        self._data = {}
        self.modified = False

    async def destroy(self) -> None:
        if self.persisted:
            await self._store.delete(self.id)
        self._data = {}
        self.persisted = False
        self.modified = False
        self.destroyed = True


def _mac(session_id: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), session_id.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def sign_session_id(session_id: str, secret: str) -> str:
    return f"{session_id}.{_mac(session_id, secret)}"


def unsign_session_id(value: str | None, secrets_: Sequence[str]) -> str | None:
    """Return the session id if the cookie was signed with any accepted secret."""

    if not value or "." not in value:
        return None
    session_id, _, mac = value.rpartition(".")
    if not session_id:
        return None
    for secret in secrets_:
        if hmac.compare_digest(mac, _mac(session_id, secret)):
            return session_id
    return None


# --- Module Notes -----------------------------------------------------------
# Cookie values are `<id>.<hmac>`; only the first secret signs, older ones still verify
# so a secret rotation does not log every user out at once.
