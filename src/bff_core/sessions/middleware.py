"""
bff_core.sessions.middleware

HTTP middleware that binds a server-side `Session` to each request.

Responsibilities:
- Resolve the signed session cookie into a stored session (or a fresh, unsaved one).
- Persist modified sessions after the handler returns (uninitialized sessions are not saved).
- Refresh TTL and cookie on every request with a stored session (rolling expiry).
- Clear the cookie when the session was destroyed.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from bff_core.sessions.session import Session, sign_session_id, unsign_session_id
from bff_core.sessions.stores import SessionStore


class SessionMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        *,
        store: SessionStore,
        secrets: Sequence[str],
        cookie_name: str = "connect.sid",
        max_age_seconds: int = 8 * 60 * 60,
        secure: bool = False,
        same_site: Literal["strict", "lax", "none"] = "lax",
    ) -> None:
        super().__init__(app)
        self._store = store
        self._secrets = list(secrets)
        self._cookie_name = cookie_name
        self._max_age = max_age_seconds
        self._secure = secure
        self._same_site = same_site

    async def dispatch(self, request: Request, call_next) -> Response:
        session_id = unsign_session_id(request.cookies.get(self._cookie_name), self._secrets)
        data = await self._store.load(session_id) if session_id else None
        session = Session(
            self._store,
            session_id=session_id if data is not None else None,
            data=data,
            ttl_seconds=self._max_age,
        )
        request.state.session = session

        response: Response = await call_next(request)

        if session.destroyed:
            response.delete_cookie(self._cookie_name, path="/")
            return response

        if session.modified:
            await session.save()
        elif session.persisted:
            await session.touch()
        else:
            return response

        response.set_cookie(
            self._cookie_name,
            sign_session_id(session.id, self._secrets[0]),
            max_age=self._max_age,
            path="/",
            httponly=True,
            secure=self._secure,
            samesite=self._same_site,
        )
        return response


def get_session(request: Request) -> Session:
    # FastAPI dependency; the middleware guarantees the attribute exists.
    return request.state.session


# --- Module Notes -----------------------------------------------------------
# Handlers that regenerate or save explicitly (login callback) are not double-saved:
# `Session.save` resets `modified`, so the middleware only refreshes the TTL/cookie.
