"""
bff_core.auth.drivers.base

Driver contract and the session-save protocol shared by every driver.

Responsibilities:
- Define `AuthContext`, the framework-neutral view of one auth request.
- Define the `AuthDriver` contract (login / callback / logout / get_user / has_role).
- Persist a freshly authenticated principal with session-id regeneration.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from bff_core.auth.codec import SessionUserCodec
from bff_core.auth.models import Principal, has_role
from bff_core.sessions.session import CSRF_SECRET_KEY, LAST_AUTH_AT_KEY, USER_KEY, Session


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(slots=True)
class AuthContext:
    """
    One auth request as the drivers see it.

    Drivers never touch the HTTP response directly; they record the outcome here
    (`redirect_url`, `cleared_cookies`) and the router turns it into a response.
    """

    session: Session
    query: Mapping[str, str] = field(default_factory=dict)
    form: Mapping[str, str] = field(default_factory=dict)
    client_ip: str | None = None
    redirect_url: str | None = None
    cleared_cookies: list[str] = field(default_factory=list)

    def redirect(self, url: str) -> None:
        self.redirect_url = url

    def clear_cookie(self, name: str) -> None:
        self.cleared_cookies.append(name)

    def param(self, name: str) -> str | None:
        # Form wins over query: IdPs POST their responses, mock flows use the query string.
        return self.form.get(name) or self.query.get(name)


async def save_principal(session: Session, principal: Principal, *, now: int) -> None:
    """
    Store `principal` under a regenerated session id.

    The CSRF secret is carried across regeneration; `lastAuthAt` is set to `now`.
    If regeneration or persistence fails the in-memory session is abandoned and the
    error propagates, so the caller never sees a half-authenticated session.
    """

    csrf_secret = session.get(CSRF_SECRET_KEY)
    try:
        # New id defeats fixation: a pre-auth id planted by an attacker dies here.
        await session.regenerate()
        if csrf_secret:
            session[CSRF_SECRET_KEY] = csrf_secret
        session[USER_KEY] = SessionUserCodec.encode(principal)
        session[LAST_AUTH_AT_KEY] = now
        await session.save()
    except Exception:
        session.abandon()
        raise


def clear_principal(session: Session) -> None:
    session.pop(USER_KEY, None)


class AuthDriver(ABC):
    def __init__(
        self,
        *,
        callback_url: str,
        cookie_name: str = "connect.sid",
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.callback_url = callback_url
        self.cookie_name = cookie_name
        self._clock = clock

    @abstractmethod
    def get_driver_name(self) -> str: ...

    @abstractmethod
    async def login(self, ctx: AuthContext) -> None:
        """Start the ceremony; usually leaves a redirect on `ctx`."""

    @abstractmethod
    async def callback(self, ctx: AuthContext) -> Principal:
        """Complete the ceremony and store the principal in the session."""

    @abstractmethod
    async def logout(self, ctx: AuthContext) -> None: ...

    def get_user(self, session: Session) -> Principal | None:
        return SessionUserCodec.decode(session.get(USER_KEY))

    def has_role(self, principal: Principal | None, role: str | Iterable[str]) -> bool:
        return has_role(principal, role)

    async def _save_principal(self, session: Session, principal: Principal) -> None:
        await save_principal(session, principal, now=self._clock())

    async def _end_session(self, ctx: AuthContext) -> None:
        await ctx.session.destroy()
        ctx.clear_cookie(self.cookie_name)


# --- Module Notes -----------------------------------------------------------
# The login and callback steps are separate HTTP exchanges; drivers keep no in-process
# state between them, so a restart between the two does not break the ceremony.
