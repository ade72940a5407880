"""
bff_core.auth.drivers.mock

Deterministic local identities for development and tests.

Responsibilities:
- Simulate the redirect ceremony against our own callback URL.
- Refuse to exist in production.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from urllib.parse import urlencode

from bff_core.auth.drivers.base import AuthContext, AuthDriver
from bff_core.auth.models import Principal
from bff_core.errors import ConfigurationError

DEFAULT_MOCK_USERS: tuple[Principal, ...] = (
    Principal(
        id="mock-user-1",
        email="developer@example.com",
        name="Mock Developer",
        roles=("developer", "user"),
        attributes={"department": "Engineering"},
    ),
    Principal(
        id="mock-user-2",
        email="admin@example.com",
        name="Mock Admin",
        roles=("admin", "user"),
        attributes={"department": "Operations"},
    ),
    Principal(
        id="mock-user-3",
        email="user@example.com",
        name="Mock User",
        roles=("user",),
    ),
)


class MockDriver(AuthDriver):
    def __init__(
        self,
        *,
        callback_url: str,
        production: bool,
        mock_users: Sequence[Principal] | None = None,
        **kwargs: Any,
    ) -> None:
        if production:
            raise ConfigurationError(
                "MockDriver cannot be used in production; select the federated auth driver"
            )
        super().__init__(callback_url=callback_url, **kwargs)
        users = tuple(mock_users) if mock_users else DEFAULT_MOCK_USERS
        self._users: tuple[Principal, ...] = users

    def get_driver_name(self) -> str:
        return "mock"

    def get_mock_users(self) -> tuple[Principal, ...]:
        return self._users

    async def login(self, ctx: AuthContext) -> None:
        # `?user=<index>` picks an identity; anything unusable falls back to the first one.
        try:
            index = int(ctx.query.get("user", "0"))
        except ValueError:
            index = 0
        if not 0 <= index < len(self._users):
            index = 0
        separator = "&" if "?" in self.callback_url else "?"
        query = urlencode({"mockUserId": self._users[index].id})
        ctx.redirect(f"{self.callback_url}{separator}{query}")

    async def callback(self, ctx: AuthContext) -> Principal:
        selector = ctx.param("mockUserId")
        user = next((u for u in self._users if u.id == selector), self._users[0])
        await self._save_principal(ctx.session, user)
        return user

    async def logout(self, ctx: AuthContext) -> None:
        await self._end_session(ctx)
