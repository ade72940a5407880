"""
bff_core.auth.orchestrator

Process-wide facade over the active identity driver.

Responsibilities:
- Select the driver from configuration (fail fast on unsupported names).
- Resolve the public callback URL through a fixed priority chain.
- Expose login / callback / logout / current-user / role checks to the HTTP layer.
"""

from __future__ import annotations

from collections.abc import Iterable

from bff_core.auth.drivers.base import AuthContext, AuthDriver
from bff_core.auth.drivers.mock import MockDriver
from bff_core.auth.drivers.saml import FederatedDriver
from bff_core.auth.models import Principal
from bff_core.errors import ConfigurationError
from bff_core.observability.logging import get_logger
from bff_core.sessions.session import Session
from bff_core.settings import Settings

log = get_logger(__name__)

CALLBACK_PATH = "/api/v1/auth/callback"

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


def resolve_callback_url(settings: Settings) -> str:
    """
    First match wins:
    explicit override, API base URL, platform external URL, platform external
    hostname (https), then host/port.
    """

    if settings.auth_callback_url:
        return settings.auth_callback_url
    if settings.api_url:
        return f"{settings.api_url.rstrip('/')}{CALLBACK_PATH}"
    if settings.render_external_url:
        return f"{settings.render_external_url.rstrip('/')}{CALLBACK_PATH}"
    if settings.render_external_hostname:
        return f"https://{settings.render_external_hostname}{CALLBACK_PATH}"

    scheme = "https" if settings.is_production else "http"
    # Production behind a proxy on a real hostname serves the default port.
    if settings.is_production and settings.host not in _LOOPBACK_HOSTS:
        return f"{scheme}://{settings.host}{CALLBACK_PATH}"
    return f"{scheme}://{settings.host}:{settings.port}{CALLBACK_PATH}"


def build_driver(settings: Settings) -> AuthDriver:
    callback_url = resolve_callback_url(settings)
    name = settings.auth_driver.strip().lower()
    if name == "mock":
        return MockDriver(
            callback_url=callback_url,
            production=settings.is_production,
            cookie_name=settings.session_cookie_name,
        )
    if name in ("federated", "saml"):
        return FederatedDriver(
            config=settings.saml_config(callback_url=callback_url),
            cookie_name=settings.session_cookie_name,
        )
    raise ConfigurationError(f"Unsupported auth driver: {settings.auth_driver!r}")


class AuthOrchestrator:
    """The only seam the HTTP layer uses to reach identity drivers."""

    def __init__(self, driver: AuthDriver) -> None:
        self._driver = driver

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthOrchestrator:
        driver = build_driver(settings)
        log.info(
            "auth_driver_selected",
            driver=driver.get_driver_name(),
            callback_url=driver.callback_url,
        )
        return cls(driver)

    @property
    def driver(self) -> AuthDriver:
        return self._driver

    @property
    def driver_name(self) -> str:
        return self._driver.get_driver_name()

    async def login(self, ctx: AuthContext) -> None:
        await self._driver.login(ctx)

    async def callback(self, ctx: AuthContext) -> Principal:
        return await self._driver.callback(ctx)

    async def logout(self, ctx: AuthContext) -> None:
        await self._driver.logout(ctx)

    def get_current_user(self, session: Session) -> Principal | None:
        return self._driver.get_user(session)

    def has_role(self, session: Session, roles: str | Iterable[str]) -> bool:
        return self._driver.has_role(self.get_current_user(session), roles)


# --- Module Notes -----------------------------------------------------------
# Driver selection happens in `create_app`, so a bad driver name or a mock driver in
# production stops the process before it binds a port.
