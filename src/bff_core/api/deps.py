"""
bff_core.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Encapsulate app.state access patterns (settings, orchestrator, gateway, CSRF guard).
- Build the framework-neutral `AuthContext` handed to identity drivers.
- Refuse gateway routes when the private backend is not configured.
"""

from __future__ import annotations

from fastapi import Request
from starlette.datastructures import UploadFile

from bff_core.auth.csrf import CsrfGuard
from bff_core.auth.deps import client_ip
from bff_core.auth.drivers.base import AuthContext
from bff_core.auth.orchestrator import AuthOrchestrator
from bff_core.errors import GatewayNotConfigured
from bff_core.gateway.proxy import GatewayProxy
from bff_core.sessions.middleware import get_session
from bff_core.sessions.stores import SessionStore
from bff_core.settings import OAuthClientConfig, Settings

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def settings_from_app(request: Request) -> Settings:
    # Settings are bound at app construction so tests can pass their own instance.
    return request.app.state.settings  # type: ignore[attr-defined]


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator  # type: ignore[attr-defined]


def get_csrf_guard(request: Request) -> CsrfGuard:
    return request.app.state.csrf_guard  # type: ignore[attr-defined]


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store  # type: ignore[attr-defined]


def get_gateway(request: Request) -> GatewayProxy:
    return request.app.state.gateway  # type: ignore[attr-defined]


def gateway_target(request: Request) -> tuple[str, OAuthClientConfig]:
    base_url: str | None = request.app.state.settings.private_api_base_url
    oauth: OAuthClientConfig | None = request.app.state.oauth_config
    if not base_url or oauth is None:
        raise GatewayNotConfigured(
            "API Gateway is not configured. Set BFF_PRIVATE_API_BASE_URL and BFF_OAUTH_* "
            "environment variables."
        )
    return base_url, oauth


async def auth_context(request: Request) -> AuthContext:
    form: dict[str, str] = {}
    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith(_FORM_TYPES):
        parsed = await request.form()
        form = {k: v for k, v in parsed.items() if not isinstance(v, UploadFile)}
    return AuthContext(
        session=get_session(request),
        query=dict(request.query_params),
        form=form,
        client_ip=client_ip(request),
    )


# --- Module Notes -----------------------------------------------------------
# Everything here reads app.state populated by `bff_core.api.app.create_app`; nothing is
# a module-level singleton, so each test app gets isolated collaborators.
