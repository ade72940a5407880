"""
bff_core.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Resolve the session principal through `SessionUserCodec` and attach it to the request.
- Enforce RBAC and step-up (recent authentication) via reusable dependency factories.
- Audit every denial with request metadata, never with credentials.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import Request

from bff_core.auth.codec import SessionUserCodec
from bff_core.auth.drivers.base import now_ms
from bff_core.auth.models import Principal, has_role
from bff_core.errors import (
    AuthenticationRequired,
    AuthorizationDenied,
    ReauthenticationRequired,
    SessionInvalid,
)
from bff_core.observability.logging import SecurityAuditLog
from bff_core.sessions.middleware import get_session
from bff_core.sessions.session import LAST_AUTH_AT_KEY, USER_KEY


def get_audit(request: Request) -> SecurityAuditLog:
    # Built once in `bff_core.api.app.create_app`.
    return request.app.state.audit  # type: ignore[attr-defined]


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def request_details(request: Request) -> dict[str, Any]:
    return {"ip": client_ip(request), "path": request.url.path, "method": request.method}


def attached_principal(request: Request) -> Principal | None:
    return getattr(request.state, "principal", None)


async def require_authenticated(request: Request) -> Principal:
    session = get_session(request)
    audit = get_audit(request)
    raw = session.get(USER_KEY)
    if raw is None:
        audit.event("authz.denied.unauthenticated", None, request_details(request))
        raise AuthenticationRequired()

    principal = SessionUserCodec.decode(raw)
    if principal is None:
        # Corrupted or tampered record: kill the whole session, not just the field.
        await session.destroy()
        audit.event("authz.denied.invalid_session", None, request_details(request))
        raise SessionInvalid("Session invalid")

    request.state.principal = principal
    return principal


async def optional_authenticated(request: Request) -> Principal | None:
    principal = SessionUserCodec.decode(get_session(request).get(USER_KEY))
    if principal is not None:
        request.state.principal = principal
    return principal


def require_role(*roles: str) -> Callable[[Request], Principal]:
    """
    Allow the request when the attached principal holds ANY of `roles`.

    List it after `require_authenticated` in a route's dependencies.
    """

    required = tuple(roles)

    def _dep(request: Request) -> Principal:
        principal = attached_principal(request)
        if principal is None:
            get_audit(request).event("authz.denied.unauthenticated", None, request_details(request))
            raise AuthenticationRequired()
        if not has_role(principal, required):
            get_audit(request).event(
                "authz.denied.insufficient_role",
                principal.id,
                {
                    **request_details(request),
                    "requiredRoles": list(required),
                    "userRoles": list(principal.roles),
                },
            )
            raise AuthorizationDenied(details=f"Required role(s): {', '.join(required)}")
        return principal

    return _dep


def require_recent_authentication(
    max_age_minutes: int = 15,
    *,
    clock: Callable[[], int] = now_ms,
) -> Callable[[Request], Principal]:
    """Step-up gate: the login must be younger than `max_age_minutes`."""

    max_age_ms = max_age_minutes * 60 * 1000

    def _dep(request: Request) -> Principal:
        principal = attached_principal(request)
        if principal is None:
            get_audit(request).event("authz.denied.unauthenticated", None, request_details(request))
            raise AuthenticationRequired()

        last_auth_at = get_session(request).get(LAST_AUTH_AT_KEY)
        if isinstance(last_auth_at, bool) or not isinstance(last_auth_at, int | float):
            last_auth_at = None
        age_ms = clock() - int(last_auth_at) if last_auth_at is not None else None
        if age_ms is None or age_ms > max_age_ms:
            get_audit(request).event(
                "authz.denied.stale_session",
                principal.id,
                {
                    **request_details(request),
                    "lastAuthAt": last_auth_at,
                    "maxAgeMinutes": max_age_minutes,
                    "ageMs": age_ms,
                },
            )
            raise ReauthenticationRequired("Recent authentication required")
        return principal

    return _dep


# --- Module Notes -----------------------------------------------------------
# Gates compose through FastAPI's ordered `dependencies=[...]`: authentication attaches
# `request.state.principal`, the role and step-up gates only read it.
