"""
tests.test_authz_deps

Authentication, role and step-up gates exercised on a bare FastAPI app.
"""

from __future__ import annotations

from typing import Any

import httpx
import pytest
from fastapi import Depends, FastAPI, Request

from bff_core.api.responses import error_response
from bff_core.auth.deps import (
    optional_authenticated,
    require_authenticated,
    require_recent_authentication,
    require_role,
)
from bff_core.auth.models import Principal
from bff_core.errors import BffError
from bff_core.observability.logging import SecurityAuditLog
from bff_core.sessions.session import LAST_AUTH_AT_KEY, USER_KEY, Session
from bff_core.sessions.stores import MemorySessionStore

NOW = 1_700_000_000_000
SESSION_ID = "seeded-session"

ADMIN = {"id": "u-admin", "email": "a@example.com", "name": "Admin", "roles": ["admin", "user"]}
USER = {"id": "u-user", "email": "u@example.com", "name": "User", "roles": ["user"]}


def _gated_app(store: MemorySessionStore, recorder) -> FastAPI:
    app = FastAPI()
    app.state.audit = SecurityAuditLog(logger=recorder)

    @app.middleware("http")
    async def _bind_session(request: Request, call_next):
        data = await store.load(SESSION_ID)
        request.state.session = Session(
            store,
            session_id=SESSION_ID if data is not None else None,
            data=data,
            ttl_seconds=60,
        )
        return await call_next(request)

    @app.exception_handler(BffError)
    async def _bff_error(_: Request, exc: BffError):
        return error_response(exc)

    @app.get("/me")
    async def me(principal: Principal = Depends(require_authenticated)) -> dict[str, Any]:
        return {"id": principal.id}

    @app.get("/maybe")
    async def maybe(principal: Principal | None = Depends(optional_authenticated)) -> dict[str, Any]:
        return {"id": principal.id if principal else None}

    @app.get("/admin", dependencies=[Depends(require_authenticated), Depends(require_role("admin"))])
    async def admin() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/ops", dependencies=[Depends(require_authenticated), Depends(require_role("admin", "ops"))])
    async def ops() -> dict[str, Any]:
        return {"ok": True}

    @app.get("/role-without-auth", dependencies=[Depends(require_role("admin"))])
    async def role_without_auth() -> dict[str, Any]:
        return {"ok": True}

    @app.get(
        "/sensitive",
        dependencies=[
            Depends(require_authenticated),
            Depends(require_recent_authentication(15, clock=lambda: NOW)),
        ],
    )
    async def sensitive() -> dict[str, Any]:
        return {"ok": True}

    return app


async def _get(store: MemorySessionStore, recorder, path: str) -> httpx.Response:
    transport = httpx.ASGITransport(app=_gated_app(store, recorder))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.get(path)


async def _seeded(data: dict[str, Any]) -> MemorySessionStore:
    store = MemorySessionStore()
    await store.save(SESSION_ID, data, 60)
    return store


@pytest.mark.asyncio
async def test_anonymous_request_is_401_and_audited(recorder) -> None:
    r = await _get(MemorySessionStore(), recorder, "/me")
    assert r.status_code == 401
    assert r.json()["error"] == {"code": "UNAUTHORIZED", "message": "Authentication required"}
    event = recorder.last("authz.denied.unauthenticated")
    assert event["details"] == {"ip": "127.0.0.1", "path": "/me", "method": "GET"}


@pytest.mark.asyncio
async def test_authenticated_request_passes(recorder) -> None:
    r = await _get(await _seeded({USER_KEY: USER}), recorder, "/me")
    assert r.status_code == 200
    assert r.json() == {"id": "u-user"}


@pytest.mark.asyncio
async def test_invalid_stored_principal_destroys_session(recorder) -> None:
    store = await _seeded({USER_KEY: {"id": "u-user", "roles": "admin"}, "csrfSecret": "x"})
    r = await _get(store, recorder, "/me")
    assert r.status_code == 401
    assert r.json()["error"]["message"] == "Session invalid"
    assert await store.load(SESSION_ID) is None
    assert "authz.denied.invalid_session" in recorder.events()


@pytest.mark.asyncio
async def test_optional_authentication_never_rejects(recorder) -> None:
    assert (await _get(MemorySessionStore(), recorder, "/maybe")).json() == {"id": None}
    assert (await _get(await _seeded({USER_KEY: {"bogus": 1}}), recorder, "/maybe")).json() == {"id": None}
    assert (await _get(await _seeded({USER_KEY: ADMIN}), recorder, "/maybe")).json() == {"id": "u-admin"}


@pytest.mark.asyncio
async def test_role_gate_allows_matching_role(recorder) -> None:
    r = await _get(await _seeded({USER_KEY: ADMIN}), recorder, "/admin")
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_role_gate_denies_and_audits_missing_role(recorder) -> None:
    r = await _get(await _seeded({USER_KEY: USER}), recorder, "/ops")
    assert r.status_code == 403
    assert r.json()["error"] == {
        "code": "FORBIDDEN",
        "message": "Insufficient permissions",
        "details": "Required role(s): admin, ops",
    }
    event = recorder.last("authz.denied.insufficient_role")
    assert event["user_id"] == "u-user"
    assert event["details"]["requiredRoles"] == ["admin", "ops"]
    assert event["details"]["userRoles"] == ["user"]


@pytest.mark.asyncio
async def test_role_gate_without_principal_is_401(recorder) -> None:
    r = await _get(await _seeded({USER_KEY: ADMIN}), recorder, "/role-without-auth")
    assert r.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("last_auth_at", "status"),
    [
        (NOW - 60_000, 200),
        (NOW - 15 * 60_000, 200),
        (NOW - 15 * 60_000 - 1, 401),
        (None, 401),
        ("yesterday", 401),
    ],
)
async def test_step_up_gate(recorder, last_auth_at: Any, status: int) -> None:
    data: dict[str, Any] = {USER_KEY: USER}
    if last_auth_at is not None:
        data[LAST_AUTH_AT_KEY] = last_auth_at
    r = await _get(await _seeded(data), recorder, "/sensitive")
    assert r.status_code == status
    if status == 401:
        assert r.json()["error"]["code"] == "REAUTHENTICATION_REQUIRED"
        event = recorder.last("authz.denied.stale_session")
        assert event["details"]["maxAgeMinutes"] == 15
