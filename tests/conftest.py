"""
tests.conftest

Shared fixtures for the BFF test-suite.

Responsibilities:
- Build isolated apps (memory session store, stubbed outbound HTTP) per test.
- Provide an httpx client bound to the app through ASGITransport.
- Capture security audit events for assertions.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from bff_core.api.app import create_app
from bff_core.observability.logging import SecurityAuditLog
from bff_core.sessions.stores import MemorySessionStore
from bff_core.settings import Settings

WEB_URL = "http://spa.test"


class RecordingLogger:
    """Stands in for a structlog logger; keeps every call for inspection."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, event: str, **kw: Any) -> None:
        self.records.append(("info", event, kw))

    def error(self, event: str, **kw: Any) -> None:
        self.records.append(("error", event, kw))

    def events(self) -> list[str]:
        return [kw["security_event"] for _, name, kw in self.records if name == "security_event"]

    def last(self, event: str) -> dict[str, Any]:
        matches = [kw for _, name, kw in self.records if name == "security_event" and kw["security_event"] == event]
        assert matches, f"no {event!r} event recorded; saw {self.events()}"
        return matches[-1]


@pytest.fixture
def recorder() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def audit(recorder: RecordingLogger) -> SecurityAuditLog:
    return SecurityAuditLog(logger=recorder)


@pytest.fixture
def settings() -> Settings:
    return Settings(env="test", web_url=WEB_URL, session_secret="s" * 32)


@pytest.fixture
def session_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def app(settings: Settings, session_store: MemorySessionStore, audit: SecurityAuditLog) -> FastAPI:
    return create_app(settings=settings, session_store=session_store, audit=audit)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    # httpx ASGITransport does not run lifespan; drive it explicitly.
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c


async def login_as(client: httpx.AsyncClient, mock_user_id: str) -> httpx.Response:
    r = await client.get("/api/v1/auth/callback", params={"mockUserId": mock_user_id})
    assert r.status_code == 302
    return r


async def csrf_token(client: httpx.AsyncClient) -> str:
    r = await client.get("/api/v1/csrf-token")
    assert r.status_code == 200
    return r.json()["data"]["csrfToken"]


@pytest.fixture
def login():
    return login_as


@pytest.fixture
def fetch_csrf():
    return csrf_token
