from __future__ import annotations

import json
import logging

import pytest

from bff_core.observability.logging import REDACTED, SecurityAuditLog, configure_logging, sanitize
from bff_core.sessions.session import Session, sign_session_id, unsign_session_id
from bff_core.sessions.stores import MemorySessionStore

OLD = "o" * 32
NEW = "n" * 32


def test_signed_cookie_round_trip_and_rotation() -> None:
    cookie = sign_session_id("abc", NEW)
    assert unsign_session_id(cookie, [NEW]) == "abc"
    # A cookie signed before rotation still verifies against the previous secret.
    assert unsign_session_id(sign_session_id("abc", OLD), [NEW, OLD]) == "abc"
    assert unsign_session_id(sign_session_id("abc", OLD), [NEW]) is None


@pytest.mark.parametrize("value", [None, "", "abc", ".mac", "abc.forged"])
def test_unsign_rejects_bad_cookies(value: str | None) -> None:
    assert unsign_session_id(value, [NEW]) is None


@pytest.mark.asyncio
async def test_memory_store_expires_records() -> None:
    now = [100.0]
    store = MemorySessionStore(clock=lambda: now[0])
    await store.save("sid", {"user": {"id": "u"}}, 60)
    assert await store.load("sid") == {"user": {"id": "u"}}

    now[0] += 30
    await store.touch("sid", 60)
    now[0] += 59
    assert await store.load("sid") is not None

    now[0] += 1
    assert await store.load("sid") is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_memory_store_sweeps_expired_records_on_save() -> None:
    now = [0.0]
    store = MemorySessionStore(clock=lambda: now[0])
    for i in range(3):
        await store.save(f"abandoned-{i}", {"csrfSecret": "x"}, 60)
    now[0] += 61

    await store.save("fresh", {}, 60)
    assert len(store) == 1
    assert await store.load("fresh") == {}


@pytest.mark.asyncio
async def test_stored_data_is_detached_from_callers() -> None:
    store = MemorySessionStore()
    data = {"roles": ["user"]}
    await store.save("sid", data, 60)
    data["roles"].append("admin")
    assert await store.load("sid") == {"roles": ["user"]}


@pytest.mark.asyncio
async def test_regenerate_discards_old_record() -> None:
    store = MemorySessionStore()
    session = Session(store, ttl_seconds=60)
    session["csrfSecret"] = "x"
    await session.save()
    old_id = session.id

    await session.regenerate()
    assert session.id != old_id
    assert session.to_dict() == {}
    assert await store.load(old_id) is None

    session["user"] = {"id": "u"}
    await session.save()
    assert await store.load(session.id) == {"user": {"id": "u"}}


@pytest.mark.asyncio
async def test_destroy_removes_record() -> None:
    store = MemorySessionStore()
    session = Session(store, ttl_seconds=60)
    session["user"] = {"id": "u"}
    await session.save()
    await session.destroy()
    assert session.destroyed
    assert len(store) == 0


def test_sanitize_redacts_nested_sensitive_keys() -> None:
    cleaned = sanitize(
        {
            "ip": "10.0.0.1",
            "Authorization": "Bearer abc",
            "user": {"email": "a@b.c", "name": "Ada", "tokens": ["t1"]},
            "items": [{"csrfToken": "x", "path": "/p"}],
        }
    )
    assert cleaned == {
        "ip": "10.0.0.1",
        "Authorization": REDACTED,
        "user": {"email": REDACTED, "name": "Ada", "tokens": REDACTED},
        "items": [{"csrfToken": REDACTED, "path": "/p"}],
    }


def test_audit_error_scrubs_message_and_hides_traceback_in_production(recorder) -> None:
    audit = SecurityAuditLog(production=True, logger=recorder)
    audit.error(RuntimeError("bad password for user"), {"path": "/x", "cookie": "sid"})

    level, event, payload = recorder.records[-1]
    assert (level, event) == ("error", "request_error")
    assert payload["error_name"] == "RuntimeError"
    assert payload["error_message"] == f"bad {REDACTED} for user"
    assert payload["cookie"] == REDACTED
    assert "exc_info" not in payload


def test_audit_event_defaults_to_anonymous(recorder) -> None:
    SecurityAuditLog(logger=recorder).event("csrf.rejected.missing", None, {"ip": "1.2.3.4"})
    assert recorder.last("csrf.rejected.missing")["user_id"] == "anonymous"


def test_audit_event_through_configured_structlog(caplog) -> None:
    configure_logging(service_name="bff-core-test", level="INFO")
    caplog.set_level(logging.INFO, logger="bff_core.security")

    SecurityAuditLog().event("authz.denied.unauthenticated", None, {"ip": "1.2.3.4", "cookie": "sid"})

    line = json.loads(caplog.records[-1].getMessage())
    assert line["event"] == "security_event"
    assert line["security_event"] == "authz.denied.unauthenticated"
    assert line["user_id"] == "anonymous"
    assert line["details"] == {"ip": "1.2.3.4", "cookie": REDACTED}
    assert line["service"] == "bff-core-test"
