"""
bff_core.api.routers.csrf

CSRF token bootstrap endpoint for the SPA.

Responsibilities:
- Hand out a fresh token bound to the caller's session secret (`/api/v1/csrf-token`).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from bff_core.api.deps import get_csrf_guard
from bff_core.api.responses import success
from bff_core.auth.csrf import CsrfGuard
from bff_core.sessions.middleware import get_session
from bff_core.sessions.session import Session

router = APIRouter(prefix="/api/v1", tags=["csrf"])


@router.get("/csrf-token")
async def csrf_token(
    session: Session = Depends(get_session),
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> dict[str, Any]:
    # SPA bootstrap: fetch a token once, then echo it in `X-CSRF-Token` on mutations.
    return success({"csrfToken": guard.create_token(guard.ensure_secret(session))})


# --- Module Notes -----------------------------------------------------------
# Safe requests also receive a token in the `X-CSRF-Token` response header; this
# endpoint exists for the first page load, before any other API call.
