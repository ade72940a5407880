"""
bff_core.api.routers.admin

Role-protected example endpoints.

Responsibilities:
- Show the `require_role` pattern (`/admin/users`).
- Show step-up authentication for sensitive operations (`/admin/sensitive`).
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from bff_core.api.responses import success
from bff_core.auth.deps import (
    attached_principal,
    require_authenticated,
    require_recent_authentication,
    require_role,
)

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_authenticated), Depends(require_role("admin"))],
)


@router.get("/users")
async def list_users() -> dict[str, Any]:
    return success({"message": 'This endpoint requires the "admin" role.'})


@router.get("/sensitive", dependencies=[Depends(require_recent_authentication(15))])
async def sensitive(request: Request) -> dict[str, Any]:
    principal = attached_principal(request)
    return success(
        {
            "message": "Recent authentication confirmed.",
            "userId": principal.id if principal else None,
        }
    )


# --- Module Notes -----------------------------------------------------------
# The router-level dependencies run in order, so `require_role` always sees the
# principal that `require_authenticated` attached.
