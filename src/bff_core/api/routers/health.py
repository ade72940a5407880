"""
bff_core.api.routers.health

Health and service-info endpoints.

Responsibilities:
- Provide a health probe (`/api/v1/health`) that includes session-store connectivity.
- Provide service info (`/api/v1/info`), reduced in production to limit fingerprinting.
"""

from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import APIRouter, Depends
from starlette.responses import JSONResponse

from bff_core import __version__
from bff_core.api.deps import get_orchestrator, get_session_store, settings_from_app
from bff_core.auth.orchestrator import AuthOrchestrator
from bff_core.sessions.stores import SessionStore
from bff_core.settings import Settings

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(settings_from_app),
) -> JSONResponse:
    # Degraded (503) when the session backend is unreachable: logins cannot complete.
    if settings.session_store == "redis":
        store_status = "connected" if await store.ping() else "disconnected"
    else:
        store_status = "not_configured"
    healthy = store_status != "disconnected"
    return JSONResponse(
        {
            "success": healthy,
            "data": {
                "status": "healthy" if healthy else "degraded",
                "sessionStore": store_status,
                "timestamp": dt.datetime.now(dt.UTC).isoformat(),
                "environment": settings.env,
                "version": __version__,
            },
        },
        status_code=200 if healthy else 503,
    )


@router.get("/info")
async def info(
    settings: Settings = Depends(settings_from_app),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    data: dict[str, Any] = {"name": settings.app_name, "version": "v1"}
    if not settings.is_production:
        data["authDriver"] = orchestrator.driver_name
        data["endpoints"] = {
            "health": "/api/v1/health",
            "info": "/api/v1/info",
            "csrfToken": "/api/v1/csrf-token",
            "auth": "/api/v1/auth",
            "data": "/api/v1/data",
        }
    return {"success": True, "data": data}


# --- Module Notes -----------------------------------------------------------
# Both endpoints are exempt from CSRF and authentication; load balancers call them cold.
