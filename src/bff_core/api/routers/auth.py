"""
bff_core.api.routers.auth

Authentication endpoints for the SPA.

Responsibilities:
- Start and complete the active driver's login ceremony.
- Log out, and expose the current principal and auth status.
- Audit every login, callback and logout outcome.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from bff_core.api.deps import auth_context, get_orchestrator, settings_from_app
from bff_core.api.responses import success
from bff_core.auth.deps import get_audit, optional_authenticated, require_authenticated
from bff_core.auth.drivers.base import AuthContext
from bff_core.auth.models import Principal
from bff_core.auth.orchestrator import AuthOrchestrator
from bff_core.errors import BffError
from bff_core.observability.logging import get_logger
from bff_core.settings import Settings

log = get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _finish(ctx: AuthContext, response: Response) -> Response:
    for name in ctx.cleared_cookies:
        response.delete_cookie(name, path="/")
    return response


def _failure_reason(exc: Exception, settings: Settings) -> str | None:
    return None if settings.is_production else str(exc)


@router.get("/login")
async def login(
    request: Request,
    ctx: AuthContext = Depends(auth_context),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(settings_from_app),
) -> Response:
    audit = get_audit(request)
    audit.event(
        "auth.login.initiated",
        None,
        {
            "driver": orchestrator.driver_name,
            "ip": ctx.client_ip,
            "userAgent": request.headers.get("user-agent"),
        },
    )
    try:
        await orchestrator.login(ctx)
    except Exception as e:
        audit.event(
            "auth.login.failed",
            None,
            {"driver": orchestrator.driver_name, "ip": ctx.client_ip, "reason": str(e)},
        )
        raise BffError(
            "Failed to initiate login",
            error_code="LOGIN_ERROR",
            details=_failure_reason(e, settings),
        ) from e

    if ctx.redirect_url is None:
        return _finish(ctx, JSONResponse(success(message="Login initiated")))
    return _finish(ctx, RedirectResponse(ctx.redirect_url, status_code=302))


@router.api_route("/callback", methods=["GET", "POST"])
async def callback(
    request: Request,
    ctx: AuthContext = Depends(auth_context),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(settings_from_app),
) -> Response:
    audit = get_audit(request)
    web_url = settings.web_url.rstrip("/")
    try:
        principal = await orchestrator.callback(ctx)
    except Exception as e:
        # The browser is mid-redirect; failures land on the SPA login page, never a raw 500.
        if not isinstance(e, BffError):
            log.error("auth_callback_error", error_type=type(e).__name__)
        audit.event(
            "auth.callback.failed",
            None,
            {"driver": orchestrator.driver_name, "ip": ctx.client_ip, "reason": str(e)},
        )
        return _finish(ctx, RedirectResponse(f"{web_url}/login?error=auth_failed", status_code=302))

    audit.event(
        "auth.callback.success",
        principal.id,
        {"driver": orchestrator.driver_name, "ip": ctx.client_ip},
    )
    return _finish(ctx, RedirectResponse(f"{web_url}/profile", status_code=302))


@router.post("/logout")
async def logout(
    request: Request,
    principal: Principal = Depends(require_authenticated),
    ctx: AuthContext = Depends(auth_context),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(settings_from_app),
) -> Response:
    audit = get_audit(request)
    try:
        await orchestrator.logout(ctx)
    except Exception as e:
        audit.event("auth.logout.failed", principal.id, {"ip": ctx.client_ip, "reason": str(e)})
        raise BffError(
            "Failed to logout",
            error_code="LOGOUT_ERROR",
            details=_failure_reason(e, settings),
        ) from e

    audit.event("auth.logout.success", principal.id, {"ip": ctx.client_ip})
    # XHR callers cannot follow a cross-origin redirect; hand the IdP logout URL to the SPA.
    data = {"redirectUrl": ctx.redirect_url} if ctx.redirect_url else None
    return _finish(ctx, JSONResponse(success(data, message="Logged out successfully")))


@router.get("/me")
async def me(principal: Principal = Depends(require_authenticated)) -> dict[str, Any]:
    return success({"user": principal.public_view()})


@router.get("/status")
async def status(
    principal: Principal | None = Depends(optional_authenticated),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    # Never 401s: the SPA polls this before deciding whether to show the login button.
    return success({"authenticated": principal is not None, "driver": orchestrator.driver_name})


# --- Module Notes -----------------------------------------------------------
# Drivers never build HTTP responses; `_finish` applies the redirect and cookie
# decisions they recorded on the `AuthContext`.
