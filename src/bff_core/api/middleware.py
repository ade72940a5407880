"""
bff_core.api.middleware

Cross-cutting HTTP hardening for the BFF surface.

Responsibilities:
- Add browser hardening headers (CSP, HSTS, framing and sniffing guards).
- Mark every `/api/` response as non-cacheable (responses carry personal data).
- Reject requests whose Host header is not on the configured allow-list.
- Reject unexpected request body types on state-changing API calls.
"""

from __future__ import annotations

from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from bff_core.api.responses import error_response
from bff_core.errors import BffError
from bff_core.observability.logging import SecurityAuditLog

_ACCEPTED_BODY_TYPES = frozenset({"application/json", "application/x-www-form-urlencoded"})

_CONTENT_SECURITY_POLICY = "; ".join(
    (
        "default-src 'self'",
        "script-src 'self'",
        "style-src 'self'",
        "img-src 'self' data: https:",
        "connect-src 'self'",
        "font-src 'self'",
        "frame-src 'none'",
        "object-src 'none'",
        "frame-ancestors 'none'",
        "base-uri 'self'",
        "form-action 'self'",
    )
)

_HSTS = "max-age=31536000; includeSubDomains; preload"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Browser hardening headers on every response; a handler may still override them."""

    def __init__(self, app: ASGIApp, *, production: bool = False) -> None:
        super().__init__(app)
        self._csp = _CONTENT_SECURITY_POLICY
        if production:
            self._csp += "; upgrade-insecure-requests"

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = response.headers
        headers.setdefault("Content-Security-Policy", self._csp)
        headers.setdefault("Strict-Transport-Security", _HSTS)
        headers.setdefault("X-Content-Type-Options", "nosniff")
        headers.setdefault("X-Frame-Options", "DENY")
        headers.setdefault("Referrer-Policy", "no-referrer")
        headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        headers.setdefault("Cross-Origin-Resource-Policy", "cross-origin")
        headers.setdefault("X-Permitted-Cross-Domain-Policies", "none")
        return response


class NoStoreMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response


class AllowedHostsMiddleware(BaseHTTPMiddleware):
    """Host header injection guard; the allow-list holds bare hostnames (no port)."""

    def __init__(self, app: ASGIApp, *, allowed_hosts: Iterable[str], audit: SecurityAuditLog) -> None:
        super().__init__(app)
        self._allowed = frozenset(h.strip().lower() for h in allowed_hosts if h.strip())
        self._audit = audit

    async def dispatch(self, request: Request, call_next) -> Response:
        hostname = (request.url.hostname or "").lower()
        if hostname not in self._allowed:
            self._audit.event(
                "request.blocked.invalid_host",
                None,
                {
                    "ip": request.client.host if request.client else None,
                    "host": request.headers.get("host"),
                    "path": request.url.path,
                },
            )
            return error_response(
                BffError("Invalid Host header", status_code=400, error_code="INVALID_HOST")
            )
        return await call_next(request)


class ContentTypeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if (
            request.url.path.startswith("/api/")
            and request.method in ("POST", "PUT", "PATCH")
            and request.headers.get("content-length") != "0"
        ):
            content_type = request.headers.get("content-type")
            if content_type and content_type.split(";")[0].strip().lower() not in _ACCEPTED_BODY_TYPES:
                return error_response(
                    BffError(
                        "Content-Type must be application/json or application/x-www-form-urlencoded",
                        status_code=415,
                        error_code="UNSUPPORTED_MEDIA_TYPE",
                    )
                )
        return await call_next(request)


# --- Module Notes -----------------------------------------------------------
# These run outside the router, so they answer with `error_response` directly instead
# of raising into the app's exception handlers.
