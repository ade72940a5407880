"""
bff_core.api.app

FastAPI app factory for the BFF service.

Responsibilities:
- Build the FastAPI application and register routers/middleware.
- Construct the process-wide collaborators (auth orchestrator, session store, token
  cache, gateway, audit sink) and dispose of them on shutdown.
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from bff_core import __version__
from bff_core.api.limiter import build_limiter
from bff_core.api.middleware import (
    AllowedHostsMiddleware,
    ContentTypeMiddleware,
    NoStoreMiddleware,
    SecurityHeadersMiddleware,
)
from bff_core.api.responses import error_response
from bff_core.api.routers.admin import router as admin_router
from bff_core.api.routers.auth import router as auth_router
from bff_core.api.routers.csrf import router as csrf_router
from bff_core.api.routers.data import router as data_router
from bff_core.api.routers.health import health, info
from bff_core.api.routers.health import router as health_router
from bff_core.auth.csrf import CSRF_HEADER, CsrfGuard, CsrfMiddleware
from bff_core.auth.orchestrator import AuthOrchestrator
from bff_core.errors import BffError
from bff_core.gateway.proxy import GatewayProxy
from bff_core.gateway.token_cache import TokenCache
from bff_core.observability.logging import SecurityAuditLog, configure_logging, get_logger
from bff_core.observability.middleware import RequestContextMiddleware
from bff_core.sessions.middleware import SessionMiddleware
from bff_core.sessions.stores import MemorySessionStore, RedisSessionStore, SessionStore
from bff_core.settings import Settings

log = get_logger(__name__)


def _build_session_store(settings: Settings) -> SessionStore:
    if settings.session_store == "redis":
        return RedisSessionStore.from_url(settings.redis_url)
    return MemorySessionStore()


def create_app(
    *,
    settings: Settings,
    session_store: SessionStore | None = None,
    http: httpx.AsyncClient | None = None,
    audit: SecurityAuditLog | None = None,
) -> FastAPI:
    # Configure structured logging once at process startup (before app serves requests).
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    # Fatal configuration problems (unknown driver, mock in prod, partial OAuth) stop here.
    orchestrator = AuthOrchestrator.from_settings(settings)
    oauth_config = settings.oauth_client_config()
    if audit is None:
        audit = SecurityAuditLog(production=settings.is_production)

    owns_store = session_store is None
    store = session_store if session_store is not None else _build_session_store(settings)
    owns_http = http is None
    http_client = http if http is not None else httpx.AsyncClient(timeout=httpx.Timeout(10.0))
    token_cache = TokenCache(http_client)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        log.info(
            "startup",
            env=settings.env,
            auth_driver=orchestrator.driver_name,
            session_store=settings.session_store,
            gateway_enabled=oauth_config is not None and bool(settings.private_api_base_url),
        )
        try:
            yield
        finally:
            # Close only what this factory created; injected clients belong to the caller.
            if owns_http:
                await http_client.aclose()
            if owns_store and isinstance(store, RedisSessionStore):
                await store.close()
            log.info("shutdown")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        openapi_url=None if settings.is_production else "/openapi.json",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.audit = audit
    app.state.orchestrator = orchestrator
    app.state.oauth_config = oauth_config
    app.state.session_store = store
    app.state.token_cache = token_cache
    app.state.gateway = GatewayProxy(http_client, token_cache)
    app.state.csrf_guard = CsrfGuard(audit=audit)
    app.state.limiter = build_limiter(settings, exempt=(health, info))

    # Last added runs first: request context -> security headers -> CORS -> host check
    # -> rate limit -> content type -> no-store -> session -> CSRF -> router.
    app.add_middleware(CsrfMiddleware, guard=app.state.csrf_guard)
    app.add_middleware(
        SessionMiddleware,
        store=store,
        secrets=settings.session_secrets,
        cookie_name=settings.session_cookie_name,
        max_age_seconds=settings.session_max_age_ms // 1000,
        secure=settings.cookie_secure,
        same_site=settings.session_cookie_same_site,
    )
    app.add_middleware(NoStoreMiddleware)
    app.add_middleware(ContentTypeMiddleware)
    app.add_middleware(SlowAPIMiddleware)
    if settings.allowed_hosts:
        app.add_middleware(AllowedHostsMiddleware, allowed_hosts=settings.allowed_hosts, audit=audit)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_origin or settings.web_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", CSRF_HEADER, "x-request-id"],
        expose_headers=[CSRF_HEADER, "x-request-id"],
    )
    app.add_middleware(SecurityHeadersMiddleware, production=settings.is_production)
    app.add_middleware(RequestContextMiddleware)

    _install_exception_handlers(app, settings=settings, audit=audit)

    app.include_router(health_router, tags=["health"])
    app.include_router(csrf_router)
    app.include_router(auth_router)
    app.include_router(data_router)
    app.include_router(admin_router)

    return app


def _install_exception_handlers(app: FastAPI, *, settings: Settings, audit: SecurityAuditLog) -> None:
    @app.exception_handler(BffError)
    async def _bff_error(_: Request, exc: BffError) -> JSONResponse:
        return error_response(exc)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            err = BffError("Endpoint not found", status_code=404, error_code="NOT_FOUND")
        else:
            err = BffError(str(exc.detail), status_code=exc.status_code, error_code="HTTP_ERROR")
        return error_response(err)

    # Plain function: SlowAPIMiddleware may call it without awaiting.
    @app.exception_handler(RateLimitExceeded)
    def _rate_limited(request: Request, _: RateLimitExceeded) -> JSONResponse:
        audit.event(
            "request.blocked.rate_limited",
            None,
            {"ip": request.client.host if request.client else None, "path": request.url.path},
        )
        return error_response(
            BffError(
                "Too many requests, please try again later",
                status_code=429,
                error_code="RATE_LIMITED",
            )
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        details = None if settings.is_production else jsonable_encoder(exc.errors())
        return error_response(
            BffError("Invalid request", status_code=400, error_code="VALIDATION_ERROR", details=details)
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        # Errors raised inside middleware (e.g. session store outages) only reach this handler.
        if isinstance(exc, BffError) and exc.status_code < 500:
            return error_response(exc)
        audit.error(exc, {"path": request.url.path, "method": request.method})
        if isinstance(exc, BffError):
            return error_response(exc)
        return error_response(
            BffError(
                "Internal server error",
                error_code="INTERNAL_ERROR",
                details=None if settings.is_production else str(exc),
            )
        )


# --- Module Notes -----------------------------------------------------------
# App composition stays here; protocol logic lives in `auth`, `sessions` and `gateway`.
