"""
bff_core.auth.csrf

Double-submit CSRF protection bound to the server-side session.

Responsibilities:
- Provision a per-session secret lazily and derive salted HMAC tokens from it.
- Gate state-changing requests on a token from the `X-CSRF-Token` header or `_csrf` body field.
- Emit fresh tokens on safe requests and audit every rejection.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from collections.abc import Iterable
from urllib.parse import parse_qs

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from bff_core.errors import CsrfRejected
from bff_core.observability.logging import SecurityAuditLog
from bff_core.sessions.session import CSRF_SECRET_KEY, USER_KEY, Session

CSRF_HEADER = "X-CSRF-Token"
CSRF_BODY_FIELD = "_csrf"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

# Unauthenticated probes plus the IdP callback, which arrives as a cross-site POST.
DEFAULT_SKIP_PATHS: tuple[str, ...] = (
    "/api/v1/health",
    "/api/v1/info",
    "/api/v1/auth/callback",
)


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


class CsrfGuard:
    def __init__(
        self,
        *,
        audit: SecurityAuditLog | None = None,
        skip_paths: Iterable[str] = DEFAULT_SKIP_PATHS,
    ) -> None:
        self._audit = audit or SecurityAuditLog()
        self._skip_paths = tuple(p.rstrip("/") or "/" for p in skip_paths)

    def is_skipped(self, path: str) -> bool:
        return any(path == p or path.startswith(f"{p}/") for p in self._skip_paths)

    def ensure_secret(self, session: Session) -> str:
        secret = session.get(CSRF_SECRET_KEY)
        if not isinstance(secret, str) or not secret:
            secret = _b64(secrets.token_bytes(32))
            session[CSRF_SECRET_KEY] = secret
        return secret

    def create_token(self, secret: str) -> str:
        salt = _b64(secrets.token_bytes(12))
        return f"{salt}.{self._sign(secret, salt)}"

    def verify_token(self, secret: str | None, token: str | None) -> bool:
        if not secret or not token or "." not in token:
            return False
        salt, _, mac = token.partition(".")
        if not salt:
            return False
        return hmac.compare_digest(mac.encode(), self._sign(secret, salt).encode())

    @staticmethod
    def _sign(secret: str, salt: str) -> str:
        return _b64(hmac.new(secret.encode(), salt.encode(), hashlib.sha256).digest())

    def protect(
        self,
        session: Session,
        *,
        method: str,
        path: str,
        header_token: str | None = None,
        body_token: str | None = None,
        client_ip: str | None = None,
    ) -> str | None:
        """
        Apply the guard to one request.

        Returns a token to expose on safe requests, `None` when nothing needs emitting,
        and raises `CsrfRejected` for unsafe requests without a matching token.
        """

        if self.is_skipped(path):
            return None
        if method.upper() in SAFE_METHODS:
            return self.create_token(self.ensure_secret(session))

        token = header_token or body_token
        if not token:
            self._reject("missing", session, method=method, path=path, client_ip=client_ip)
        if not self.verify_token(session.get(CSRF_SECRET_KEY), token):
            self._reject("invalid", session, method=method, path=path, client_ip=client_ip)
        return None

    def _reject(
        self,
        reason: str,
        session: Session,
        *,
        method: str,
        path: str,
        client_ip: str | None,
    ) -> None:
        user = session.get(USER_KEY)
        user_id = user.get("id") if isinstance(user, dict) else None
        self._audit.event(
            f"csrf.rejected.{reason}",
            user_id if isinstance(user_id, str) else None,
            {"ip": client_ip, "path": path, "method": method},
        )
        raise CsrfRejected(reason)


async def _body_token(request: Request) -> str | None:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type not in ("application/json", "application/x-www-form-urlencoded"):
        return None
    raw = await request.body()
    if not raw:
        return None
    if content_type == "application/json":
        try:
            payload = json.loads(raw)
        except ValueError:
            return None
        value = payload.get(CSRF_BODY_FIELD) if isinstance(payload, dict) else None
        return value if isinstance(value, str) else None
    values = parse_qs(raw.decode("latin-1")).get(CSRF_BODY_FIELD)
    return values[0] if values else None


class CsrfMiddleware(BaseHTTPMiddleware):
    """Must run inside `SessionMiddleware`; it reads `request.state.session`."""

    def __init__(self, app: ASGIApp, *, guard: CsrfGuard) -> None:
        super().__init__(app)
        self._guard = guard

    async def dispatch(self, request: Request, call_next) -> Response:
        session: Session = request.state.session
        method = request.method.upper()
        path = request.url.path
        header_token = request.headers.get(CSRF_HEADER)
        body_token = None
        if not header_token and method not in SAFE_METHODS and not self._guard.is_skipped(path):
            body_token = await _body_token(request)

        try:
            token = self._guard.protect(
                session,
                method=method,
                path=path,
                header_token=header_token,
                body_token=body_token,
                client_ip=request.client.host if request.client else None,
            )
        except CsrfRejected as e:
            # Raised outside the router, so the app's exception handlers never see it.
            return JSONResponse(e.envelope(), status_code=e.status_code)

        response: Response = await call_next(request)
        if token is not None:
            response.headers[CSRF_HEADER] = token
        return response


# --- Module Notes -----------------------------------------------------------
# Tokens are `<salt>.<HMAC-SHA256(secret, salt)>`; a leaked token never reveals the secret
# and every issued token for a session stays valid until the secret changes.
