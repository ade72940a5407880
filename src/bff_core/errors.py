"""
bff_core.errors

Error taxonomy shared by the auth, session, CSRF and gateway layers.

Responsibilities:
- Give every failure a stable HTTP status and error code.
- Keep the wire envelope (`{success, error: {code, message, details?}}`) in one place.
"""

from __future__ import annotations

from typing import Any


class BffError(Exception):
    """Base class for errors that map onto the uniform response envelope."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code

    def envelope(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.error_code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return {"success": False, "error": error}


class ConfigurationError(BffError):
    """Fatal misconfiguration detected while building the process (never at request time)."""

    error_code = "CONFIGURATION_ERROR"


class AuthenticationFailure(BffError):
    """The identity provider ceremony could not be completed or validated."""

    status_code = 401
    error_code = "AUTHENTICATION_FAILED"


class AuthenticationRequired(BffError):
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class SessionInvalid(AuthenticationRequired):
    """Stored principal failed schema validation; the session has been destroyed."""


class ReauthenticationRequired(BffError):
    status_code = 401
    error_code = "REAUTHENTICATION_REQUIRED"


class AuthorizationDenied(BffError):
    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class CsrfRejected(BffError):
    """State-changing request without a valid CSRF token.

    `reason` is either "missing" or "invalid" and selects the error code.
    """

    status_code = 403

    def __init__(self, reason: str) -> None:
        self.reason = reason
        if reason == "missing":
            super().__init__("CSRF token missing", error_code="CSRF_MISSING")
        else:
            super().__init__("CSRF token invalid", error_code="CSRF_INVALID")


class PathTraversalRejected(BffError):
    status_code = 400
    error_code = "INVALID_PATH"

    def __init__(self, path: str) -> None:
        super().__init__("Invalid path")
        self.path = path


class UpstreamUnavailable(BffError):
    """Token endpoint or private backend could not be reached (or answered garbage)."""

    status_code = 502
    error_code = "BAD_GATEWAY"


class GatewayNotConfigured(BffError):
    status_code = 503
    error_code = "GATEWAY_NOT_CONFIGURED"


class SessionStoreError(BffError):
    """Session regenerate/save/destroy failed in the backing store."""

    error_code = "SESSION_ERROR"


# --- Module Notes -----------------------------------------------------------
# Route handlers raise these; `api.app` installs the single exception handler that renders them.
