"""
bff_core.api.responses

Uniform response envelope helpers.

Responsibilities:
- Shape successful payloads as `{success: true, data?, message?}`.
- Render `BffError` instances as `{success: false, error: {...}}` JSON responses.
"""

from __future__ import annotations

from typing import Any

from starlette.responses import JSONResponse

from bff_core.errors import BffError


def success(data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message is not None:
        body["message"] = message
    return body


def error_response(exc: BffError) -> JSONResponse:
    return JSONResponse(exc.envelope(), status_code=exc.status_code)
