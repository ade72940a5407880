"""
bff_core.api.routers.data

BFF proxy routes to the private backend.

Responsibilities:
- Refuse with 503 when the gateway is not configured, before authentication.
- Require an authenticated session and forward the call through `GatewayProxy`.
- Audit traversal attempts; log upstream failures.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.responses import JSONResponse, PlainTextResponse, Response

from bff_core.api.deps import gateway_target, get_gateway
from bff_core.auth.deps import get_audit, request_details, require_authenticated
from bff_core.auth.models import Principal
from bff_core.errors import BffError, PathTraversalRejected, UpstreamUnavailable
from bff_core.gateway.proxy import GatewayProxy, GatewayRequest
from bff_core.observability.logging import get_logger

log = get_logger(__name__)

router = APIRouter(prefix="/api/v1/data", tags=["data"])

# Caller headers worth forwarding; cookies and auth material never leave the BFF.
_FORWARDED_HEADERS = ("accept", "accept-language", "x-request-id")


async def _json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("application/json"):
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise BffError("Request body is not valid JSON", status_code=400, error_code="INVALID_BODY") from e


@router.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    dependencies=[Depends(gateway_target)],
)
async def proxy(
    path: str,
    request: Request,
    principal: Principal = Depends(require_authenticated),
    target: tuple = Depends(gateway_target),
    gateway: GatewayProxy = Depends(get_gateway),
) -> Response:
    base_url, oauth = target
    outbound = GatewayRequest(
        method=request.method,
        path=path,
        body=await _json_body(request),
        headers={h: request.headers[h] for h in _FORWARDED_HEADERS if h in request.headers},
        query=request.url.query,
    )
    try:
        result = await gateway.proxy_request(base_url, oauth, outbound)
    except PathTraversalRejected:
        get_audit(request).event(
            "gateway.blocked.path_traversal", principal.id, request_details(request)
        )
        raise
    except UpstreamUnavailable as e:
        log.error("gateway_proxy_failed", method=request.method, path=request.url.path, error=e.message)
        raise

    if result.data is None:
        return Response(status_code=result.status)
    if isinstance(result.data, str):
        return PlainTextResponse(result.data, status_code=result.status)
    return JSONResponse(result.data, status_code=result.status)


# --- Module Notes -----------------------------------------------------------
# Upstream error bodies pass through with their status; this router only adds 400/502/503.
