"""
bff_core.gateway

Service-to-service boundary towards the private backend.

Responsibilities:
- OAuth client-credentials token acquisition with caching and in-flight dedupe.
- Transparent proxying of authenticated SPA requests with bearer injection.
"""

from bff_core.gateway.proxy import GatewayProxy, GatewayRequest, GatewayResponse, sanitize_path
from bff_core.gateway.token_cache import CachedToken, TokenCache

__all__ = [
    "CachedToken",
    "GatewayProxy",
    "GatewayRequest",
    "GatewayResponse",
    "TokenCache",
    "sanitize_path",
]
