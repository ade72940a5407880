"""
bff_core.api

API package for the BFF service.

Responsibilities:
- FastAPI app factory and router modules.
- API-layer dependency wiring, hardening middleware and the response envelope.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The API layer should remain thin: request parsing + gates + delegation to auth/gateway.
