"""
bff_core.auth

Authentication/authorization package.

Responsibilities:
- Pluggable identity drivers (mock, federated SAML) behind one orchestrator facade.
- Session principal codec, CSRF guard and FastAPI request gates (authn, RBAC, step-up).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# This package depends on `sessions` and `observability` only; the HTTP layer depends on it.
