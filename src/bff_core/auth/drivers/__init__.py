"""
bff_core.auth.drivers

Identity driver implementations.

Responsibilities:
- `AuthDriver` contract and the shared session-save protocol.
- `MockDriver` (local development) and `FederatedDriver` (SAML 2.0 SSO).
"""

from bff_core.auth.drivers.base import AuthContext, AuthDriver, clear_principal, save_principal
from bff_core.auth.drivers.mock import DEFAULT_MOCK_USERS, MockDriver
from bff_core.auth.drivers.saml import FederatedDriver

__all__ = [
    "DEFAULT_MOCK_USERS",
    "AuthContext",
    "AuthDriver",
    "FederatedDriver",
    "MockDriver",
    "clear_principal",
    "save_principal",
]
