"""
bff_core.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`) stored in the session and
  attached to requests.
- Role membership checks shared by drivers and request gates.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

AttributeValue = str | int | float | bool | None


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity, as issued by a driver's callback.
    """

    id: str
    email: str
    name: str
    roles: tuple[str, ...] = ()
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)

    def to_session(self) -> dict[str, Any]:
        # JSON-safe shape; read back through `SessionUserCodec.decode`.
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "roles": list(self.roles),
            "attributes": dict(self.attributes),
        }

    def public_view(self) -> dict[str, Any]:
        return self.to_session()


def has_role(principal: Principal | None, role: str | Iterable[str]) -> bool:
    """True iff the principal holds at least one of the requested roles (exact match)."""

    if principal is None or not principal.roles:
        return False
    required = [role] if isinstance(role, str) else list(role)
    held = set(principal.roles)
    return any(r in held for r in required)


# --- Module Notes -----------------------------------------------------------
# Keep this model minimal; it is used across drivers, request gates and the gateway audit trail.
