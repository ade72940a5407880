"""
bff_core.auth.codec

Schema validation for the principal stored in the session.

Responsibilities:
- Decode untrusted session data into a `Principal`, or `None` when it does not
  match the expected shape (tampered store, stale format, compromised IdP data).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr
from pydantic import ValidationError

from bff_core.auth.models import Principal

_AttributeValue = StrictStr | StrictInt | StrictFloat | StrictBool | None


class _SessionUser(BaseModel):
    model_config = ConfigDict(extra="ignore", strict=True)

    id: StrictStr = Field(min_length=1)
    email: StrictStr = Field(min_length=1)
    name: StrictStr = Field(min_length=1)
    roles: list[StrictStr] | None = None
    attributes: dict[StrictStr, _AttributeValue] | None = None


class SessionUserCodec:
    @staticmethod
    def decode(raw: Any) -> Principal | None:
        """Never raises; any structural problem yields None."""

        if not isinstance(raw, dict):
            return None
        try:
            parsed = _SessionUser.model_validate(raw)
        except ValidationError:
            return None
        return Principal(
            id=parsed.id,
            email=parsed.email,
            name=parsed.name,
            roles=tuple(parsed.roles or ()),
            attributes=dict(parsed.attributes or {}),
        )

    @staticmethod
    def encode(principal: Principal) -> dict[str, Any]:
        return principal.to_session()
