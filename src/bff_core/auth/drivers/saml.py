"""
bff_core.auth.drivers.saml

Federated single sign-on through a SAML 2.0 identity provider.

Responsibilities:
- Issue AuthnRequests over the HTTP-Redirect binding.
- Validate the posted SAMLResponse and map assertion attributes onto a `Principal`.
- Optionally hand the browser to the IdP's single-logout endpoint.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import uuid
import zlib
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import lxml.etree as LET

from bff_core.auth.drivers.base import AuthContext, AuthDriver
from bff_core.auth.models import AttributeValue, Principal
from bff_core.auth.saml_validation import (
    SAML_ASSERTION_NS,
    SAML_PROTOCOL_NS,
    SamlAssertion,
    SamlAssertionValidator,
)
from bff_core.errors import AuthenticationFailure
from bff_core.observability.logging import get_logger
from bff_core.settings import SamlConfig

log = get_logger(__name__)

_PROTOCOL_BINDING_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"


def _instant(moment: dt.datetime) -> str:
    return moment.astimezone(dt.UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _deflate_and_encode(xml: bytes) -> str:
    # HTTP-Redirect binding: raw DEFLATE (no zlib header), then base64.
    compressor = zlib.compressobj(9, zlib.DEFLATED, -15)
    raw = compressor.compress(xml) + compressor.flush()
    return base64.b64encode(raw).decode()


def _with_query(url: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode(params)}"


class FederatedDriver(AuthDriver):
    def __init__(
        self,
        *,
        config: SamlConfig,
        validator: SamlAssertionValidator | None = None,
        utc_now: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
        **kwargs: Any,
    ) -> None:
        super().__init__(callback_url=config.callback_url, **kwargs)
        self._config = config
        self._utc_now = utc_now
        self._validator = validator or SamlAssertionValidator(config, clock=utc_now)

    def get_driver_name(self) -> str:
        return "saml"

    # Login ----------------------------------------------------------------

    def build_authn_request(self, request_id: str | None = None) -> bytes:
        cfg = self._config
        root = LET.Element(
            f"{{{SAML_PROTOCOL_NS}}}AuthnRequest",
            nsmap={"samlp": SAML_PROTOCOL_NS, "saml": SAML_ASSERTION_NS},
        )
        root.set("ID", request_id or f"_{uuid.uuid4().hex}")
        root.set("Version", "2.0")
        root.set("IssueInstant", _instant(self._utc_now()))
        root.set("Destination", cfg.entry_point)
        root.set("AssertionConsumerServiceURL", self.callback_url)
        root.set("ProtocolBinding", _PROTOCOL_BINDING_POST)
        if cfg.force_authn:
            root.set("ForceAuthn", "true")
        issuer = LET.SubElement(root, f"{{{SAML_ASSERTION_NS}}}Issuer")
        issuer.text = cfg.issuer
        policy = LET.SubElement(root, f"{{{SAML_PROTOCOL_NS}}}NameIDPolicy")
        policy.set("Format", cfg.name_id_format)
        policy.set("AllowCreate", "true")
        return LET.tostring(root)

    async def login(self, ctx: AuthContext) -> None:
        params = {"SAMLRequest": _deflate_and_encode(self.build_authn_request())}
        relay_state = ctx.query.get("RelayState")
        if relay_state:
            params["RelayState"] = relay_state
        ctx.redirect(_with_query(self._config.entry_point, params))

    # Callback ---------------------------------------------------------------

    async def callback(self, ctx: AuthContext) -> Principal:
        encoded = ctx.param("SAMLResponse")
        if not encoded:
            raise AuthenticationFailure("SAMLResponse is missing")
        try:
            xml = base64.b64decode("".join(encoded.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise AuthenticationFailure("SAMLResponse is not valid base64") from e

        # Validation failures propagate: there is no fallback identity for federated login.
        assertion = self._validator.validate(xml)
        principal = self.map_principal(assertion)
        await self._save_principal(ctx.session, principal)
        log.info("saml_login_completed", issuer=assertion.issuer, roles=list(principal.roles))
        return principal

    def map_principal(self, assertion: SamlAssertion) -> Principal:
        cfg = self._config
        user_id = assertion.first(cfg.attribute_id) or assertion.name_id
        email = assertion.first(cfg.attribute_email) or (
            assertion.name_id if "@" in assertion.name_id else None
        )
        first_name = assertion.first(cfg.attribute_first_name)
        last_name = assertion.first(cfg.attribute_last_name)
        full_name = " ".join(part for part in (first_name, last_name) if part)
        name = assertion.first(cfg.attribute_name) or full_name or email
        if not user_id or not email or not name:
            raise AuthenticationFailure("SAML assertion lacks required identity attributes")

        roles = list(dict.fromkeys(assertion.attributes.get(cfg.attribute_roles, [])))
        if not roles and cfg.default_role:
            roles = [cfg.default_role]

        attributes: dict[str, AttributeValue] = {
            "firstName": first_name,
            "lastName": last_name,
            "nameId": assertion.name_id,
        }
        if assertion.issuer:
            attributes["issuer"] = assertion.issuer
        return Principal(
            id=user_id,
            email=email,
            name=name,
            roles=tuple(roles),
            attributes=attributes,
        )

    # Logout -------------------------------------------------------------------

    def build_logout_request(self, name_id: str, request_id: str | None = None) -> bytes:
        cfg = self._config
        root = LET.Element(
            f"{{{SAML_PROTOCOL_NS}}}LogoutRequest",
            nsmap={"samlp": SAML_PROTOCOL_NS, "saml": SAML_ASSERTION_NS},
        )
        root.set("ID", request_id or f"_{uuid.uuid4().hex}")
        root.set("Version", "2.0")
        root.set("IssueInstant", _instant(self._utc_now()))
        root.set("Destination", cfg.logout_url or "")
        issuer = LET.SubElement(root, f"{{{SAML_ASSERTION_NS}}}Issuer")
        issuer.text = cfg.issuer
        name_id_el = LET.SubElement(root, f"{{{SAML_ASSERTION_NS}}}NameID")
        name_id_el.set("Format", cfg.name_id_format)
        name_id_el.text = name_id
        return LET.tostring(root)

    async def logout(self, ctx: AuthContext) -> None:
        # Read the principal before the session is gone; the IdP needs the NameID.
        principal = self.get_user(ctx.session)
        await self._end_session(ctx)
        if not self._config.logout_url or principal is None:
            return
        name_id = str(principal.attributes.get("nameId") or principal.id)
        params = {"SAMLRequest": _deflate_and_encode(self.build_logout_request(name_id))}
        if self._config.logout_callback_url:
            params["RelayState"] = self._config.logout_callback_url
        ctx.redirect(_with_query(self._config.logout_url, params))


# --- Module Notes -----------------------------------------------------------
# AuthnRequests are not signed and their IDs are not remembered between login and
# callback; trust rests on the IdP's signed assertion plus audience/time checks.
