from __future__ import annotations

import base64
import dataclasses
import datetime as dt
import hashlib
import zlib
from collections.abc import Callable
from urllib.parse import parse_qs, urlsplit

import lxml.etree as LET
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from bff_core.auth.drivers import AuthContext, FederatedDriver
from bff_core.auth.saml_validation import SAML_ASSERTION_NS, SAML_PROTOCOL_NS, SamlAssertionValidator
from bff_core.errors import AuthenticationFailure
from bff_core.sessions.session import CSRF_SECRET_KEY, USER_KEY, Session
from bff_core.sessions.stores import MemorySessionStore
from bff_core.settings import SamlConfig

NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.UTC)
CALLBACK = "https://bff.example/api/v1/auth/callback"
SP_ENTITY = "urn:bff:sp"
IDP_ENTITY = "https://idp.example/metadata"

_DS_NS = "http://www.w3.org/2000/09/xmldsig#"
_EXC_C14N = "http://www.w3.org/2001/10/xml-exc-c14n#"
_ENVELOPED_SIG = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
_DIGEST_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"

_CLAIMS = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims"
_ROLE_CLAIM = "http://schemas.microsoft.com/ws/2008/06/identity/claims/role"


def _instant(value: dt.datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _generate_rsa_signing_material() -> tuple[rsa.RSAPrivateKey, str]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test IdP")])
    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(NOW - dt.timedelta(days=1))
        .not_valid_after(NOW + dt.timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    return private_key, certificate.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="module")
def idp_key() -> tuple[rsa.RSAPrivateKey, str]:
    return _generate_rsa_signing_material()


@pytest.fixture
def config(idp_key: tuple[rsa.RSAPrivateKey, str]) -> SamlConfig:
    return SamlConfig(
        entry_point="https://idp.example/sso",
        issuer=SP_ENTITY,
        callback_url=CALLBACK,
        idp_cert=idp_key[1],
        idp_issuer=IDP_ENTITY,
        audience=SP_ENTITY,
        logout_url="https://idp.example/slo",
        logout_callback_url="https://spa.example/",
    )


def _driver(config: SamlConfig, *, now: dt.datetime = NOW) -> FederatedDriver:
    return FederatedDriver(config=config, utc_now=lambda: now)


def _attribute(name: str, *values: str) -> str:
    rendered = "".join(f"<AttributeValue>{v}</AttributeValue>" for v in values)
    return f"<Attribute Name='{name}'>{rendered}</Attribute>"


def _assertion(
    *,
    assertion_id: str = "_a1",
    issuer: str = IDP_ENTITY,
    audience: str = SP_ENTITY,
    name_id: str = "ada@example.com",
    not_before: dt.datetime = NOW - dt.timedelta(minutes=1),
    not_on_or_after: dt.datetime = NOW + dt.timedelta(minutes=5),
    attributes: str | None = None,
) -> LET._Element:
    if attributes is None:
        attributes = (
            _attribute(f"{_CLAIMS}/nameidentifier", "emp-42")
            + _attribute(f"{_CLAIMS}/emailaddress", "ada@example.com")
            + _attribute(f"{_CLAIMS}/name", "Ada Lovelace")
            + _attribute(_ROLE_CLAIM, "admin", "user")
        )
    template = (
        f"<Assertion xmlns='{SAML_ASSERTION_NS}' Version='2.0' ID='{assertion_id}' "
        f"IssueInstant='{_instant(NOW)}'>"
        f"<Issuer>{issuer}</Issuer>"
        "<Subject>"
        f"<NameID>{name_id}</NameID>"
        "<SubjectConfirmation Method='urn:oasis:names:tc:SAML:2.0:cm:bearer'>"
        f"<SubjectConfirmationData NotOnOrAfter='{_instant(not_on_or_after)}' Recipient='{CALLBACK}'/>"
        "</SubjectConfirmation>"
        "</Subject>"
        f"<Conditions NotBefore='{_instant(not_before)}' NotOnOrAfter='{_instant(not_on_or_after)}'>"
        f"<AudienceRestriction><Audience>{audience}</Audience></AudienceRestriction>"
        "</Conditions>"
        f"<AttributeStatement>{attributes}</AttributeStatement>"
        "</Assertion>"
    )
    return LET.fromstring(template)


def _sign(element: LET._Element, key: rsa.RSAPrivateKey) -> LET._Element:
    digest_bytes = LET.tostring(element, method="c14n", exclusive=True, with_comments=False)
    digest_value = base64.b64encode(hashlib.sha256(digest_bytes).digest()).decode()

    signature = LET.Element(f"{{{_DS_NS}}}Signature", nsmap={"ds": _DS_NS})
    signed_info = LET.SubElement(signature, f"{{{_DS_NS}}}SignedInfo")
    LET.SubElement(signed_info, f"{{{_DS_NS}}}CanonicalizationMethod", Algorithm=_EXC_C14N)
    LET.SubElement(signed_info, f"{{{_DS_NS}}}SignatureMethod", Algorithm=_RSA_SHA256)
    reference = LET.SubElement(signed_info, f"{{{_DS_NS}}}Reference", URI=f"#{element.get('ID')}")
    transforms = LET.SubElement(reference, f"{{{_DS_NS}}}Transforms")
    LET.SubElement(transforms, f"{{{_DS_NS}}}Transform", Algorithm=_ENVELOPED_SIG)
    LET.SubElement(transforms, f"{{{_DS_NS}}}Transform", Algorithm=_EXC_C14N)
    LET.SubElement(reference, f"{{{_DS_NS}}}DigestMethod", Algorithm=_DIGEST_SHA256)
    LET.SubElement(reference, f"{{{_DS_NS}}}DigestValue").text = digest_value

    signed_info_bytes = LET.tostring(signed_info, method="c14n", exclusive=True, with_comments=False)
    signature_bytes = key.sign(signed_info_bytes, padding.PKCS1v15(), hashes.SHA256())
    LET.SubElement(signature, f"{{{_DS_NS}}}SignatureValue").text = base64.b64encode(
        signature_bytes
    ).decode()

    # Signature goes after Issuer, as IdPs place it.
    element.insert(1, signature)
    return element


def _response(assertion: LET._Element, *, status: str = "Success") -> bytes:
    response = LET.Element(
        f"{{{SAML_PROTOCOL_NS}}}Response",
        nsmap={"samlp": SAML_PROTOCOL_NS},
        ID="_r1",
        Version="2.0",
        IssueInstant=_instant(NOW),
        Destination=CALLBACK,
    )
    status_el = LET.SubElement(response, f"{{{SAML_PROTOCOL_NS}}}Status")
    LET.SubElement(
        status_el,
        f"{{{SAML_PROTOCOL_NS}}}StatusCode",
        Value=f"urn:oasis:names:tc:SAML:2.0:status:{status}",
    )
    response.append(assertion)
    return LET.tostring(response)


def _posted(xml: bytes) -> dict[str, str]:
    return {"SAMLResponse": base64.b64encode(xml).decode()}


def _ctx(store: MemorySessionStore | None = None, **kwargs) -> AuthContext:
    if store is None:
        store = MemorySessionStore()
    return AuthContext(session=Session(store, ttl_seconds=60), **kwargs)


def _with(config: SamlConfig, **changes) -> SamlConfig:
    return dataclasses.replace(config, **changes)


def _tamper_last_attribute(document: LET._Element) -> None:
    document.xpath("//*[local-name()='AttributeValue']")[-1].text = "root"


def _mutate(xml: bytes, mutator: Callable[[LET._Element], None]) -> bytes:
    document = LET.fromstring(xml)
    mutator(document)
    return LET.tostring(document)


@pytest.mark.asyncio
async def test_callback_maps_signed_assertion_to_principal(config, idp_key) -> None:
    xml = _response(_sign(_assertion(), idp_key[0]))
    store = MemorySessionStore()
    ctx = _ctx(store, form=_posted(xml))
    ctx.session[CSRF_SECRET_KEY] = "csrf-secret"

    principal = await _driver(config).callback(ctx)

    assert principal.id == "emp-42"
    assert principal.email == "ada@example.com"
    assert principal.name == "Ada Lovelace"
    assert principal.roles == ("admin", "user")
    assert principal.attributes["issuer"] == IDP_ENTITY
    stored = await store.load(ctx.session.id)
    assert stored is not None
    assert stored[USER_KEY]["id"] == "emp-42"
    assert stored[CSRF_SECRET_KEY] == "csrf-secret"


@pytest.mark.asyncio
async def test_callback_falls_back_to_name_id_and_default_role(config, idp_key) -> None:
    cfg = _with(config, default_role="citizen")
    attributes = _attribute(f"{_CLAIMS}/givenname", "Ada") + _attribute(f"{_CLAIMS}/surname", "Lovelace")
    xml = _response(_sign(_assertion(attributes=attributes), idp_key[0]))

    principal = await _driver(cfg).callback(_ctx(form=_posted(xml)))

    assert principal.id == "ada@example.com"
    assert principal.email == "ada@example.com"
    assert principal.name == "Ada Lovelace"
    assert principal.roles == ("citizen",)
    assert principal.attributes["firstName"] == "Ada"


@pytest.mark.asyncio
async def test_signed_response_envelope_is_accepted(config, idp_key) -> None:
    response = LET.fromstring(_response(_assertion()))
    xml = LET.tostring(_sign(response, idp_key[0]))
    principal = await _driver(config).callback(_ctx(form=_posted(xml)))
    assert principal.id == "emp-42"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "case",
    [
        "tampered_attribute",
        "unsigned",
        "expired",
        "not_yet_valid",
        "wrong_audience",
        "wrong_issuer",
        "failed_status",
        "two_assertions",
        "reference_to_other_element",
    ],
)
async def test_callback_rejects_invalid_assertions(config, idp_key, case: str) -> None:
    key = idp_key[0]
    if case == "tampered_attribute":
        xml = _mutate(
            _response(_sign(_assertion(), key)),
            _tamper_last_attribute,
        )
    elif case == "unsigned":
        xml = _response(_assertion())
    elif case == "expired":
        xml = _response(_sign(_assertion(not_on_or_after=NOW - dt.timedelta(minutes=10)), key))
    elif case == "not_yet_valid":
        xml = _response(_sign(_assertion(not_before=NOW + dt.timedelta(minutes=10)), key))
    elif case == "wrong_audience":
        xml = _response(_sign(_assertion(audience="urn:someone-else"), key))
    elif case == "wrong_issuer":
        xml = _response(_sign(_assertion(issuer="https://evil.example"), key))
    elif case == "failed_status":
        xml = _response(_sign(_assertion(), key), status="Requester")
    elif case == "two_assertions":
        xml = _mutate(
            _response(_sign(_assertion(), key)),
            lambda doc: doc.append(_sign(_assertion(assertion_id="_a2", name_id="eve@example.com"), key)),
        )
    else:
        signed = _sign(_assertion(assertion_id="_a1"), key)
        signed.set("ID", "_moved")
        xml = _response(signed)

    store = MemorySessionStore()
    ctx = _ctx(store, form=_posted(xml))
    with pytest.raises(AuthenticationFailure):
        await _driver(config).callback(ctx)
    assert ctx.session.get(USER_KEY) is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_callback_rejects_assertion_signed_by_another_key(config, idp_key) -> None:
    other_key, _ = _generate_rsa_signing_material()
    xml = _response(_sign(_assertion(), other_key))
    with pytest.raises(AuthenticationFailure, match="signature is invalid"):
        await _driver(config).callback(_ctx(form=_posted(xml)))


@pytest.mark.asyncio
@pytest.mark.parametrize("form", [{}, {"SAMLResponse": "%%%not-base64%%%"}, {"SAMLResponse": "PGZvbw=="}])
async def test_callback_rejects_missing_or_garbled_response(config, form) -> None:
    with pytest.raises(AuthenticationFailure):
        await _driver(config).callback(_ctx(form=form))


def test_validator_honours_clock_skew(config, idp_key) -> None:
    xml = _response(_sign(_assertion(not_on_or_after=NOW - dt.timedelta(seconds=30)), idp_key[0]))
    assertion = SamlAssertionValidator(config, clock=lambda: NOW).validate(xml)
    assert assertion.name_id == "ada@example.com"


@pytest.mark.asyncio
async def test_login_redirects_with_deflated_authn_request(config) -> None:
    ctx = _ctx(query={"RelayState": "/profile"})
    await _driver(_with(config, force_authn=True)).login(ctx)

    assert ctx.redirect_url is not None
    parts = urlsplit(ctx.redirect_url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == config.entry_point
    query = parse_qs(parts.query)
    assert query["RelayState"] == ["/profile"]

    request = LET.fromstring(zlib.decompress(base64.b64decode(query["SAMLRequest"][0]), -15))
    assert request.tag == f"{{{SAML_PROTOCOL_NS}}}AuthnRequest"
    assert request.get("AssertionConsumerServiceURL") == CALLBACK
    assert request.get("Destination") == config.entry_point
    assert request.get("ForceAuthn") == "true"
    assert request.findtext(f"{{{SAML_ASSERTION_NS}}}Issuer") == SP_ENTITY


@pytest.mark.asyncio
async def test_logout_destroys_session_then_redirects_to_idp(config, idp_key) -> None:
    driver = _driver(config)
    store = MemorySessionStore()
    ctx = _ctx(store, form=_posted(_response(_sign(_assertion(), idp_key[0]))))
    await driver.callback(ctx)

    logout_ctx = AuthContext(session=ctx.session)
    await driver.logout(logout_ctx)

    assert logout_ctx.session.destroyed
    assert logout_ctx.cleared_cookies == ["connect.sid"]
    assert len(store) == 0
    parts = urlsplit(logout_ctx.redirect_url or "")
    assert parts.netloc == "idp.example"
    query = parse_qs(parts.query)
    assert query["RelayState"] == ["https://spa.example/"]
    request = LET.fromstring(zlib.decompress(base64.b64decode(query["SAMLRequest"][0]), -15))
    assert request.findtext(f"{{{SAML_ASSERTION_NS}}}NameID") == "ada@example.com"


@pytest.mark.asyncio
async def test_logout_without_slo_only_ends_local_session(config) -> None:
    ctx = _ctx()
    await _driver(_with(config, logout_url=None)).logout(ctx)
    assert ctx.redirect_url is None
    assert ctx.session.destroyed
