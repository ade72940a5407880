"""
bff_core.auth.saml_validation

Validation of SAML 2.0 responses posted back by the identity provider.

Responsibilities:
- Parse the response with a hardened XML parser (no entities, no network).
- Verify the enveloped XML-DSig signature on the assertion (or on the enclosing
  response) against the configured IdP certificate.
- Enforce issuer, audience and the NotBefore/NotOnOrAfter validity windows.
- Return the subject and multi-valued attributes of the one signed assertion.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import hashlib
import hmac
from collections.abc import Callable
from dataclasses import dataclass, field

import lxml.etree as LET
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from bff_core.errors import AuthenticationFailure, ConfigurationError
from bff_core.settings import SamlConfig

SAML_ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
SAML_PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
_STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
_ENVELOPED_SIGNATURE = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"

_NS = {"saml": SAML_ASSERTION_NS, "samlp": SAML_PROTOCOL_NS, "ds": XMLDSIG_NS}

# (exclusive, with_comments) per canonicalization algorithm URI.
_C14N: dict[str, tuple[bool, bool]] = {
    "http://www.w3.org/2001/10/xml-exc-c14n#": (True, False),
    "http://www.w3.org/2001/10/xml-exc-c14n#WithComments": (True, True),
    "http://www.w3.org/TR/2001/REC-xml-c14n-20010315": (False, False),
    "http://www.w3.org/TR/2001/REC-xml-c14n-20010315#WithComments": (False, True),
}

_DIGESTS: dict[str, Callable[[bytes], "hashlib._Hash"]] = {
    "http://www.w3.org/2001/04/xmlenc#sha256": hashlib.sha256,
    "http://www.w3.org/2001/04/xmlenc#sha512": hashlib.sha512,
    "http://www.w3.org/2000/09/xmldsig#sha1": hashlib.sha1,
}

_VERIFIERS: dict[str, tuple[type, Callable[[object, bytes, bytes], None]]] = {
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256": (
        rsa.RSAPublicKey,
        lambda key, sig, data: key.verify(sig, data, padding.PKCS1v15(), hashes.SHA256()),
    ),
    "http://www.w3.org/2001/04/xmldsig-more#rsa-sha512": (
        rsa.RSAPublicKey,
        lambda key, sig, data: key.verify(sig, data, padding.PKCS1v15(), hashes.SHA512()),
    ),
    "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256": (
        ec.EllipticCurvePublicKey,
        lambda key, sig, data: key.verify(sig, data, ec.ECDSA(hashes.SHA256())),
    ),
    "http://www.w3.org/2001/04/xmldsig-more#ed25519": (
        ed25519.Ed25519PublicKey,
        lambda key, sig, data: key.verify(sig, data),
    ),
}


@dataclass(frozen=True, slots=True)
class SamlAssertion:
    name_id: str
    issuer: str | None
    attributes: dict[str, list[str]] = field(default_factory=dict)

    def first(self, name: str) -> str | None:
        values = self.attributes.get(name) or []
        return values[0] if values else None


def load_certificate_key(material: str):
    """Public key from a PEM certificate, bare base64 DER certificate, or PEM public key."""

    text = material.strip()
    if not text:
        raise ValueError("empty certificate")
    if "BEGIN CERTIFICATE" in text:
        return x509.load_pem_x509_certificate(text.encode()).public_key()
    if "BEGIN PUBLIC KEY" in text:
        return load_pem_public_key(text.encode())
    try:
        der = base64.b64decode("".join(text.split()), validate=True)
    except binascii.Error as e:
        raise ValueError("unsupported certificate format") from e
    return x509.load_der_x509_certificate(der).public_key()


def _parser() -> LET.XMLParser:
    return LET.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=False,
        huge_tree=False,
        load_dtd=False,
    )


def _parse_instant(value: str) -> dt.datetime:
    try:
        instant = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise AuthenticationFailure("SAML assertion has an invalid timestamp") from e
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt.UTC)
    return instant


class SamlAssertionValidator:
    def __init__(
        self,
        config: SamlConfig,
        *,
        clock: Callable[[], dt.datetime] = lambda: dt.datetime.now(dt.UTC),
    ) -> None:
        self._config = config
        self._clock = clock
        try:
            self._public_key = load_certificate_key(config.idp_cert)
        except ValueError as e:
            raise ConfigurationError("SAML IdP certificate could not be loaded") from e

    def validate(self, xml: bytes | str) -> SamlAssertion:
        raw = xml.encode() if isinstance(xml, str) else xml
        try:
            document = LET.fromstring(raw, parser=_parser())
        except LET.XMLSyntaxError as e:
            raise AuthenticationFailure("SAML response is not well-formed XML") from e

        if document.tag == f"{{{SAML_PROTOCOL_NS}}}Response":
            status = document.find("samlp:Status/samlp:StatusCode", _NS)
            if status is None or status.get("Value") != _STATUS_SUCCESS:
                raise AuthenticationFailure("SAML response status is not Success")
            assertions = document.findall("saml:Assertion", _NS)
        elif document.tag == f"{{{SAML_ASSERTION_NS}}}Assertion":
            assertions = [document]
        else:
            raise AuthenticationFailure("Unexpected SAML document")

        if len(assertions) != 1:
            raise AuthenticationFailure("SAML response must carry exactly one assertion")
        assertion = assertions[0]

        self._verify_signed(document, assertion)
        return self._read_assertion(assertion)

    # Signature ---------------------------------------------------------------

    def _verify_signed(self, document: LET._Element, assertion: LET._Element) -> None:
        # Accept a signature on the assertion itself, or on the response that encloses it.
        candidates = [assertion]
        if document is not assertion:
            candidates.append(document)
        for element in candidates:
            signature = element.find("ds:Signature", _NS)
            if signature is not None:
                self._verify_signature(document, element, signature)
                return
        raise AuthenticationFailure("SAML response is not signed")

    def _verify_signature(
        self, document: LET._Element, signed: LET._Element, signature: LET._Element
    ) -> None:
        signed_info = signature.find("ds:SignedInfo", _NS)
        value_text = signature.findtext("ds:SignatureValue", namespaces=_NS)
        if signed_info is None or not value_text:
            raise AuthenticationFailure("SAML signature is incomplete")

        references = signed_info.findall("ds:Reference", _NS)
        if len(references) != 1:
            raise AuthenticationFailure("SAML signature must have exactly one reference")
        reference = references[0]

        # The reference must point at the element carrying the signature; otherwise a
        # signed fragment could be wrapped around unsigned content.
        signed_id = signed.get("ID")
        if not signed_id or reference.get("URI") != f"#{signed_id}":
            raise AuthenticationFailure("SAML signature does not cover the signed element")
        if len(document.xpath("//*[@ID=$id]", id=signed_id)) != 1:
            raise AuthenticationFailure("SAML element ID is not unique")

        digest_method = reference.find("ds:DigestMethod", _NS)
        digest_value = reference.findtext("ds:DigestValue", namespaces=_NS)
        digest_factory = _DIGESTS.get(digest_method.get("Algorithm", "") if digest_method is not None else "")
        if digest_factory is None or not digest_value:
            raise AuthenticationFailure("Unsupported SAML digest")
        transformed = self._apply_transforms(signed, reference)
        expected = base64.b64encode(digest_factory(transformed).digest()).decode()
        if not hmac.compare_digest(expected, "".join(digest_value.split())):
            raise AuthenticationFailure("SAML digest mismatch")

        c14n_method = signed_info.find("ds:CanonicalizationMethod", _NS)
        c14n = _C14N.get(c14n_method.get("Algorithm", "") if c14n_method is not None else "")
        if c14n is None:
            raise AuthenticationFailure("Unsupported SAML canonicalization")
        payload = LET.tostring(signed_info, method="c14n", exclusive=c14n[0], with_comments=c14n[1])

        signature_method = signed_info.find("ds:SignatureMethod", _NS)
        verifier = _VERIFIERS.get(
            signature_method.get("Algorithm", "") if signature_method is not None else ""
        )
        if verifier is None or not isinstance(self._public_key, verifier[0]):
            raise AuthenticationFailure("Unsupported SAML signature algorithm")
        try:
            signature_bytes = base64.b64decode("".join(value_text.split()), validate=True)
            verifier[1](self._public_key, signature_bytes, payload)
        except (binascii.Error, ValueError, InvalidSignature) as e:
            raise AuthenticationFailure("SAML signature is invalid") from e

    @staticmethod
    def _apply_transforms(signed: LET._Element, reference: LET._Element) -> bytes:
        target = LET.fromstring(LET.tostring(signed), parser=_parser())
        exclusive, with_comments = True, False
        for transform in reference.findall("ds:Transforms/ds:Transform", _NS):
            algorithm = transform.get("Algorithm", "")
            if algorithm == _ENVELOPED_SIGNATURE:
                for sig in target.findall("ds:Signature", _NS):
                    target.remove(sig)
            elif algorithm in _C14N:
                exclusive, with_comments = _C14N[algorithm]
            else:
                raise AuthenticationFailure("Unsupported SAML transform")
        return LET.tostring(target, method="c14n", exclusive=exclusive, with_comments=with_comments)

    # Conditions / content -------------------------------------------------------

    def _read_assertion(self, assertion: LET._Element) -> SamlAssertion:
        cfg = self._config
        issuer = assertion.findtext("saml:Issuer", namespaces=_NS)
        issuer = issuer.strip() if issuer else None
        if cfg.idp_issuer and issuer != cfg.idp_issuer:
            raise AuthenticationFailure("SAML assertion issuer mismatch")

        now = self._clock()
        skew = dt.timedelta(seconds=max(cfg.clock_skew_seconds, 0))
        windows = assertion.findall("saml:Conditions", _NS) + assertion.findall(
            "saml:Subject/saml:SubjectConfirmation/saml:SubjectConfirmationData", _NS
        )
        for node in windows:
            not_before = node.get("NotBefore")
            if not_before and now + skew < _parse_instant(not_before):
                raise AuthenticationFailure("SAML assertion is not yet valid")
            not_on_or_after = node.get("NotOnOrAfter")
            if not_on_or_after and now - skew >= _parse_instant(not_on_or_after):
                raise AuthenticationFailure("SAML assertion has expired")

        if cfg.audience:
            audiences = {
                (node.text or "").strip()
                for node in assertion.findall(
                    "saml:Conditions/saml:AudienceRestriction/saml:Audience", _NS
                )
            }
            if cfg.audience not in audiences:
                raise AuthenticationFailure("SAML assertion audience mismatch")

        name_id = assertion.findtext("saml:Subject/saml:NameID", namespaces=_NS)
        if not name_id or not name_id.strip():
            raise AuthenticationFailure("SAML assertion has no subject")

        attributes: dict[str, list[str]] = {}
        for attribute in assertion.findall("saml:AttributeStatement/saml:Attribute", _NS):
            name = attribute.get("Name")
            if not name:
                continue
            values = [
                (value.text or "").strip()
                for value in attribute.findall("saml:AttributeValue", _NS)
                if value.text and value.text.strip()
            ]
            attributes.setdefault(name, []).extend(values)

        return SamlAssertion(name_id=name_id.strip(), issuer=issuer, attributes=attributes)


# --- Module Notes -----------------------------------------------------------
# Only what the signature covers is read: values come from the one assertion that is either
# signed itself or enclosed by the signed response, never from sibling elements.
