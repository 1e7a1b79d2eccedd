"""SAML 2.0 service provider.

Handles the SP side of the SAML web browser SSO profile:
1. Build an AuthnRequest and the HTTP-Redirect binding URL
2. Validate a POSTed Response (issuer, signature, validity window, audience)
3. Extract NameID, attributes and SessionIndex from the verified assertion
4. Generate SP metadata and LogoutRequest redirects

Validation stops at the first failed check. The caller only ever sees a
generic failure; the precise reason is logged.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import zlib
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from lxml import etree

from idbridge.adapters.sso.saml_verifier import SignXMLAssertionVerifier, certificate_body
from idbridge.core.config import Settings, get_settings
from idbridge.core.exceptions import (
    GENERIC_AUTH_FAILURE,
    AuthenticationError,
    ConfigurationError,
)
from idbridge.core.identity import map_identity
from idbridge.core.interfaces import AssertionVerifier
from idbridge.core.sso.types import SAMLAssertion, SAMLAuthnRequest, SAMLAuthResult, SAMLConfig

logger = logging.getLogger(__name__)

PROTOCOL_NS = "urn:oasis:names:tc:SAML:2.0:protocol"
ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
METADATA_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"
NS = {"samlp": PROTOCOL_NS, "saml": ASSERTION_NS, "md": METADATA_NS, "ds": XMLDSIG_NS}

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
BINDING_HTTP_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
BINDING_HTTP_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
NAMEID_FORMAT_EMAIL = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
SIG_ALG_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"


def deflate_and_encode(xml: bytes) -> str:
    """Raw-deflate and base64 a message for the HTTP-Redirect binding."""
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    compressed = compressor.compress(xml) + compressor.flush()
    return base64.b64encode(compressed).decode("ascii")


def decode_and_inflate(value: str) -> bytes:
    """Reverse of ``deflate_and_encode``."""
    return zlib.decompress(base64.b64decode(value), -15)


def sign_redirect_query(query: str, private_key_pem: str) -> str:
    """Sign an HTTP-Redirect query string with RSA-SHA256.

    Args:
        query: ``SAMLRequest=...&RelayState=...&SigAlg=...`` as sent.
        private_key_pem: SP private key in PEM format.

    Returns:
        Base64 signature for the ``Signature`` parameter.

    Raises:
        ConfigurationError: If the key cannot be loaded or is not RSA.
    """
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode(), password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Cannot load SP private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("SP signing key must be an RSA key")
    signature = key.sign(query.encode(), padding.PKCS1v15(), hashes.SHA256())
    return base64.b64encode(signature).decode("ascii")


def format_instant(value: datetime) -> str:
    """Format a datetime as a SAML instant (UTC, second precision)."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_instant(value: str | None) -> datetime | None:
    """Parse a SAML instant.

    Raises:
        AuthenticationError: If the value is present but not a timestamp.
    """
    if not value or not value.strip():
        return None
    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = normalized[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as e:
        raise AuthenticationError(f"invalid timestamp {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _new_id() -> str:
    # xs:ID values must not start with a digit
    return f"_{secrets.token_hex(16)}"


def _text(element: etree._Element | None) -> str | None:
    if element is None:
        return None
    value = "".join(element.itertext()).strip()
    return value or None


class SAMLProvider:
    """SAML service provider operations for tenant configurations."""

    def __init__(
        self,
        verifier: AssertionVerifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            verifier: XML signature verifier. Defaults to signxml.
            settings: Settings for the clock skew tolerance.
        """
        self._verifier = verifier or SignXMLAssertionVerifier()
        self._settings = settings or get_settings()

    # Login

    def build_authn_request(
        self, config: SAMLConfig, now: datetime | None = None
    ) -> SAMLAuthnRequest:
        """Create a new AuthnRequest for a configuration.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        self._check_config(config)
        return SAMLAuthnRequest(
            id=_new_id(),
            destination=config.idp_sso_url,
            issuer=config.sp_entity_id,
            issue_instant=now or datetime.now(UTC),
            acs_url=config.sp_acs_url,
        )

    def authn_request_xml(self, request: SAMLAuthnRequest) -> bytes:
        """Serialize an AuthnRequest."""
        root = etree.Element(
            f"{{{PROTOCOL_NS}}}AuthnRequest",
            nsmap={"samlp": PROTOCOL_NS, "saml": ASSERTION_NS},
            ID=request.id,
            Version="2.0",
            IssueInstant=format_instant(request.issue_instant),
            Destination=request.destination,
            AssertionConsumerServiceURL=request.acs_url,
            ProtocolBinding=BINDING_HTTP_POST,
        )
        etree.SubElement(root, f"{{{ASSERTION_NS}}}Issuer").text = request.issuer
        etree.SubElement(
            root,
            f"{{{PROTOCOL_NS}}}NameIDPolicy",
            Format=NAMEID_FORMAT_EMAIL,
            AllowCreate="true",
        )
        return etree.tostring(root)

    def build_redirect_url(self, config: SAMLConfig, relay_state: str | None = None) -> str:
        """Build the IdP redirect URL carrying a fresh AuthnRequest.

        Args:
            config: Tenant SAML configuration.
            relay_state: Opaque value the IdP echoes back to the ACS.

        Returns:
            URL to redirect the browser to.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        request = self.build_authn_request(config)
        url = self._redirect_url(
            config.idp_sso_url,
            "SAMLRequest",
            self.authn_request_xml(request),
            config,
            relay_state,
        )
        logger.info(f"SAML login initiated for tenant {config.tenant_id}, request {request.id}")
        return url

    # Response validation

    def parse_response(
        self,
        config: SAMLConfig,
        saml_response: str,
        now: datetime | None = None,
    ) -> SAMLAuthResult:
        """Validate a SAML response and map its identity.

        Args:
            config: Tenant SAML configuration.
            saml_response: Base64 ``SAMLResponse`` form value.
            now: Override of the current time.

        Returns:
            A successful result with the identity, or a failed result
            with a generic error message.

        Raises:
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        self._check_config(config)
        try:
            assertion = self.validate_response(config, saml_response, now)
        except AuthenticationError as e:
            logger.warning(f"SAML response rejected for tenant {config.tenant_id}: {e.reason}")
            return SAMLAuthResult(success=False, error=GENERIC_AUTH_FAILURE)

        identity = map_identity(
            assertion.name_id,
            assertion.attributes,
            config.attribute_mapping,
            default_email=assertion.name_id,
        )
        logger.info(f"SAML response accepted for tenant {config.tenant_id}")
        return SAMLAuthResult(
            success=True,
            identity=identity,
            session_index=assertion.session_index,
        )

    def validate_response(
        self,
        config: SAMLConfig,
        saml_response: str,
        now: datetime | None = None,
    ) -> SAMLAssertion:
        """Run every check on a response and read the verified assertion.

        Order: status, issuer, signature, validity window, audience,
        subject. Attributes are only read once everything passed.

        Raises:
            AuthenticationError: At the first failed check.
        """
        root = self._parse(saml_response)
        if root.tag != f"{{{PROTOCOL_NS}}}Response":
            raise AuthenticationError(f"unexpected root element {root.tag}")

        status_code = root.find("samlp:Status/samlp:StatusCode", NS)
        status = status_code.get("Value") if status_code is not None else None
        if status != STATUS_SUCCESS:
            raise AuthenticationError(f"IdP returned status {status}")

        issuer = _text(root.find("saml:Issuer", NS)) or _text(
            root.find("saml:Assertion/saml:Issuer", NS)
        )
        self._check_issuer(issuer, config)

        signed = self._verifier.verify(root, config.idp_certificate)
        if signed.tag == f"{{{ASSERTION_NS}}}Assertion":
            assertion = signed
        else:
            assertion = signed.find("saml:Assertion", NS)
        if assertion is None:
            raise AuthenticationError("signed content holds no assertion")
        assertion_issuer = _text(assertion.find("saml:Issuer", NS))
        self._check_issuer(assertion_issuer, config)

        not_before, not_on_or_after = self._check_validity(assertion, now or datetime.now(UTC))

        audiences = [
            value
            for value in (
                _text(element)
                for element in assertion.iterfind(
                    "saml:Conditions/saml:AudienceRestriction/saml:Audience", NS
                )
            )
            if value
        ]
        if audiences and config.sp_entity_id not in audiences:
            raise AuthenticationError(
                f"audience {audiences} does not include {config.sp_entity_id}"
            )

        name_id_element = assertion.find("saml:Subject/saml:NameID", NS)
        name_id = _text(name_id_element)
        if name_id is None or name_id_element is None:
            raise AuthenticationError("assertion has no NameID")

        authn_statement = assertion.find("saml:AuthnStatement", NS)
        session_index = (
            authn_statement.get("SessionIndex") if authn_statement is not None else None
        )

        return SAMLAssertion(
            issuer=assertion_issuer or config.idp_entity_id,
            name_id=name_id,
            name_id_format=name_id_element.get("Format"),
            session_index=session_index,
            attributes=self._extract_attributes(assertion),
            not_before=not_before,
            not_on_or_after=not_on_or_after,
            audiences=audiences,
        )

    # Metadata and logout

    def generate_sp_metadata(self, config: SAMLConfig) -> str:
        """Generate SP metadata XML for registration at the IdP."""
        root = etree.Element(
            f"{{{METADATA_NS}}}EntityDescriptor",
            nsmap={"md": METADATA_NS, "ds": XMLDSIG_NS},
            entityID=config.sp_entity_id,
        )
        descriptor = etree.SubElement(
            root,
            f"{{{METADATA_NS}}}SPSSODescriptor",
            AuthnRequestsSigned="true" if config.sign_requests else "false",
            WantAssertionsSigned="true" if config.want_assertions_signed else "false",
            protocolSupportEnumeration=PROTOCOL_NS,
        )

        if config.sp_certificate:
            key_descriptor = etree.SubElement(
                descriptor, f"{{{METADATA_NS}}}KeyDescriptor", use="signing"
            )
            key_info = etree.SubElement(key_descriptor, f"{{{XMLDSIG_NS}}}KeyInfo")
            x509_data = etree.SubElement(key_info, f"{{{XMLDSIG_NS}}}X509Data")
            etree.SubElement(x509_data, f"{{{XMLDSIG_NS}}}X509Certificate").text = (
                certificate_body(config.sp_certificate)
            )

        if config.sp_slo_url:
            etree.SubElement(
                descriptor,
                f"{{{METADATA_NS}}}SingleLogoutService",
                Binding=BINDING_HTTP_REDIRECT,
                Location=config.sp_slo_url,
            )

        etree.SubElement(descriptor, f"{{{METADATA_NS}}}NameIDFormat").text = NAMEID_FORMAT_EMAIL
        etree.SubElement(
            descriptor,
            f"{{{METADATA_NS}}}AssertionConsumerService",
            Binding=BINDING_HTTP_POST,
            Location=config.sp_acs_url,
            index="0",
            isDefault="true",
        )

        return etree.tostring(
            root, xml_declaration=True, encoding="UTF-8", pretty_print=True
        ).decode("utf-8")

    def build_logout_request(
        self,
        config: SAMLConfig,
        name_id: str,
        session_index: str | None = None,
        relay_state: str | None = None,
    ) -> str:
        """Build the IdP redirect URL carrying a LogoutRequest.

        Raises:
            ConfigurationError: If the IdP has no single logout endpoint.
        """
        if not config.idp_slo_url:
            raise ConfigurationError("SAML single logout URL not configured")

        root = etree.Element(
            f"{{{PROTOCOL_NS}}}LogoutRequest",
            nsmap={"samlp": PROTOCOL_NS, "saml": ASSERTION_NS},
            ID=_new_id(),
            Version="2.0",
            IssueInstant=format_instant(datetime.now(UTC)),
            Destination=config.idp_slo_url,
        )
        etree.SubElement(root, f"{{{ASSERTION_NS}}}Issuer").text = config.sp_entity_id
        etree.SubElement(
            root, f"{{{ASSERTION_NS}}}NameID", Format=NAMEID_FORMAT_EMAIL
        ).text = name_id
        if session_index:
            etree.SubElement(root, f"{{{PROTOCOL_NS}}}SessionIndex").text = session_index

        return self._redirect_url(
            config.idp_slo_url, "SAMLRequest", etree.tostring(root), config, relay_state
        )

    # Helpers

    def _redirect_url(
        self,
        destination: str,
        parameter: str,
        xml: bytes,
        config: SAMLConfig,
        relay_state: str | None,
    ) -> str:
        params = [(parameter, deflate_and_encode(xml))]
        if relay_state:
            params.append(("RelayState", relay_state))
        if config.sign_requests:
            if not config.sp_private_key:
                raise ConfigurationError("Request signing enabled without an SP private key")
            params.append(("SigAlg", SIG_ALG_RSA_SHA256))
            signature = sign_redirect_query(urlencode(params), config.sp_private_key)
            params.append(("Signature", signature))
        separator = "&" if "?" in destination else "?"
        return f"{destination}{separator}{urlencode(params)}"

    @staticmethod
    def _check_config(config: SAMLConfig) -> None:
        if not config.is_enabled:
            raise ConfigurationError(f"SAML is disabled for tenant {config.tenant_id}")
        required = ("idp_entity_id", "idp_sso_url", "idp_certificate", "sp_entity_id", "sp_acs_url")
        missing = [name for name in required if not getattr(config, name)]
        if missing:
            raise ConfigurationError(f"SAML configuration incomplete: {', '.join(missing)}")

    @staticmethod
    def _check_issuer(issuer: str | None, config: SAMLConfig) -> None:
        if issuer is None:
            raise AuthenticationError("response has no issuer")
        if issuer != config.idp_entity_id:
            raise AuthenticationError(
                f"issuer {issuer!r} does not match {config.idp_entity_id!r}"
            )

    def _check_validity(
        self, assertion: etree._Element, now: datetime
    ) -> tuple[datetime | None, datetime | None]:
        skew = timedelta(seconds=self._settings.saml_clock_skew_seconds)
        conditions = assertion.find("saml:Conditions", NS)
        not_before = None
        not_on_or_after = None
        if conditions is not None:
            not_before = parse_instant(conditions.get("NotBefore"))
            not_on_or_after = parse_instant(conditions.get("NotOnOrAfter"))

        confirmation = assertion.find(
            "saml:Subject/saml:SubjectConfirmation/saml:SubjectConfirmationData", NS
        )
        if confirmation is not None:
            confirmation_expiry = parse_instant(confirmation.get("NotOnOrAfter"))
            if confirmation_expiry and (
                not_on_or_after is None or confirmation_expiry < not_on_or_after
            ):
                not_on_or_after = confirmation_expiry

        if not_on_or_after is None:
            raise AuthenticationError("assertion has no NotOnOrAfter")
        if not_before is not None and now + skew < not_before:
            raise AuthenticationError(f"assertion not valid before {not_before.isoformat()}")
        if now - skew >= not_on_or_after:
            raise AuthenticationError(f"assertion expired at {not_on_or_after.isoformat()}")
        return not_before, not_on_or_after

    @staticmethod
    def _extract_attributes(assertion: etree._Element) -> dict[str, list[str]]:
        attributes: dict[str, list[str]] = {}
        for attribute in assertion.iterfind("saml:AttributeStatement/saml:Attribute", NS):
            name = attribute.get("Name")
            if not name:
                continue
            values = [
                value
                for value in (
                    _text(element) for element in attribute.iterfind("saml:AttributeValue", NS)
                )
                if value
            ]
            attributes.setdefault(name, []).extend(values)
            friendly_name = attribute.get("FriendlyName")
            if friendly_name and friendly_name not in attributes:
                attributes[friendly_name] = list(values)
        return attributes

    @staticmethod
    def _parse(saml_response: str) -> etree._Element:
        try:
            xml = base64.b64decode(saml_response)
        except (binascii.Error, ValueError) as e:
            raise AuthenticationError("response is not valid base64") from e

        parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)
        try:
            root = etree.fromstring(xml, parser=parser)
        except etree.XMLSyntaxError as e:
            raise AuthenticationError(f"response is not well-formed XML: {e}") from e
        if root is None:
            raise AuthenticationError("response is empty")
        if root.getroottree().docinfo.doctype:
            raise AuthenticationError("DOCTYPE declarations are not allowed")
        return root
