"""XML signature verification for SAML responses using signxml."""

from __future__ import annotations

import logging
import textwrap

from lxml import etree
from signxml import InvalidInput, InvalidSignature, XMLVerifier

from idbridge.core.exceptions import SignatureVerificationError

logger = logging.getLogger(__name__)

SAML_ASSERTION_NS = "urn:oasis:names:tc:SAML:2.0:assertion"
XMLDSIG_NS = "http://www.w3.org/2000/09/xmldsig#"


def certificate_body(value: str) -> str:
    """Strip PEM armour and whitespace from a certificate."""
    lines = []
    for line in value.strip().splitlines():
        stripped = line.strip()
        if "BEGIN CERTIFICATE" in stripped or "END CERTIFICATE" in stripped:
            continue
        if stripped:
            lines.append(stripped)
    return "".join(lines)


def to_pem_certificate(value: str) -> str:
    """Normalize a PEM or bare base64 certificate into PEM.

    Raises:
        SignatureVerificationError: If the value is empty.
    """
    body = certificate_body(value)
    if not body:
        raise SignatureVerificationError("no IdP certificate configured")
    wrapped = "\n".join(textwrap.wrap(body, 64))
    return f"-----BEGIN CERTIFICATE-----\n{wrapped}\n-----END CERTIFICATE-----"


class SignXMLAssertionVerifier:
    """AssertionVerifier checking enveloped signatures against the IdP certificate.

    The whole response is tried first. If that fails and the assertion
    carries its own signature, the assertion alone is tried. Only the
    element covered by the valid signature is returned.
    """

    def verify(self, document: etree._Element, certificate: str) -> etree._Element:
        """Verify the signature of a parsed SAML response.

        Args:
            document: Parsed ``samlp:Response`` element.
            certificate: Trusted IdP signing certificate.

        Returns:
            The signed element as re-parsed by signxml.

        Raises:
            SignatureVerificationError: If no valid signature is found.
        """
        cert_pem = to_pem_certificate(certificate)
        verifier = XMLVerifier()

        try:
            result = verifier.verify(document, x509_cert=cert_pem, expect_references=1)
            return result.signed_xml
        except (InvalidSignature, InvalidInput) as e:
            error: Exception = e

        assertion = document.find(f"{{{SAML_ASSERTION_NS}}}Assertion")
        has_assertion_signature = (
            assertion is not None and assertion.find(f"{{{XMLDSIG_NS}}}Signature") is not None
        )
        if assertion is not None and has_assertion_signature:
            try:
                result = verifier.verify(assertion, x509_cert=cert_pem, expect_references=1)
                return result.signed_xml
            except (InvalidSignature, InvalidInput) as inner:
                error = inner

        logger.debug(f"SAML signature verification failed: {error}")
        raise SignatureVerificationError(f"signature verification failed: {error}") from error
