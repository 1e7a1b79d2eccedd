"""End-to-end SAML response handling with real XML signatures."""

from __future__ import annotations

from datetime import timedelta

import pytest
from lxml import etree

from idbridge.adapters.sso.saml_provider import NS, SAMLProvider
from idbridge.core.config import Settings
from idbridge.core.exceptions import GENERIC_AUTH_FAILURE
from idbridge.core.sso.types import SAMLConfig
from tests.fixtures.keys import KeyPair
from tests.fixtures.saml import (
    NOW,
    build_saml_response,
    encode_response,
    sign_assertion,
    sign_response,
)


@pytest.fixture
def provider() -> SAMLProvider:
    """Return a provider backed by the signxml verifier."""
    return SAMLProvider(settings=Settings())


def _foreign_assertion(name_id: str) -> etree._Element:
    """Return an unsigned assertion for another subject."""
    root = etree.fromstring(build_saml_response(name_id=name_id, session_index="_evil"))
    assertion = root.find("saml:Assertion", NS)
    assertion.set("ID", "_assertion-evil")
    return assertion


class TestSignedResponses:
    """Tests for SAMLProvider.parse_response against signed documents."""

    def test_signed_response_accepted(
        self, provider: SAMLProvider, saml_config: SAMLConfig, idp_keys: KeyPair
    ) -> None:
        """Test that a response signed by the IdP yields the identity."""
        signed = sign_response(build_saml_response(), idp_keys)

        result = provider.parse_response(saml_config, encode_response(signed), now=NOW)

        assert result.success is True
        assert result.identity is not None
        assert result.identity.external_id == "jane@example.com"
        assert result.identity.groups == ["Admins", "Everyone"]
        assert result.session_index == "_session-1"

    def test_signed_but_expired_rejected(
        self, provider: SAMLProvider, saml_config: SAMLConfig, idp_keys: KeyPair
    ) -> None:
        """Test that a valid signature does not rescue an expired assertion."""
        signed = sign_response(build_saml_response(), idp_keys)
        now = NOW + timedelta(minutes=5, seconds=60)

        result = provider.parse_response(saml_config, encode_response(signed), now=now)

        assert result.success is False
        assert result.identity is None
        assert result.error == GENERIC_AUTH_FAILURE

    def test_assertion_only_signature_accepted(
        self, provider: SAMLProvider, saml_config: SAMLConfig, idp_keys: KeyPair
    ) -> None:
        """Test that a signed assertion inside an unsigned response is accepted."""
        signed = sign_assertion(build_saml_response(), idp_keys)

        result = provider.parse_response(saml_config, encode_response(signed), now=NOW)

        assert result.success is True
        assert result.identity is not None
        assert result.identity.external_id == "jane@example.com"

    def test_signature_from_other_key_rejected(
        self,
        provider: SAMLProvider,
        saml_config: SAMLConfig,
        sp_keys: KeyPair,
    ) -> None:
        """Test that a response signed by an untrusted key is rejected."""
        signed = sign_response(build_saml_response(), sp_keys)

        result = provider.parse_response(saml_config, encode_response(signed), now=NOW)

        assert result.success is False

    def test_unsigned_response_rejected(
        self, provider: SAMLProvider, saml_config: SAMLConfig
    ) -> None:
        """Test that an unsigned response is rejected."""
        result = provider.parse_response(
            saml_config, encode_response(build_saml_response()), now=NOW
        )

        assert result.success is False


class TestSignatureWrapping:
    """Tests that injected assertions never replace the signed subject."""

    def test_appended_assertion_ignored(
        self, provider: SAMLProvider, saml_config: SAMLConfig, idp_keys: KeyPair
    ) -> None:
        """Test that an unsigned assertion beside a signed one is ignored."""
        root = etree.fromstring(sign_assertion(build_saml_response(), idp_keys))
        root.append(_foreign_assertion("admin@example.com"))

        result = provider.parse_response(
            saml_config, encode_response(etree.tostring(root)), now=NOW
        )

        assert result.success is True
        assert result.identity is not None
        assert result.identity.external_id == "jane@example.com"
        assert result.session_index == "_session-1"

    def test_injected_assertion_before_signed_response_rejected(
        self, provider: SAMLProvider, saml_config: SAMLConfig, idp_keys: KeyPair
    ) -> None:
        """Test that prepending an assertion to a signed response fails."""
        root = etree.fromstring(sign_response(build_saml_response(), idp_keys))
        status = root.find("samlp:Status", NS)
        status.addnext(_foreign_assertion("admin@example.com"))

        result = provider.parse_response(
            saml_config, encode_response(etree.tostring(root)), now=NOW
        )

        assert result.success is False
        assert result.identity is None
