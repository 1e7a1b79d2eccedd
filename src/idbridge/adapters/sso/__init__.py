"""SAML and OIDC protocol adapters."""

from idbridge.adapters.sso.id_token import JWKSIdTokenVerifier
from idbridge.adapters.sso.oidc_provider import OIDCProvider, generate_pkce_pair
from idbridge.adapters.sso.saml_provider import SAMLProvider
from idbridge.adapters.sso.saml_verifier import SignXMLAssertionVerifier, to_pem_certificate

__all__ = [
    "JWKSIdTokenVerifier",
    "OIDCProvider",
    "SAMLProvider",
    "SignXMLAssertionVerifier",
    "generate_pkce_pair",
    "to_pem_certificate",
]
