"""SSO core domain types and state."""

from idbridge.core.sso.state import InMemoryStateStore
from idbridge.core.sso.types import (
    AuthorizationRequest,
    AuthorizationState,
    FederationConfig,
    OIDCAuthResult,
    OIDCConfig,
    OIDCDiscoveryDocument,
    OIDCTokens,
    SAMLAssertion,
    SAMLAuthnRequest,
    SAMLAuthResult,
    SAMLConfig,
    SSOProviderType,
)

__all__ = [
    "AuthorizationRequest",
    "AuthorizationState",
    "FederationConfig",
    "InMemoryStateStore",
    "OIDCAuthResult",
    "OIDCConfig",
    "OIDCDiscoveryDocument",
    "OIDCTokens",
    "SAMLAssertion",
    "SAMLAuthResult",
    "SAMLAuthnRequest",
    "SAMLConfig",
    "SSOProviderType",
]
