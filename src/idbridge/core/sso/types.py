"""SSO domain types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from idbridge.core.identity import AttributeMapping, NormalizedIdentity


class SSOProviderType(str, Enum):
    """SSO provider types."""

    OIDC = "oidc"
    SAML = "saml"


@dataclass
class SAMLConfig:
    """SAML 2.0 federation configuration for a tenant."""

    id: UUID
    tenant_id: UUID
    is_enabled: bool

    # IdP settings
    idp_entity_id: str
    idp_sso_url: str
    idp_certificate: str

    # SP settings
    sp_entity_id: str
    sp_acs_url: str

    idp_slo_url: str | None = None
    sp_slo_url: str | None = None
    sp_certificate: str | None = None
    sp_private_key: str | None = None

    attribute_mapping: AttributeMapping = field(default_factory=AttributeMapping.saml_defaults)
    sign_requests: bool = False
    want_assertions_signed: bool = True
    display_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def provider_type(self) -> SSOProviderType:
        """Get the provider type."""
        return SSOProviderType.SAML


@dataclass
class OIDCConfig:
    """OpenID Connect federation configuration for a tenant.

    Endpoint fields left empty are filled from the issuer's discovery
    document at login time.
    """

    id: UUID
    tenant_id: UUID
    is_enabled: bool

    issuer: str
    client_id: str
    client_secret: str
    redirect_uri: str

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None
    end_session_endpoint: str | None = None
    post_logout_redirect_uri: str | None = None

    scopes: list[str] | None = None
    claim_mapping: AttributeMapping = field(default_factory=AttributeMapping.oidc_defaults)
    pkce_enabled: bool = True
    nonce_enabled: bool = True
    display_name: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def provider_type(self) -> SSOProviderType:
        """Get the provider type."""
        return SSOProviderType.OIDC

    @property
    def default_scopes(self) -> list[str]:
        """Default OIDC scopes."""
        return self.scopes or ["openid", "email", "profile"]


FederationConfig = SAMLConfig | OIDCConfig


class OIDCDiscoveryDocument(BaseModel):
    """Subset of ``/.well-known/openid-configuration`` used by the handler."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None
    end_session_endpoint: str | None = None
    scopes_supported: list[str] = ["openid", "profile", "email"]
    code_challenge_methods_supported: list[str] | None = None


@dataclass
class AuthorizationState:
    """Single-use record binding an OIDC callback to its login attempt."""

    state: str
    nonce: str
    tenant_id: UUID
    config_id: UUID
    redirect_uri: str
    created_at: datetime
    code_verifier: str | None = None
    redirect_path: str | None = None

    def age_seconds(self, now: datetime | None = None) -> float:
        """Seconds elapsed since the state was issued."""
        now = now or datetime.now(UTC)
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        return (now - created_at).total_seconds()

    def is_expired(self, max_age_seconds: int, now: datetime | None = None) -> bool:
        """Check whether the state is older than ``max_age_seconds``."""
        return self.age_seconds(now) > max_age_seconds


@dataclass
class AuthorizationRequest:
    """An OIDC authorization redirect."""

    url: str
    state: str


@dataclass
class OIDCTokens:
    """Tokens from OIDC provider."""

    access_token: str
    id_token: str | None
    token_type: str
    expires_in: int
    refresh_token: str | None = None
    scope: str | None = None


@dataclass
class OIDCAuthResult:
    """Outcome of an OIDC callback."""

    success: bool
    identity: NormalizedIdentity | None = None
    tokens: OIDCTokens | None = None
    error: str | None = None
    redirect_path: str | None = None


@dataclass
class SAMLAuthnRequest:
    """A SAML AuthnRequest before serialization."""

    id: str
    destination: str
    issuer: str
    issue_instant: datetime
    acs_url: str


@dataclass
class SAMLAssertion:
    """Values read from a verified SAML assertion."""

    issuer: str
    name_id: str
    name_id_format: str | None
    session_index: str | None
    attributes: dict[str, list[str]]
    not_before: datetime | None = None
    not_on_or_after: datetime | None = None
    audiences: list[str] = field(default_factory=list)


@dataclass
class SAMLAuthResult:
    """Outcome of parsing a SAML response."""

    success: bool
    identity: NormalizedIdentity | None = None
    session_index: str | None = None
    error: str | None = None
