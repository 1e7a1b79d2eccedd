"""Federation service.

Chains the protocol handlers, role resolution and persistence for a
login: the SAML or OIDC handler yields a normalized identity, the
identity record is created or refreshed (just-in-time provisioning) and
the tenant's role mappings are applied to it.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from idbridge.core.audit import SSO_LOGIN, AuditLogCreate
from idbridge.core.exceptions import GENERIC_AUTH_FAILURE, ConfigurationError, NotFoundError
from idbridge.core.identity import AttributeMapping
from idbridge.core.sso.types import OIDCConfig, SAMLConfig, SSOProviderType

if TYPE_CHECKING:
    from idbridge.adapters.sso.oidc_provider import OIDCProvider
    from idbridge.adapters.sso.saml_provider import SAMLProvider
    from idbridge.core.identity import IdentityRecord, NormalizedIdentity
    from idbridge.core.interfaces import AuditLog, FederationConfigStore, IdentityStore
    from idbridge.core.rbac.service import RoleMappingService
    from idbridge.core.rbac.types import UserRoleAssignment
    from idbridge.core.sso.types import AuthorizationRequest, FederationConfig, OIDCTokens

logger = structlog.get_logger()

# Fields owned by the store or fixed at creation
_FIXED_FIELDS = frozenset({"id", "tenant_id", "created_at", "updated_at"})


@dataclass
class LoginResult:
    """Outcome of a completed SSO login."""

    success: bool
    provider: SSOProviderType
    user: IdentityRecord | None = None
    roles: UserRoleAssignment | None = None
    error: str | None = None
    session_index: str | None = None
    tokens: OIDCTokens | None = None
    redirect_path: str | None = None

    @classmethod
    def failed(cls, provider: SSOProviderType) -> LoginResult:
        """A failure carrying only the generic message."""
        return cls(success=False, provider=provider, error=GENERIC_AUTH_FAILURE)


class FederationService:
    """Tenant SSO configuration and login orchestration."""

    def __init__(
        self,
        configs: FederationConfigStore,
        identities: IdentityStore,
        roles: RoleMappingService,
        audit: AuditLog,
        saml: SAMLProvider,
        oidc: OIDCProvider,
    ) -> None:
        """Initialize the service.

        Args:
            configs: SAML and OIDC configuration storage.
            identities: Identity record storage.
            roles: Role resolution and assignment.
            audit: Audit trail for logins.
            saml: SAML protocol handler.
            oidc: OIDC protocol handler.
        """
        self._configs = configs
        self._identities = identities
        self._roles = roles
        self._audit = audit
        self._saml = saml
        self._oidc = oidc

    # Configuration CRUD

    async def create_saml_config(
        self,
        tenant_id: UUID,
        idp_entity_id: str,
        idp_sso_url: str,
        idp_certificate: str,
        sp_entity_id: str,
        sp_acs_url: str,
        **options: Any,
    ) -> SAMLConfig:
        """Create the tenant's SAML configuration.

        Args:
            tenant_id: Owning tenant.
            idp_entity_id: Expected issuer of responses.
            idp_sso_url: IdP endpoint receiving AuthnRequests.
            idp_certificate: IdP signing certificate (PEM or bare base64).
            sp_entity_id: Our entity ID, the expected audience.
            sp_acs_url: Our assertion consumer service URL.
            **options: Any other SAMLConfig field.

        Raises:
            ConfigurationError: If the tenant already has a SAML
                configuration or a field is unknown.
        """
        if await self._configs.get_saml_config(tenant_id) is not None:
            raise ConfigurationError(f"Tenant {tenant_id} already has a SAML configuration")
        _check_fields(SAMLConfig, options)
        if isinstance(options.get("attribute_mapping"), dict):
            options["attribute_mapping"] = AttributeMapping.from_dict(
                options["attribute_mapping"], AttributeMapping.saml_defaults()
            )

        config = SAMLConfig(
            id=uuid4(),
            tenant_id=tenant_id,
            is_enabled=options.pop("is_enabled", True),
            idp_entity_id=idp_entity_id,
            idp_sso_url=idp_sso_url,
            idp_certificate=idp_certificate,
            sp_entity_id=sp_entity_id,
            sp_acs_url=sp_acs_url,
            **options,
        )
        saved = await self._configs.save_config(config)
        logger.info("saml_config_created", tenant_id=str(tenant_id), config_id=str(saved.id))
        return saved  # type: ignore[return-value]

    async def create_oidc_config(
        self,
        tenant_id: UUID,
        issuer: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        **options: Any,
    ) -> OIDCConfig:
        """Create the tenant's OIDC configuration.

        Endpoints left out are discovered from the issuer at login time.

        Raises:
            ConfigurationError: If the tenant already has an OIDC
                configuration or a field is unknown.
        """
        if await self._configs.get_oidc_config(tenant_id) is not None:
            raise ConfigurationError(f"Tenant {tenant_id} already has an OIDC configuration")
        _check_fields(OIDCConfig, options)
        if isinstance(options.get("claim_mapping"), dict):
            options["claim_mapping"] = AttributeMapping.from_dict(
                options["claim_mapping"], AttributeMapping.oidc_defaults()
            )

        config = OIDCConfig(
            id=uuid4(),
            tenant_id=tenant_id,
            is_enabled=options.pop("is_enabled", True),
            issuer=issuer,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            **options,
        )
        saved = await self._configs.save_config(config)
        logger.info("oidc_config_created", tenant_id=str(tenant_id), config_id=str(saved.id))
        return saved  # type: ignore[return-value]

    async def get_saml_config(self, tenant_id: UUID) -> SAMLConfig:
        """Get the tenant's SAML configuration.

        Raises:
            NotFoundError: If the tenant has none.
        """
        config = await self._configs.get_saml_config(tenant_id)
        if config is None:
            raise NotFoundError(f"No SAML configuration for tenant {tenant_id}")
        return config

    async def get_oidc_config(self, tenant_id: UUID) -> OIDCConfig:
        """Get the tenant's OIDC configuration.

        Raises:
            NotFoundError: If the tenant has none.
        """
        config = await self._configs.get_oidc_config(tenant_id)
        if config is None:
            raise NotFoundError(f"No OIDC configuration for tenant {tenant_id}")
        return config

    async def update_config(self, config_id: UUID, **changes: Any) -> FederationConfig:
        """Update fields of a SAML or OIDC configuration.

        Raises:
            NotFoundError: If the configuration does not exist.
            ConfigurationError: If a field is unknown or fixed.
        """
        current = await self._configs.get_config(config_id)
        if current is None:
            raise NotFoundError(f"SSO configuration not found: {config_id}")
        _check_fields(type(current), changes)
        for name, default in (
            ("attribute_mapping", AttributeMapping.saml_defaults()),
            ("claim_mapping", AttributeMapping.oidc_defaults()),
        ):
            if isinstance(changes.get(name), dict):
                changes[name] = AttributeMapping.from_dict(changes[name], default)

        updated = replace(current, **changes, updated_at=datetime.now(UTC))
        saved = await self._configs.save_config(updated)
        logger.info(
            "sso_config_updated",
            tenant_id=str(saved.tenant_id),
            config_id=str(config_id),
            fields=sorted(changes),
        )
        return saved

    async def delete_config(self, config_id: UUID) -> None:
        """Delete a SAML or OIDC configuration.

        Raises:
            NotFoundError: If the configuration does not exist.
        """
        if not await self._configs.delete_config(config_id):
            raise NotFoundError(f"SSO configuration not found: {config_id}")
        logger.info("sso_config_deleted", config_id=str(config_id))

    # SAML

    async def start_saml_login(self, tenant_id: UUID, relay_state: str | None = None) -> str:
        """Get the IdP redirect URL for a SAML login.

        Raises:
            NotFoundError: If the tenant has no SAML configuration.
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        config = await self.get_saml_config(tenant_id)
        return self._saml.build_redirect_url(config, relay_state)

    async def complete_saml_login(self, tenant_id: UUID, saml_response: str) -> LoginResult:
        """Validate a POSTed SAML response and provision the user.

        Raises:
            NotFoundError: If the tenant has no SAML configuration.
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        config = await self.get_saml_config(tenant_id)
        result = self._saml.parse_response(config, saml_response)
        if not result.success or result.identity is None:
            return LoginResult.failed(SSOProviderType.SAML)

        login = await self._provision(tenant_id, result.identity, SSOProviderType.SAML)
        login.session_index = result.session_index
        return login

    async def saml_metadata(self, tenant_id: UUID) -> str:
        """Get SP metadata XML for the tenant's SAML configuration."""
        config = await self.get_saml_config(tenant_id)
        return self._saml.generate_sp_metadata(config)

    async def saml_logout_url(
        self,
        tenant_id: UUID,
        name_id: str,
        session_index: str | None = None,
        relay_state: str | None = None,
    ) -> str:
        """Get the IdP redirect URL for SAML single logout.

        Raises:
            ConfigurationError: If the IdP has no single logout endpoint.
        """
        config = await self.get_saml_config(tenant_id)
        return self._saml.build_logout_request(config, name_id, session_index, relay_state)

    # OIDC

    async def start_oidc_login(
        self, tenant_id: UUID, redirect_path: str | None = None
    ) -> AuthorizationRequest:
        """Get the authorization URL for an OIDC login.

        Raises:
            NotFoundError: If the tenant has no OIDC configuration.
            ConfigurationError: If the configuration is disabled or incomplete.
            IdentityProviderError: If discovery fails.
        """
        config = await self.get_oidc_config(tenant_id)
        return await self._oidc.build_authorization_url(config, redirect_path)

    async def complete_oidc_login(self, tenant_id: UUID, code: str, state: str) -> LoginResult:
        """Complete an OIDC callback and provision the user.

        Raises:
            NotFoundError: If the tenant has no OIDC configuration.
            ConfigurationError: If the configuration is disabled or incomplete.
        """
        config = await self.get_oidc_config(tenant_id)
        result = await self._oidc.handle_callback(config, code, state)
        if not result.success or result.identity is None:
            return LoginResult.failed(SSOProviderType.OIDC)

        login = await self._provision(tenant_id, result.identity, SSOProviderType.OIDC)
        login.tokens = result.tokens
        login.redirect_path = result.redirect_path
        return login

    async def oidc_logout_url(
        self, tenant_id: UUID, id_token_hint: str | None = None
    ) -> str | None:
        """Get the RP-initiated logout URL, if the provider supports one."""
        config = await self.get_oidc_config(tenant_id)
        return self._oidc.build_logout_url(config, id_token_hint)

    # Provisioning

    async def _provision(
        self,
        tenant_id: UUID,
        identity: NormalizedIdentity,
        provider: SSOProviderType,
    ) -> LoginResult:
        """Create or refresh the identity record and assign roles.

        A record deactivated by directory sync blocks the login.
        """
        existing = await self._identities.get_user_by_external_id(tenant_id, identity.external_id)
        if existing is not None and not existing.is_active:
            logger.warning(
                "sso_login_rejected",
                tenant_id=str(tenant_id),
                user_id=str(existing.id),
                reason="identity record is deactivated",
            )
            return LoginResult.failed(provider)

        if existing is None:
            user = await self._identities.create_user(tenant_id, identity, provider.value)
            created = True
        else:
            user = await self._identities.update_user(existing.id, identity)
            created = False

        assignment = await self._roles.assign_roles_to_user(tenant_id, user.id, identity.claims())

        await self._audit.record(
            AuditLogCreate(
                tenant_id=tenant_id,
                actor_id=user.id,
                actor_email=user.email,
                action=SSO_LOGIN,
                resource_type="user",
                resource_id=user.id,
                resource_name=user.email,
                metadata={"provider": provider.value, "created": created},
            )
        )
        logger.info(
            "sso_login_completed",
            tenant_id=str(tenant_id),
            user_id=str(user.id),
            provider=provider.value,
            created=created,
            roles=assignment.roles,
        )

        refreshed = await self._identities.get_user(user.id)
        return LoginResult(
            success=True,
            provider=provider,
            user=refreshed or user,
            roles=assignment,
        )


def _check_fields(config_type: type, values: dict[str, Any]) -> None:
    allowed = {f.name for f in fields(config_type)} - _FIXED_FIELDS
    unknown = set(values) - allowed
    if unknown:
        raise ConfigurationError(f"Unknown SSO config fields: {', '.join(sorted(unknown))}")
