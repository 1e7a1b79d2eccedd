"""Unit tests for FederationService."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from idbridge.adapters.db import (
    InMemoryAuditLog,
    InMemoryFederationConfigStore,
    InMemoryIdentityStore,
)
from idbridge.core.audit import SSO_LOGIN
from idbridge.core.exceptions import GENERIC_AUTH_FAILURE, ConfigurationError, NotFoundError
from idbridge.core.identity import NormalizedIdentity
from idbridge.core.rbac import MappingSourceType, RoleMappingService
from idbridge.core.sso import (
    AuthorizationRequest,
    OIDCAuthResult,
    OIDCConfig,
    OIDCTokens,
    SAMLAuthResult,
    SAMLConfig,
    SSOProviderType,
)
from idbridge.services import FederationService
from tests.fixtures.oidc import OIDC_ISSUER, OIDC_REDIRECT_URI

JANE = NormalizedIdentity(
    external_id="jane",
    email="jane@example.com",
    display_name="Jane Doe",
    groups=["Admins"],
)


@pytest.fixture
def saml() -> MagicMock:
    """Return a SAML handler double."""
    handler = MagicMock()
    handler.parse_response.return_value = SAMLAuthResult(
        success=True, identity=JANE, session_index="_s1"
    )
    handler.build_redirect_url.return_value = "https://idp.example.com/sso?SAMLRequest=x"
    return handler


@pytest.fixture
def oidc() -> MagicMock:
    """Return an OIDC handler double."""
    handler = MagicMock()
    handler.build_authorization_url = AsyncMock(
        return_value=AuthorizationRequest(url=f"{OIDC_ISSUER}/authorize?state=s1", state="s1")
    )
    handler.handle_callback = AsyncMock(
        return_value=OIDCAuthResult(
            success=True,
            identity=JANE,
            tokens=OIDCTokens(
                access_token="at", id_token="it", token_type="Bearer", expires_in=3600
            ),
            redirect_path="/dashboard",
        )
    )
    handler.build_logout_url.return_value = None
    return handler


@pytest.fixture
def service(
    federation_store: InMemoryFederationConfigStore,
    identity_store: InMemoryIdentityStore,
    role_service: RoleMappingService,
    audit_log: InMemoryAuditLog,
    saml: MagicMock,
    oidc: MagicMock,
) -> FederationService:
    """Return a federation service over the in-memory stores."""
    return FederationService(
        configs=federation_store,
        identities=identity_store,
        roles=role_service,
        audit=audit_log,
        saml=saml,
        oidc=oidc,
    )


async def create_saml(service: FederationService, tenant_id: uuid.UUID) -> SAMLConfig:
    """Create a SAML configuration for the tenant."""
    return await service.create_saml_config(
        tenant_id,
        idp_entity_id="https://idp.example.com",
        idp_sso_url="https://idp.example.com/sso",
        idp_certificate="CERT",
        sp_entity_id="https://app.example.com",
        sp_acs_url="https://app.example.com/acs",
    )


async def create_oidc(service: FederationService, tenant_id: uuid.UUID) -> OIDCConfig:
    """Create an OIDC configuration for the tenant."""
    return await service.create_oidc_config(
        tenant_id,
        issuer=OIDC_ISSUER,
        client_id="client-1",
        client_secret="secret",
        redirect_uri=OIDC_REDIRECT_URI,
    )


class TestConfigManagement:
    """Tests for SSO configuration CRUD."""

    async def test_create_saml_with_mapping_dict(
        self, service: FederationService, tenant_id: uuid.UUID
    ) -> None:
        """Test that a dict attribute mapping is merged with defaults."""
        config = await service.create_saml_config(
            tenant_id,
            idp_entity_id="https://idp.example.com",
            idp_sso_url="https://idp.example.com/sso",
            idp_certificate="CERT",
            sp_entity_id="https://app.example.com",
            sp_acs_url="https://app.example.com/acs",
            attribute_mapping={"email": "mail"},
        )

        assert config.is_enabled is True
        assert config.attribute_mapping.email == "mail"
        assert config.attribute_mapping.first_name == "firstName"
        assert (await service.get_saml_config(tenant_id)).id == config.id

    async def test_one_config_per_type(
        self, service: FederationService, tenant_id: uuid.UUID
    ) -> None:
        """Test that a second configuration of the same type is rejected."""
        await create_saml(service, tenant_id)
        await create_oidc(service, tenant_id)

        with pytest.raises(ConfigurationError, match="already has a SAML"):
            await create_saml(service, tenant_id)

    async def test_unknown_field(self, service: FederationService, tenant_id: uuid.UUID) -> None:
        """Test that unknown option names are rejected."""
        with pytest.raises(ConfigurationError, match="colour"):
            await service.create_oidc_config(
                tenant_id,
                issuer=OIDC_ISSUER,
                client_id="c",
                client_secret="s",
                redirect_uri=OIDC_REDIRECT_URI,
                colour="blue",
            )

    async def test_update_config(self, service: FederationService, tenant_id: uuid.UUID) -> None:
        """Test a partial update of an OIDC configuration."""
        config = await create_oidc(service, tenant_id)

        updated = await service.update_config(
            config.id, is_enabled=False, claim_mapping={"groups": "teams"}
        )

        assert isinstance(updated, OIDCConfig)
        assert updated.is_enabled is False
        assert updated.claim_mapping.groups == "teams"
        assert updated.claim_mapping.first_name == "given_name"
        assert updated.client_id == "client-1"

    async def test_update_fixed_field(
        self, service: FederationService, tenant_id: uuid.UUID
    ) -> None:
        """Test that the owning tenant cannot be changed."""
        config = await create_oidc(service, tenant_id)

        with pytest.raises(ConfigurationError, match="tenant_id"):
            await service.update_config(config.id, tenant_id=uuid.uuid4())

    async def test_missing_config(self, service: FederationService, tenant_id: uuid.UUID) -> None:
        """Test lookups and deletion of absent configurations."""
        with pytest.raises(NotFoundError):
            await service.get_oidc_config(tenant_id)
        with pytest.raises(NotFoundError):
            await service.update_config(uuid.uuid4(), is_enabled=False)
        with pytest.raises(NotFoundError):
            await service.delete_config(uuid.uuid4())

    async def test_delete_config(self, service: FederationService, tenant_id: uuid.UUID) -> None:
        """Test that a deleted configuration is gone."""
        config = await create_saml(service, tenant_id)

        await service.delete_config(config.id)

        with pytest.raises(NotFoundError):
            await service.get_saml_config(tenant_id)


class TestSAMLLogin:
    """Tests for the SAML login flow."""

    async def test_start_login(
        self, service: FederationService, saml: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that the handler builds the redirect for the tenant's config."""
        config = await create_saml(service, tenant_id)

        url = await service.start_saml_login(tenant_id, relay_state="/home")

        assert url.startswith("https://idp.example.com/sso")
        saml.build_redirect_url.assert_called_once_with(config, "/home")

    async def test_complete_login_provisions_user(
        self,
        service: FederationService,
        role_service: RoleMappingService,
        identity_store: InMemoryIdentityStore,
        audit_log: InMemoryAuditLog,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test just-in-time provisioning with mapped roles."""
        await create_saml(service, tenant_id)
        await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "admins", "ADMIN"
        )

        result = await service.complete_saml_login(tenant_id, "PHNhbWw+")

        assert result.success is True
        assert result.provider == SSOProviderType.SAML
        assert result.session_index == "_s1"
        assert result.roles is not None and result.roles.roles == ["ADMIN"]
        assert result.user is not None
        assert result.user.assigned_roles == ["ADMIN"]
        assert result.user.source == "saml"
        stored = await identity_store.get_user_by_external_id(tenant_id, "jane")
        assert stored is not None and stored.display_name == "Jane Doe"
        assert SSO_LOGIN in [entry.action for entry in audit_log.entries]

    async def test_repeat_login_updates_user(
        self,
        service: FederationService,
        saml: MagicMock,
        identity_store: InMemoryIdentityStore,
        audit_log: InMemoryAuditLog,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a second login refreshes the existing record."""
        await create_saml(service, tenant_id)
        first = await service.complete_saml_login(tenant_id, "PHNhbWw+")
        saml.parse_response.return_value = SAMLAuthResult(
            success=True,
            identity=NormalizedIdentity(
                external_id="jane", email="jane@example.com", display_name="Jane Smith"
            ),
        )

        second = await service.complete_saml_login(tenant_id, "PHNhbWw+")

        assert first.user is not None and second.user is not None
        assert second.user.id == first.user.id
        assert second.user.display_name == "Jane Smith"
        assert second.roles is not None and second.roles.roles == ["USER"]
        assert len(await identity_store.list_users(tenant_id)) == 1
        logins = [e for e in audit_log.entries if e.action == SSO_LOGIN]
        assert [e.metadata["created"] for e in logins if e.metadata] == [True, False]

    async def test_failed_validation(
        self,
        service: FederationService,
        saml: MagicMock,
        identity_store: InMemoryIdentityStore,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a rejected response yields the generic failure."""
        await create_saml(service, tenant_id)
        saml.parse_response.return_value = SAMLAuthResult(
            success=False, error=GENERIC_AUTH_FAILURE
        )

        result = await service.complete_saml_login(tenant_id, "PHNhbWw+")

        assert result.success is False
        assert result.error == GENERIC_AUTH_FAILURE
        assert await identity_store.list_users(tenant_id) == []

    async def test_deactivated_user_blocked(
        self,
        service: FederationService,
        identity_store: InMemoryIdentityStore,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that a deprovisioned identity cannot log in."""
        await create_saml(service, tenant_id)
        user = await identity_store.create_user(tenant_id, JANE, "scim")
        await identity_store.deactivate_user(user.id)

        result = await service.complete_saml_login(tenant_id, "PHNhbWw+")

        assert result.success is False
        assert result.error == GENERIC_AUTH_FAILURE

    async def test_metadata_and_logout(
        self, service: FederationService, saml: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that metadata and logout are delegated to the handler."""
        config = await create_saml(service, tenant_id)
        saml.generate_sp_metadata.return_value = "<EntityDescriptor/>"
        saml.build_logout_request.return_value = "https://idp.example.com/slo?SAMLRequest=y"

        assert await service.saml_metadata(tenant_id) == "<EntityDescriptor/>"
        await service.saml_logout_url(tenant_id, "jane@example.com", "_s1")

        saml.build_logout_request.assert_called_once_with(config, "jane@example.com", "_s1", None)

    async def test_unconfigured_tenant(self, service: FederationService) -> None:
        """Test that a tenant without SAML cannot start a login."""
        with pytest.raises(NotFoundError):
            await service.start_saml_login(uuid.uuid4())


class TestOIDCLogin:
    """Tests for the OIDC login flow."""

    async def test_start_login(
        self, service: FederationService, oidc: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that the authorization request comes from the handler."""
        config = await create_oidc(service, tenant_id)

        request = await service.start_oidc_login(tenant_id, "/dashboard")

        assert request.state == "s1"
        oidc.build_authorization_url.assert_awaited_once_with(config, "/dashboard")

    async def test_complete_login(
        self, service: FederationService, oidc: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that tokens and the redirect path are passed through."""
        await create_oidc(service, tenant_id)

        result = await service.complete_oidc_login(tenant_id, "code-1", "s1")

        assert result.success is True
        assert result.provider == SSOProviderType.OIDC
        assert result.tokens is not None and result.tokens.access_token == "at"
        assert result.redirect_path == "/dashboard"
        assert result.user is not None and result.user.source == "oidc"
        oidc.handle_callback.assert_awaited_once()

    async def test_failed_callback(
        self, service: FederationService, oidc: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that a failed callback does not provision anyone."""
        await create_oidc(service, tenant_id)
        oidc.handle_callback.return_value = OIDCAuthResult(
            success=False, error=GENERIC_AUTH_FAILURE
        )

        result = await service.complete_oidc_login(tenant_id, "code-1", "bad")

        assert result.success is False
        assert result.user is None
        assert result.error == GENERIC_AUTH_FAILURE

    async def test_logout_url(
        self, service: FederationService, oidc: MagicMock, tenant_id: uuid.UUID
    ) -> None:
        """Test that a provider without end_session returns no URL."""
        await create_oidc(service, tenant_id)

        assert await service.oidc_logout_url(tenant_id, "it") is None
