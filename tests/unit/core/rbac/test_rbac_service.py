"""Unit tests for RoleMappingService."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from idbridge.adapters.db import (
    InMemoryAuditLog,
    InMemoryIdentityStore,
    InMemoryRoleMappingStore,
)
from idbridge.core.audit import ROLE_ASSIGNMENT
from idbridge.core.exceptions import InvalidMappingError, NotFoundError
from idbridge.core.identity import ClaimSet, NormalizedIdentity
from idbridge.core.rbac import MappingSourceType, RoleMappingService


class TestMappingCrud:
    """Tests for mapping management."""

    async def test_create_and_get(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test creating a mapping and reading it back."""
        created = await role_service.create_mapping(
            tenant_id=tenant_id,
            name="Admins",
            source_type=MappingSourceType.GROUP,
            source_value="Admins",
            target_role="ADMIN",
            priority=1,
        )

        fetched = await role_service.get_mapping(created.id)

        assert fetched.name == "Admins"
        assert fetched.target_role == "ADMIN"
        assert fetched.is_enabled is True
        assert fetched.source_pattern is None

    async def test_create_rejects_invalid_pattern(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that a pattern that does not compile is rejected."""
        with pytest.raises(InvalidMappingError, match="Invalid source pattern"):
            await role_service.create_mapping(
                tenant_id=tenant_id,
                name="Broken",
                source_type=MappingSourceType.GROUP,
                source_value="x",
                target_role="ADMIN",
                source_pattern="([",
            )

    async def test_create_requires_target_role(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that an empty target role is rejected."""
        with pytest.raises(InvalidMappingError):
            await role_service.create_mapping(
                tenant_id=tenant_id,
                name="Empty",
                source_type=MappingSourceType.GROUP,
                source_value="Admins",
                target_role="",
            )

    async def test_attribute_mapping_requires_pattern(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that an attribute mapping without a pattern is rejected."""
        with pytest.raises(InvalidMappingError, match="source_pattern"):
            await role_service.create_mapping(
                tenant_id=tenant_id,
                name="Cost center",
                source_type=MappingSourceType.ATTRIBUTE,
                source_value="costCenter",
                target_role="ANALYST",
            )

        mapping = await role_service.create_mapping(
            tenant_id=tenant_id,
            name="Cost center",
            source_type=MappingSourceType.ATTRIBUTE,
            source_value="costCenter",
            target_role="ANALYST",
            source_pattern=r"^CC-",
        )
        with pytest.raises(InvalidMappingError, match="source_pattern"):
            await role_service.update_mapping(mapping.id, source_pattern=None)

    async def test_resolve_stringifies_scalar_attributes(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that raw numeric attributes resolve without error."""
        await role_service.create_mapping(
            tenant_id=tenant_id,
            name="Level 7",
            source_type=MappingSourceType.ATTRIBUTE,
            source_value="level",
            target_role="ADMIN",
            source_pattern=r"^7$",
        )

        claims = ClaimSet(attributes={"level": 7})  # type: ignore[dict-item]
        resolution = await role_service.resolve_roles(tenant_id, claims)

        assert resolution.roles == ["ADMIN"]
        assert resolution.mappings_applied[0].matched_value == "7"

    async def test_list_puts_disabled_last(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that listing follows evaluation order."""
        disabled = await role_service.create_mapping(
            tenant_id, "Old", MappingSourceType.GROUP, "Old", "ADMIN", priority=1, is_enabled=False
        )
        low = await role_service.create_mapping(
            tenant_id, "Everyone", MappingSourceType.GROUP, "Everyone", "USER", priority=10
        )
        high = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN", priority=2
        )

        result = await role_service.list_mappings(tenant_id)

        assert [m.id for m in result] == [high.id, low.id, disabled.id]

    async def test_update_mapping(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test updating fields of a mapping."""
        mapping = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )

        updated = await role_service.update_mapping(mapping.id, priority=5, is_enabled=False)

        assert updated.priority == 5
        assert updated.is_enabled is False
        assert (await role_service.get_mapping(mapping.id)).priority == 5

    async def test_update_rejects_unknown_field(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that fixed or unknown fields cannot be updated."""
        mapping = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )

        with pytest.raises(InvalidMappingError, match="tenant_id"):
            await role_service.update_mapping(mapping.id, tenant_id=uuid.uuid4())

    async def test_update_rejects_invalid_pattern(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that an update is validated before it is stored."""
        mapping = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )

        with pytest.raises(InvalidMappingError):
            await role_service.update_mapping(mapping.id, source_pattern="*admins")

        assert (await role_service.get_mapping(mapping.id)).source_pattern is None

    async def test_missing_mapping(self, role_service: RoleMappingService) -> None:
        """Test that unknown IDs raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await role_service.get_mapping(uuid.uuid4())
        with pytest.raises(NotFoundError):
            await role_service.update_mapping(uuid.uuid4(), priority=1)
        with pytest.raises(NotFoundError):
            await role_service.delete_mapping(uuid.uuid4())

    async def test_delete_mapping(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test deleting a mapping."""
        mapping = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )

        await role_service.delete_mapping(mapping.id)

        assert await role_service.list_mappings(tenant_id) == []


class TestPresets:
    """Tests for preset materialization."""

    async def test_okta_preset(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that the Okta preset creates editable mappings."""
        created = await role_service.create_preset_mappings(tenant_id, "okta")

        assert [m.target_role for m in created] == ["SUPER_ADMIN", "ADMIN", "USER"]
        assert len(await role_service.list_mappings(tenant_id)) == 3

    async def test_google_preset_pattern(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that preset patterns are carried over."""
        await role_service.create_preset_mappings(tenant_id, "google")

        resolution = await role_service.resolve_roles(
            tenant_id, ClaimSet(groups=["users@example.com"])
        )

        assert resolution.roles == ["USER"]
        assert resolution.used_fallback is False

    async def test_unknown_preset(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that an unknown preset is rejected."""
        with pytest.raises(InvalidMappingError, match="Available"):
            await role_service.create_preset_mappings(tenant_id, "ping")


class TestAssignment:
    """Tests for role assignment on identity records."""

    @pytest.fixture
    async def user_id(
        self, identity_store: InMemoryIdentityStore, tenant_id: uuid.UUID
    ) -> uuid.UUID:
        """Return the ID of a stored SSO user in the Admins group."""
        user = await identity_store.create_user(
            tenant_id,
            NormalizedIdentity(
                external_id="u-1", email="jane@example.com", groups=["Admins", "Everyone"]
            ),
            source="saml",
        )
        return user.id

    async def test_assign_persists_and_audits(
        self,
        role_service: RoleMappingService,
        identity_store: InMemoryIdentityStore,
        audit_log: InMemoryAuditLog,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        """Test that assignment stores roles and writes an audit entry."""
        admins = await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN", priority=1
        )
        await role_service.create_mapping(
            tenant_id, "Everyone", MappingSourceType.GROUP, "Everyone", "USER", priority=10
        )

        assignment = await role_service.assign_roles_to_user(
            tenant_id, user_id, ClaimSet(groups=["Everyone", "Admins"])
        )

        assert assignment.roles == ["ADMIN", "USER"]
        assert assignment.source == "sso"
        stored = await identity_store.get_user(user_id)
        assert stored is not None
        assert stored.assigned_roles == ["ADMIN", "USER"]
        assert admins.id in stored.mappings_applied

        assert len(audit_log.entries) == 1
        entry = audit_log.entries[0]
        assert entry.action == ROLE_ASSIGNMENT
        assert entry.resource_id == user_id
        assert entry.metadata is not None
        assert entry.metadata["sso_groups"] == ["Everyone", "Admins"]
        assert entry.metadata["used_fallback"] is False

    async def test_assign_unknown_user(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID
    ) -> None:
        """Test that assigning to a missing user raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await role_service.assign_roles_to_user(tenant_id, uuid.uuid4(), ClaimSet())

    async def test_get_user_roles(
        self, role_service: RoleMappingService, tenant_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        """Test reading back the stored assignment."""
        await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )
        await role_service.assign_roles_to_user(tenant_id, user_id, ClaimSet(groups=["Admins"]))

        assignment = await role_service.get_user_roles(user_id)

        assert assignment.roles == ["ADMIN"]
        assert assignment.source == "sso"

    async def test_sync_user_roles_skips_inactive(
        self,
        role_service: RoleMappingService,
        identity_store: InMemoryIdentityStore,
        tenant_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> None:
        """Test that bulk re-resolution covers active users only."""
        inactive = await identity_store.create_user(
            tenant_id, NormalizedIdentity(external_id="u-2", email="b@example.com"), "scim"
        )
        await identity_store.deactivate_user(inactive.id)
        await role_service.create_mapping(
            tenant_id, "Admins", MappingSourceType.GROUP, "Admins", "ADMIN"
        )

        summary = await role_service.sync_user_roles(tenant_id)

        assert (summary.processed, summary.updated, summary.failed) == (1, 1, 0)
        stored = await identity_store.get_user(user_id)
        assert stored is not None
        assert stored.assigned_roles == ["ADMIN"]

    async def test_sync_user_roles_isolates_failures(
        self,
        mapping_store: InMemoryRoleMappingStore,
        audit_log: InMemoryAuditLog,
        tenant_id: uuid.UUID,
    ) -> None:
        """Test that one failing user does not stop the others."""
        identities = InMemoryIdentityStore()
        for external_id in ("a", "b"):
            await identities.create_user(
                tenant_id, NormalizedIdentity(external_id=external_id, email="x@y.z"), "scim"
            )
        identities.set_user_roles = AsyncMock(  # type: ignore[method-assign]
            side_effect=[RuntimeError("database unavailable"), None]
        )
        service = RoleMappingService(mapping_store, identities, audit_log)

        summary = await service.sync_user_roles(tenant_id)

        assert (summary.processed, summary.updated, summary.failed) == (2, 1, 1)
