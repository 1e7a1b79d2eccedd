"""Role mapping management and assignment."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from idbridge.core.audit import ROLE_ASSIGNMENT, AuditLogCreate
from idbridge.core.exceptions import InvalidMappingError, NotFoundError
from idbridge.core.identity.types import ClaimSet
from idbridge.core.rbac.presets import PRESETS
from idbridge.core.rbac.resolver import order_mappings, resolve_roles
from idbridge.core.rbac.types import (
    MappingSourceType,
    RoleMapping,
    RoleResolution,
    RoleSyncSummary,
    UserRoleAssignment,
)

if TYPE_CHECKING:
    from idbridge.core.interfaces import AuditLog, IdentityStore, RoleMappingStore

logger = structlog.get_logger()

_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "source_type",
        "source_value",
        "source_pattern",
        "target_role",
        "target_permissions",
        "priority",
        "is_enabled",
        "description",
    }
)


def validate_mapping(mapping: RoleMapping) -> None:
    """Check that a mapping can be evaluated.

    Raises:
        InvalidMappingError: If a field is empty, an attribute mapping has no
            pattern, or the pattern does not compile.
    """
    if not isinstance(mapping.source_type, MappingSourceType):
        raise InvalidMappingError(f"Unknown source type: {mapping.source_type!r}")
    if not mapping.source_value:
        raise InvalidMappingError("source_value is required")
    if not mapping.target_role:
        raise InvalidMappingError("target_role is required")
    if mapping.source_type == MappingSourceType.ATTRIBUTE and not mapping.source_pattern:
        raise InvalidMappingError("source_pattern is required for attribute mappings")
    if mapping.source_pattern:
        try:
            re.compile(mapping.source_pattern, re.IGNORECASE)
        except re.error as e:
            raise InvalidMappingError(
                f"Invalid source pattern {mapping.source_pattern!r}: {e}"
            ) from e


class RoleMappingService:
    """Manages role mappings and applies them to identity records."""

    def __init__(
        self,
        mappings: RoleMappingStore,
        identities: IdentityStore,
        audit: AuditLog,
        default_role: str = "USER",
    ) -> None:
        """Initialize the service.

        Args:
            mappings: Role mapping storage.
            identities: Identity record storage.
            audit: Audit trail for role assignments.
            default_role: Role applied when no mapping matches.
        """
        self._mappings = mappings
        self._identities = identities
        self._audit = audit
        self._default_role = default_role

    # Mapping CRUD

    async def create_mapping(
        self,
        tenant_id: UUID,
        name: str,
        source_type: MappingSourceType,
        source_value: str,
        target_role: str,
        priority: int = 100,
        source_pattern: str | None = None,
        target_permissions: list[str] | None = None,
        description: str | None = None,
        is_enabled: bool = True,
    ) -> RoleMapping:
        """Create a role mapping.

        Raises:
            InvalidMappingError: If the mapping cannot be evaluated.
        """
        now = datetime.now(UTC)
        mapping = RoleMapping(
            id=uuid4(),
            tenant_id=tenant_id,
            name=name,
            source_type=source_type,
            source_value=source_value,
            target_role=target_role,
            priority=priority,
            is_enabled=is_enabled,
            source_pattern=source_pattern or None,
            target_permissions=list(target_permissions or []),
            description=description,
            created_at=now,
            updated_at=now,
        )
        validate_mapping(mapping)
        saved = await self._mappings.save_mapping(mapping)
        logger.info(
            "role_mapping_created",
            tenant_id=str(tenant_id),
            mapping_id=str(saved.id),
            target_role=target_role,
        )
        return saved

    async def get_mapping(self, mapping_id: UUID) -> RoleMapping:
        """Get a mapping.

        Raises:
            NotFoundError: If the mapping does not exist.
        """
        mapping = await self._mappings.get_mapping(mapping_id)
        if mapping is None:
            raise NotFoundError(f"Role mapping not found: {mapping_id}")
        return mapping

    async def list_mappings(self, tenant_id: UUID) -> list[RoleMapping]:
        """List mappings in evaluation order (disabled ones last)."""
        stored = await self._mappings.list_mappings(tenant_id)
        enabled = order_mappings(stored)
        disabled = [m for m in stored if not m.is_enabled]
        return enabled + sorted(disabled, key=lambda m: m.priority)

    async def update_mapping(self, mapping_id: UUID, **changes: Any) -> RoleMapping:
        """Update fields of a mapping.

        Raises:
            NotFoundError: If the mapping does not exist.
            InvalidMappingError: If a field is unknown or the result is invalid.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise InvalidMappingError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.get_mapping(mapping_id)
        updated = replace(current, **changes, updated_at=datetime.now(UTC))
        validate_mapping(updated)
        return await self._mappings.save_mapping(updated)

    async def delete_mapping(self, mapping_id: UUID) -> None:
        """Delete a mapping.

        Raises:
            NotFoundError: If the mapping does not exist.
        """
        if not await self._mappings.delete_mapping(mapping_id):
            raise NotFoundError(f"Role mapping not found: {mapping_id}")
        logger.info("role_mapping_deleted", mapping_id=str(mapping_id))

    async def create_preset_mappings(self, tenant_id: UUID, preset: str) -> list[RoleMapping]:
        """Materialize a provider preset as regular mappings.

        Raises:
            InvalidMappingError: If the preset does not exist.
        """
        templates = PRESETS.get(preset)
        if templates is None:
            raise InvalidMappingError(
                f"Unknown preset: {preset}. Available: {', '.join(sorted(PRESETS))}"
            )
        created = []
        for template in templates:
            created.append(
                await self.create_mapping(
                    tenant_id=tenant_id,
                    name=template.name,
                    source_type=template.source_type,
                    source_value=template.source_value,
                    target_role=template.target_role,
                    priority=template.priority,
                    source_pattern=template.source_pattern,
                )
            )
        return created

    # Resolution

    async def resolve_roles(self, tenant_id: UUID, claims: ClaimSet) -> RoleResolution:
        """Resolve roles for a claim set against the tenant's mappings."""
        mappings = await self._mappings.list_mappings(tenant_id)
        return resolve_roles(mappings, claims, self._default_role)

    async def assign_roles_to_user(
        self,
        tenant_id: UUID,
        user_id: UUID,
        claims: ClaimSet,
    ) -> UserRoleAssignment:
        """Resolve and persist roles for a user, with an audit entry.

        Args:
            tenant_id: Tenant of the user.
            user_id: Identity record to update.
            claims: The user's current claims.

        Returns:
            The persisted assignment.

        Raises:
            NotFoundError: If the identity record does not exist.
        """
        resolution = await self.resolve_roles(tenant_id, claims)
        mapping_ids = [applied.mapping_id for applied in resolution.mappings_applied]

        await self._identities.set_user_roles(
            user_id, resolution.roles, resolution.permissions, mapping_ids
        )

        await self._audit.record(
            AuditLogCreate(
                tenant_id=tenant_id,
                action=ROLE_ASSIGNMENT,
                resource_type="user",
                resource_id=user_id,
                changes={
                    "roles": resolution.roles,
                    "permissions": resolution.permissions,
                },
                metadata={
                    "sso_groups": claims.groups,
                    "sso_roles": claims.roles,
                    "used_fallback": resolution.used_fallback,
                    "mappings_applied": [
                        {
                            "mapping_id": str(applied.mapping_id),
                            "mapping_name": applied.mapping_name,
                            "matched_value": applied.matched_value,
                            "target_role": applied.target_role,
                        }
                        for applied in resolution.mappings_applied
                    ],
                },
            )
        )

        logger.info(
            "roles_assigned",
            tenant_id=str(tenant_id),
            user_id=str(user_id),
            roles=resolution.roles,
            mappings_applied=len(mapping_ids),
        )

        return UserRoleAssignment(
            user_id=user_id,
            roles=resolution.roles,
            permissions=resolution.permissions,
            mappings_applied=mapping_ids,
            source="sso",
        )

    async def get_user_roles(self, user_id: UUID) -> UserRoleAssignment:
        """Get the roles currently stored on a user.

        Raises:
            NotFoundError: If the identity record does not exist.
        """
        user = await self._identities.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return UserRoleAssignment(
            user_id=user.id,
            roles=list(user.assigned_roles),
            permissions=list(user.permissions),
            mappings_applied=list(user.mappings_applied),
            source="sso" if user.mappings_applied else "manual",
        )

    async def sync_user_roles(self, tenant_id: UUID) -> RoleSyncSummary:
        """Re-resolve roles for every active user of a tenant.

        A failure for one user is logged and counted; the rest continue.
        """
        summary = RoleSyncSummary()
        for user in await self._identities.list_users(tenant_id):
            if not user.is_active:
                continue
            summary.processed += 1
            try:
                await self.assign_roles_to_user(tenant_id, user.id, user.claims())
                summary.updated += 1
            except Exception as e:
                summary.failed += 1
                logger.warning(
                    "role_sync_user_failed",
                    tenant_id=str(tenant_id),
                    user_id=str(user.id),
                    error=str(e),
                )

        logger.info(
            "role_sync_completed",
            tenant_id=str(tenant_id),
            processed=summary.processed,
            updated=summary.updated,
            failed=summary.failed,
        )
        return summary
