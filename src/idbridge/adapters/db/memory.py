"""In-memory repositories.

Used by tests and single-process setups. Records are deep-copied on the
way in and out so callers cannot mutate stored state by accident.
"""

from __future__ import annotations

import copy
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from idbridge.core.audit import AuditLogCreate, AuditLogEntry
from idbridge.core.exceptions import NotFoundError
from idbridge.core.identity import GroupRecord, IdentityRecord
from idbridge.core.sso.types import FederationConfig, OIDCConfig, SAMLConfig

if TYPE_CHECKING:
    from idbridge.core.identity import NormalizedIdentity
    from idbridge.core.rbac.types import RoleMapping
    from idbridge.core.sync.types import DirectorySyncConfig, SyncJob, SyncStatus


class InMemoryFederationConfigStore:
    """FederationConfigStore keyed by config ID."""

    def __init__(self) -> None:
        self._configs: dict[UUID, FederationConfig] = {}

    async def get_saml_config(self, tenant_id: UUID) -> SAMLConfig | None:
        """Get the tenant's SAML configuration."""
        for config in self._configs.values():
            if isinstance(config, SAMLConfig) and config.tenant_id == tenant_id:
                return copy.deepcopy(config)
        return None

    async def get_oidc_config(self, tenant_id: UUID) -> OIDCConfig | None:
        """Get the tenant's OIDC configuration."""
        for config in self._configs.values():
            if isinstance(config, OIDCConfig) and config.tenant_id == tenant_id:
                return copy.deepcopy(config)
        return None

    async def get_config(self, config_id: UUID) -> FederationConfig | None:
        """Get a configuration of either type by ID."""
        config = self._configs.get(config_id)
        return copy.deepcopy(config) if config else None

    async def save_config(self, config: FederationConfig) -> FederationConfig:
        """Insert or replace a configuration."""
        now = datetime.now(UTC)
        stored = copy.deepcopy(config)
        stored.created_at = stored.created_at or now
        stored.updated_at = now
        self._configs[stored.id] = stored
        return copy.deepcopy(stored)

    async def delete_config(self, config_id: UUID) -> bool:
        """Delete a configuration."""
        return self._configs.pop(config_id, None) is not None


class InMemoryRoleMappingStore:
    """RoleMappingStore preserving insertion order."""

    def __init__(self) -> None:
        self._mappings: dict[UUID, RoleMapping] = {}

    async def list_mappings(self, tenant_id: UUID) -> list[RoleMapping]:
        """List a tenant's mappings in insertion order."""
        return [
            copy.deepcopy(mapping)
            for mapping in self._mappings.values()
            if mapping.tenant_id == tenant_id
        ]

    async def get_mapping(self, mapping_id: UUID) -> RoleMapping | None:
        """Get a mapping by ID."""
        mapping = self._mappings.get(mapping_id)
        return copy.deepcopy(mapping) if mapping else None

    async def save_mapping(self, mapping: RoleMapping) -> RoleMapping:
        """Insert or replace a mapping. Replacing keeps the original position."""
        self._mappings[mapping.id] = copy.deepcopy(mapping)
        return copy.deepcopy(mapping)

    async def delete_mapping(self, mapping_id: UUID) -> bool:
        """Delete a mapping."""
        return self._mappings.pop(mapping_id, None) is not None


class InMemoryIdentityStore:
    """IdentityStore for users, groups and memberships."""

    def __init__(self) -> None:
        self._users: dict[UUID, IdentityRecord] = {}
        self._groups: dict[UUID, GroupRecord] = {}
        self._memberships: dict[tuple[UUID, str], set[tuple[str, str]]] = {}

    # Users

    async def list_users(self, tenant_id: UUID, source: str | None = None) -> list[IdentityRecord]:
        """List identity records, optionally limited to one source."""
        return [
            copy.deepcopy(user)
            for user in self._users.values()
            if user.tenant_id == tenant_id and (source is None or user.source == source)
        ]

    async def get_user(self, user_id: UUID) -> IdentityRecord | None:
        """Get an identity record by ID."""
        user = self._users.get(user_id)
        return copy.deepcopy(user) if user else None

    async def get_user_by_external_id(
        self, tenant_id: UUID, external_id: str
    ) -> IdentityRecord | None:
        """Get an identity record by external ID."""
        user = self._find_user(tenant_id, external_id)
        return copy.deepcopy(user) if user else None

    async def create_user(
        self, tenant_id: UUID, identity: NormalizedIdentity, source: str, is_active: bool = True
    ) -> IdentityRecord:
        """Create an identity record."""
        now = datetime.now(UTC)
        user = IdentityRecord(
            id=uuid4(),
            tenant_id=tenant_id,
            external_id=identity.external_id,
            email=identity.email,
            display_name=identity.display_name,
            first_name=identity.first_name,
            last_name=identity.last_name,
            is_active=is_active,
            source=source,
            groups=list(identity.groups),
            roles=list(identity.roles),
            attributes=copy.deepcopy(identity.attributes),
            created_at=now,
            updated_at=now,
        )
        self._users[user.id] = user
        return copy.deepcopy(user)

    async def update_user(
        self, user_id: UUID, identity: NormalizedIdentity, is_active: bool = True
    ) -> IdentityRecord:
        """Overwrite profile fields and claims of an identity record."""
        user = self._require_user(user_id)
        user.email = identity.email
        user.display_name = identity.display_name
        user.first_name = identity.first_name
        user.last_name = identity.last_name
        user.is_active = is_active
        user.groups = list(identity.groups)
        user.roles = list(identity.roles)
        user.attributes = copy.deepcopy(identity.attributes)
        user.updated_at = datetime.now(UTC)
        return copy.deepcopy(user)

    async def deactivate_user(self, user_id: UUID) -> None:
        """Mark an identity record inactive."""
        user = self._users.get(user_id)
        if user is not None:
            user.is_active = False
            user.updated_at = datetime.now(UTC)

    async def set_user_roles(
        self,
        user_id: UUID,
        roles: list[str],
        permissions: list[str],
        mappings_applied: list[UUID],
    ) -> None:
        """Persist resolved roles on an identity record."""
        user = self._require_user(user_id)
        user.assigned_roles = list(roles)
        user.permissions = list(permissions)
        user.mappings_applied = list(mappings_applied)
        user.updated_at = datetime.now(UTC)

    # Groups

    async def list_groups(self, tenant_id: UUID, source: str) -> list[GroupRecord]:
        """List groups of one source, active and inactive."""
        return [
            copy.deepcopy(group)
            for group in self._groups.values()
            if group.tenant_id == tenant_id and group.source == source
        ]

    async def create_group(
        self, tenant_id: UUID, external_id: str, name: str, source: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Create a group."""
        now = datetime.now(UTC)
        group = GroupRecord(
            id=uuid4(),
            tenant_id=tenant_id,
            external_id=external_id,
            name=name,
            is_active=True,
            source=source,
            attributes=copy.deepcopy(attributes),
            created_at=now,
            updated_at=now,
        )
        self._groups[group.id] = group
        return copy.deepcopy(group)

    async def update_group(
        self, group_id: UUID, name: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Rename a group, reactivating it if it was deleted."""
        group = self._groups.get(group_id)
        if group is None:
            raise NotFoundError(f"Group not found: {group_id}")
        group.name = name
        group.attributes = copy.deepcopy(attributes)
        group.is_active = True
        group.updated_at = datetime.now(UTC)
        return copy.deepcopy(group)

    async def delete_group(self, group_id: UUID) -> None:
        """Soft-delete a group and drop its memberships."""
        group = self._groups.get(group_id)
        if group is None:
            return
        group.is_active = False
        group.updated_at = datetime.now(UTC)
        pairs = self._memberships.get((group.tenant_id, group.source), set())
        for pair in [p for p in pairs if p[1] == group.external_id]:
            pairs.discard(pair)

    # Memberships

    async def list_memberships(self, tenant_id: UUID, source: str) -> set[tuple[str, str]]:
        """List memberships as (user external ID, group external ID) pairs."""
        return set(self._memberships.get((tenant_id, source), set()))

    async def add_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> bool:
        """Add a membership.

        Raises:
            NotFoundError: If the user or the active group does not exist.
        """
        if self._find_user(tenant_id, user_external_id) is None:
            raise NotFoundError(f"User not found: {user_external_id}")
        group_exists = any(
            group.tenant_id == tenant_id
            and group.source == source
            and group.external_id == group_external_id
            and group.is_active
            for group in self._groups.values()
        )
        if not group_exists:
            raise NotFoundError(f"Group not found: {group_external_id}")

        pairs = self._memberships.setdefault((tenant_id, source), set())
        pair = (user_external_id, group_external_id)
        if pair in pairs:
            return False
        pairs.add(pair)
        return True

    async def remove_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> None:
        """Remove a membership if present."""
        self._memberships.get((tenant_id, source), set()).discard(
            (user_external_id, group_external_id)
        )

    def _find_user(self, tenant_id: UUID, external_id: str) -> IdentityRecord | None:
        for user in self._users.values():
            if user.tenant_id == tenant_id and user.external_id == external_id:
                return user
        return None

    def _require_user(self, user_id: UUID) -> IdentityRecord:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user


class InMemorySyncStore:
    """SyncConfigStore and SyncJobStore in one object."""

    def __init__(self) -> None:
        self._configs: dict[UUID, DirectorySyncConfig] = {}
        self._deleted: set[UUID] = set()
        self._jobs: dict[UUID, SyncJob] = {}

    # Configurations

    async def get_sync_config(self, config_id: UUID) -> DirectorySyncConfig | None:
        """Get a sync configuration by ID."""
        if config_id in self._deleted:
            return None
        config = self._configs.get(config_id)
        return copy.deepcopy(config) if config else None

    async def list_sync_configs(self, tenant_id: UUID) -> list[DirectorySyncConfig]:
        """List a tenant's sync configurations."""
        return [
            copy.deepcopy(config)
            for config in self._configs.values()
            if config.tenant_id == tenant_id and config.id not in self._deleted
        ]

    async def list_scheduled_configs(self) -> list[DirectorySyncConfig]:
        """List enabled, scheduled configurations across tenants."""
        return [
            copy.deepcopy(config)
            for config in self._configs.values()
            if config.is_enabled and config.schedule_enabled and config.id not in self._deleted
        ]

    async def save_sync_config(self, config: DirectorySyncConfig) -> DirectorySyncConfig:
        """Insert or replace a sync configuration, keeping last-sync fields."""
        stored = copy.deepcopy(config)
        existing = self._configs.get(config.id)
        if existing is not None:
            stored.last_sync_at = existing.last_sync_at
            stored.last_sync_status = existing.last_sync_status
            stored.last_sync_error = existing.last_sync_error
        self._configs[stored.id] = stored
        return copy.deepcopy(stored)

    async def delete_sync_config(self, config_id: UUID) -> bool:
        """Soft-delete a sync configuration. Its jobs are kept."""
        if config_id not in self._configs or config_id in self._deleted:
            return False
        self._configs[config_id].is_enabled = False
        self._deleted.add(config_id)
        return True

    async def record_sync_result(
        self,
        config_id: UUID,
        last_sync_at: datetime | None,
        status: SyncStatus,
        error: str | None,
    ) -> None:
        """Store the outcome of a job. A None cursor keeps the current one."""
        config = self._configs.get(config_id)
        if config is None:
            return
        if last_sync_at is not None:
            config.last_sync_at = last_sync_at
        config.last_sync_status = status
        config.last_sync_error = error
        config.updated_at = datetime.now(UTC)

    # Jobs

    async def create_job(self, job: SyncJob) -> SyncJob:
        """Insert a job record."""
        stored = copy.deepcopy(job)
        stored.created_at = stored.created_at or datetime.now(UTC)
        self._jobs[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_job(self, job: SyncJob) -> SyncJob:
        """Replace a job record."""
        if job.id not in self._jobs:
            raise NotFoundError(f"Sync job not found: {job.id}")
        self._jobs[job.id] = copy.deepcopy(job)
        return copy.deepcopy(job)

    async def get_job(self, job_id: UUID) -> SyncJob | None:
        """Get a job by ID."""
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job else None

    async def list_jobs(self, config_id: UUID, limit: int = 20) -> list[SyncJob]:
        """List jobs of a config, newest first."""
        jobs = [job for job in self._jobs.values() if job.config_id == config_id]
        # Insertion order breaks ties between jobs created in the same instant
        ordered = list(reversed(jobs))
        oldest = datetime.min.replace(tzinfo=UTC)
        ordered.sort(key=lambda job: job.created_at or oldest, reverse=True)
        return [copy.deepcopy(job) for job in ordered[:limit]]


class InMemoryAuditLog:
    """AuditLog keeping entries in a list."""

    def __init__(self) -> None:
        self.entries: list[AuditLogEntry] = []

    async def record(self, entry: AuditLogCreate) -> UUID:
        """Record an entry."""
        stored = AuditLogEntry(
            id=uuid4(),
            timestamp=datetime.now(UTC),
            **entry.model_dump(),
        )
        self.entries.append(stored)
        return stored.id

    async def list(
        self,
        tenant_id: UUID,
        limit: int = 50,
        offset: int = 0,
        action: str | None = None,
        resource_id: UUID | None = None,
    ) -> tuple[list[AuditLogEntry], int]:
        """List entries newest first, with the total count before paging."""
        matching = [
            entry
            for entry in reversed(self.entries)
            if entry.tenant_id == tenant_id
            and (action is None or entry.action == action)
            and (resource_id is None or entry.resource_id == resource_id)
        ]
        return matching[offset : offset + limit], len(matching)
