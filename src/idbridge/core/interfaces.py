"""Protocol definitions for all external dependencies.

This module defines the interfaces (Protocols) that adapters must implement.
The core domain only depends on these protocols, never on concrete implementations.

Persistence comes in two flavours: asyncpg repositories for deployments
and in-memory stores for tests and single-process setups.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from lxml.etree import _Element

    from idbridge.core.audit import AuditLogCreate, AuditLogEntry
    from idbridge.core.identity import GroupRecord, IdentityRecord, NormalizedIdentity
    from idbridge.core.rbac.types import RoleMapping
    from idbridge.core.sso.types import (
        AuthorizationState,
        FederationConfig,
        OIDCConfig,
        SAMLConfig,
    )
    from idbridge.core.sync.types import (
        DirectoryGroup,
        DirectorySyncConfig,
        DirectoryUser,
        SyncJob,
        SyncStatus,
    )


@runtime_checkable
class FederationConfigStore(Protocol):
    """Storage for per-tenant SAML and OIDC configurations."""

    async def get_saml_config(self, tenant_id: UUID) -> SAMLConfig | None:
        """Get the tenant's SAML configuration, if any."""
        ...

    async def get_oidc_config(self, tenant_id: UUID) -> OIDCConfig | None:
        """Get the tenant's OIDC configuration, if any."""
        ...

    async def get_config(self, config_id: UUID) -> FederationConfig | None:
        """Get a configuration of either type by ID."""
        ...

    async def save_config(self, config: FederationConfig) -> FederationConfig:
        """Insert or replace a configuration.

        Returns:
            The stored configuration with timestamps set.
        """
        ...

    async def delete_config(self, config_id: UUID) -> bool:
        """Delete a configuration. Returns True if it existed."""
        ...


@runtime_checkable
class RoleMappingStore(Protocol):
    """Storage for role mapping rules."""

    async def list_mappings(self, tenant_id: UUID) -> list[RoleMapping]:
        """List a tenant's mappings in insertion order."""
        ...

    async def get_mapping(self, mapping_id: UUID) -> RoleMapping | None:
        """Get a mapping by ID."""
        ...

    async def save_mapping(self, mapping: RoleMapping) -> RoleMapping:
        """Insert or replace a mapping."""
        ...

    async def delete_mapping(self, mapping_id: UUID) -> bool:
        """Delete a mapping. Returns True if it existed."""
        ...


@runtime_checkable
class IdentityStore(Protocol):
    """Storage for identity records, groups and memberships.

    Users and groups are addressed by their external (directory) IDs
    within a tenant and a source label. Group deletion is soft: the
    group is marked inactive and its memberships are dropped.
    """

    async def list_users(self, tenant_id: UUID, source: str | None = None) -> list[IdentityRecord]:
        """List identity records, optionally limited to one source."""
        ...

    async def get_user(self, user_id: UUID) -> IdentityRecord | None:
        """Get an identity record by ID."""
        ...

    async def get_user_by_external_id(
        self, tenant_id: UUID, external_id: str
    ) -> IdentityRecord | None:
        """Get an identity record by external ID."""
        ...

    async def create_user(
        self, tenant_id: UUID, identity: NormalizedIdentity, source: str, is_active: bool = True
    ) -> IdentityRecord:
        """Create an identity record."""
        ...

    async def update_user(
        self, user_id: UUID, identity: NormalizedIdentity, is_active: bool = True
    ) -> IdentityRecord:
        """Overwrite profile fields and claims of an identity record.

        Raises:
            NotFoundError: If the record does not exist.
        """
        ...

    async def deactivate_user(self, user_id: UUID) -> None:
        """Mark an identity record inactive."""
        ...

    async def set_user_roles(
        self,
        user_id: UUID,
        roles: list[str],
        permissions: list[str],
        mappings_applied: list[UUID],
    ) -> None:
        """Persist resolved roles on an identity record.

        Raises:
            NotFoundError: If the record does not exist.
        """
        ...

    async def list_groups(self, tenant_id: UUID, source: str) -> list[GroupRecord]:
        """List groups of one source, active and inactive."""
        ...

    async def create_group(
        self, tenant_id: UUID, external_id: str, name: str, source: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Create a group."""
        ...

    async def update_group(
        self, group_id: UUID, name: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Rename a group, reactivating it if it was deleted."""
        ...

    async def delete_group(self, group_id: UUID) -> None:
        """Soft-delete a group and drop its memberships."""
        ...

    async def list_memberships(self, tenant_id: UUID, source: str) -> set[tuple[str, str]]:
        """List memberships as (user external ID, group external ID) pairs."""
        ...

    async def add_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> bool:
        """Add a membership. Returns False if it already existed.

        Raises:
            NotFoundError: If the user or group does not exist.
        """
        ...

    async def remove_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> None:
        """Remove a membership if present."""
        ...


@runtime_checkable
class SyncConfigStore(Protocol):
    """Storage for directory sync configurations."""

    async def get_sync_config(self, config_id: UUID) -> DirectorySyncConfig | None:
        """Get a sync configuration by ID."""
        ...

    async def list_sync_configs(self, tenant_id: UUID) -> list[DirectorySyncConfig]:
        """List a tenant's sync configurations."""
        ...

    async def list_scheduled_configs(self) -> list[DirectorySyncConfig]:
        """List enabled configurations with scheduling turned on, across tenants."""
        ...

    async def save_sync_config(self, config: DirectorySyncConfig) -> DirectorySyncConfig:
        """Insert or replace a sync configuration."""
        ...

        """Soft-delete a sync configuration, keeping its jobs. Returns True if it existed."""
        """Delete a sync configuration. Returns True if it existed."""
        ...

    async def record_sync_result(
        self,
        config_id: UUID,
        last_sync_at: datetime | None,
        status: SyncStatus,
        error: str | None,
    ) -> None:
        """Store the outcome of a job.

        Args:
            config_id: Sync configuration.
            last_sync_at: New incremental cursor. None keeps the current one.
            status: Final job status.
            error: First error message of the job, if any.
        """
        ...


@runtime_checkable
class SyncJobStore(Protocol):
    """Storage for sync job records."""

    async def create_job(self, job: SyncJob) -> SyncJob:
        """Insert a job record."""
        ...

    async def update_job(self, job: SyncJob) -> SyncJob:
        """Replace a job record."""
        ...

    async def get_job(self, job_id: UUID) -> SyncJob | None:
        """Get a job by ID."""
        ...

    async def list_jobs(self, config_id: UUID, limit: int = 20) -> list[SyncJob]:
        """List jobs of a config, newest first."""
        ...


@runtime_checkable
class AuditLog(Protocol):
    """Append-only audit trail."""

    async def record(self, entry: AuditLogCreate) -> UUID:
        """Record an entry and return its ID."""
        ...

    async def list(
        self,
        tenant_id: UUID,
        limit: int = 50,
        offset: int = 0,
        action: str | None = None,
        resource_id: UUID | None = None,
    ) -> tuple[list[AuditLogEntry], int]:
        """List entries newest first, with the total count before paging."""
        ...


@runtime_checkable
class StateStore(Protocol):
    """Single-use storage for OIDC authorization states."""

    async def put(self, state: AuthorizationState) -> None:
        """Store a freshly issued state."""
        ...

    async def pop(self, state: str) -> AuthorizationState | None:
        """Atomically read and remove a state."""
        ...

    async def sweep(self, now: datetime | None = None) -> int:
        """Remove expired states. Returns the number removed."""
        ...


@runtime_checkable
class JobLock(Protocol):
    """Per-config running-job guard.

    Only the owner that acquired the guard can release it, so a job
    finishing after it was cancelled cannot free a newer job's guard.
    """

    async def acquire(self, config_id: UUID, owner: UUID) -> bool:
        """Take the guard. Returns False if another owner holds it."""
        ...

    async def release(self, config_id: UUID, owner: UUID) -> bool:
        """Release the guard if ``owner`` holds it."""
        ...

    async def holder(self, config_id: UUID) -> UUID | None:
        """Get the current owner, if any."""
        ...


@runtime_checkable
class DirectorySource(Protocol):
    """Read access to an external directory."""

    async def fetch_users(self, filter_expr: str | None = None) -> list[DirectoryUser]:
        """Fetch all users matching an optional source-native filter.

        Raises:
            DirectorySourceError: If the directory cannot be read.
        """
        ...

    async def fetch_groups(self, filter_expr: str | None = None) -> list[DirectoryGroup]:
        """Fetch all groups, with member IDs, matching an optional filter.

        Raises:
            DirectorySourceError: If the directory cannot be read.
        """
        ...

    def modified_since_filter(self, since: datetime) -> str:
        """Build a source-native filter for records changed after ``since``."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


@runtime_checkable
class AssertionVerifier(Protocol):
    """XML signature verification for SAML responses."""

    def verify(self, document: _Element, certificate: str) -> _Element:
        """Verify the enveloped signature of a SAML response.

        Args:
            document: Parsed ``samlp:Response`` element.
            certificate: Trusted IdP signing certificate (PEM or bare base64).

        Returns:
            The element covered by the signature. Only this element may
            be trusted.

        Raises:
            SignatureVerificationError: If no valid signature is found.
        """
        ...


@runtime_checkable
class IdTokenVerifier(Protocol):
    """Signature and claim verification for OIDC ID tokens."""

    async def verify(
        self,
        id_token: str,
        *,
        issuer: str,
        client_id: str,
        client_secret: str | None,
        jwks_uri: str | None,
    ) -> dict[str, Any]:
        """Verify an ID token and return its claims.

        Raises:
            SignatureVerificationError: If the signature, issuer,
                audience or expiry is invalid.
        """
        ...


@runtime_checkable
class ConflictDetector(Protocol):
    """Optional source of outstanding sync conflicts."""

    async def count_outstanding(self, config: DirectorySyncConfig) -> int:
        """Count unresolved conflicts for a sync configuration."""
        ...
