"""asyncpg repositories for federation, identity and directory sync data.

Every repository takes a connection pool and acquires a connection per
call. JSON columns are written as text with a ``::jsonb`` cast and read
back with ``json.loads`` since no codec is registered on the pool. The
tables are defined in ``schema.sql`` next to this module.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

import asyncpg
import structlog

from idbridge.core.exceptions import NotFoundError
from idbridge.core.identity import AttributeMapping, GroupRecord, IdentityRecord
from idbridge.core.rbac.types import MappingSourceType, RoleMapping
from idbridge.core.sso.types import FederationConfig, OIDCConfig, SAMLConfig
from idbridge.core.sync.types import (
    DirectorySourceType,
    DirectorySyncConfig,
    SyncError,
    SyncJob,
    SyncStats,
    SyncStatus,
    SyncType,
)

if TYPE_CHECKING:
    from idbridge.core.identity import NormalizedIdentity

logger = structlog.get_logger()


async def create_pool(dsn: str, min_size: int = 2, max_size: int = 10) -> asyncpg.Pool:
    """Create the connection pool shared by the repositories."""
    pool = await asyncpg.create_pool(
        dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=60,
    )
    logger.info("app_database_connected", dsn=dsn.split("@")[-1])
    return pool


def _json(value: Any) -> str:
    return json.dumps(value, default=str)


def _load(value: Any) -> Any:
    if value is None or not isinstance(value, str | bytes):
        return value
    return json.loads(value)


def _ts(value: datetime | None) -> datetime | None:
    return value.replace(tzinfo=UTC) if value else None


class PostgresFederationConfigStore:
    """SAML and OIDC configurations, one table per provider type."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize the repository.

        Args:
            pool: Database connection pool.
        """
        self._pool = pool

    async def get_saml_config(self, tenant_id: UUID) -> SAMLConfig | None:
        """Get the tenant's SAML configuration."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM saml_configs WHERE tenant_id = $1", tenant_id)
        return self._row_to_saml_config(row) if row else None

    async def get_oidc_config(self, tenant_id: UUID) -> OIDCConfig | None:
        """Get the tenant's OIDC configuration."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM oidc_configs WHERE tenant_id = $1", tenant_id)
        return self._row_to_oidc_config(row) if row else None

    async def get_config(self, config_id: UUID) -> FederationConfig | None:
        """Get a configuration of either type by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM saml_configs WHERE id = $1", config_id)
            if row:
                return self._row_to_saml_config(row)
            row = await conn.fetchrow("SELECT * FROM oidc_configs WHERE id = $1", config_id)
        return self._row_to_oidc_config(row) if row else None

    async def save_config(self, config: FederationConfig) -> FederationConfig:
        """Insert or replace a configuration."""
        if isinstance(config, SAMLConfig):
            return await self._save_saml(config)
        return await self._save_oidc(config)

    async def delete_config(self, config_id: UUID) -> bool:
        """Delete a configuration of either type."""
        async with self._pool.acquire() as conn:
            result: str = await conn.execute("DELETE FROM saml_configs WHERE id = $1", config_id)
            if result == "DELETE 1":
                return True
            result = await conn.execute("DELETE FROM oidc_configs WHERE id = $1", config_id)
        return result == "DELETE 1"

    async def _save_saml(self, config: SAMLConfig) -> SAMLConfig:
        query = """
            INSERT INTO saml_configs (
                id, tenant_id, is_enabled, idp_entity_id, idp_sso_url, idp_slo_url,
                idp_certificate, sp_entity_id, sp_acs_url, sp_slo_url, sp_certificate,
                sp_private_key, attribute_mapping, sign_requests, want_assertions_signed,
                display_name
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb, $14, $15, $16
            )
            ON CONFLICT (id) DO UPDATE SET
                is_enabled = EXCLUDED.is_enabled,
                idp_entity_id = EXCLUDED.idp_entity_id,
                idp_sso_url = EXCLUDED.idp_sso_url,
                idp_slo_url = EXCLUDED.idp_slo_url,
                idp_certificate = EXCLUDED.idp_certificate,
                sp_entity_id = EXCLUDED.sp_entity_id,
                sp_acs_url = EXCLUDED.sp_acs_url,
                sp_slo_url = EXCLUDED.sp_slo_url,
                sp_certificate = EXCLUDED.sp_certificate,
                sp_private_key = EXCLUDED.sp_private_key,
                attribute_mapping = EXCLUDED.attribute_mapping,
                sign_requests = EXCLUDED.sign_requests,
                want_assertions_signed = EXCLUDED.want_assertions_signed,
                display_name = EXCLUDED.display_name,
                updated_at = NOW()
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                config.id,
                config.tenant_id,
                config.is_enabled,
                config.idp_entity_id,
                config.idp_sso_url,
                config.idp_slo_url,
                config.idp_certificate,
                config.sp_entity_id,
                config.sp_acs_url,
                config.sp_slo_url,
                config.sp_certificate,
                config.sp_private_key,
                _json(config.attribute_mapping.to_dict()),
                config.sign_requests,
                config.want_assertions_signed,
                config.display_name,
            )
        return self._row_to_saml_config(row)

    async def _save_oidc(self, config: OIDCConfig) -> OIDCConfig:
        query = """
            INSERT INTO oidc_configs (
                id, tenant_id, is_enabled, issuer, client_id, client_secret, redirect_uri,
                authorization_endpoint, token_endpoint, userinfo_endpoint, jwks_uri,
                end_session_endpoint, post_logout_redirect_uri, scopes, claim_mapping,
                pkce_enabled, nonce_enabled, display_name
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14,
                $15::jsonb, $16, $17, $18
            )
            ON CONFLICT (id) DO UPDATE SET
                is_enabled = EXCLUDED.is_enabled,
                issuer = EXCLUDED.issuer,
                client_id = EXCLUDED.client_id,
                client_secret = EXCLUDED.client_secret,
                redirect_uri = EXCLUDED.redirect_uri,
                authorization_endpoint = EXCLUDED.authorization_endpoint,
                token_endpoint = EXCLUDED.token_endpoint,
                userinfo_endpoint = EXCLUDED.userinfo_endpoint,
                jwks_uri = EXCLUDED.jwks_uri,
                end_session_endpoint = EXCLUDED.end_session_endpoint,
                post_logout_redirect_uri = EXCLUDED.post_logout_redirect_uri,
                scopes = EXCLUDED.scopes,
                claim_mapping = EXCLUDED.claim_mapping,
                pkce_enabled = EXCLUDED.pkce_enabled,
                nonce_enabled = EXCLUDED.nonce_enabled,
                display_name = EXCLUDED.display_name,
                updated_at = NOW()
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                config.id,
                config.tenant_id,
                config.is_enabled,
                config.issuer,
                config.client_id,
                config.client_secret,
                config.redirect_uri,
                config.authorization_endpoint,
                config.token_endpoint,
                config.userinfo_endpoint,
                config.jwks_uri,
                config.end_session_endpoint,
                config.post_logout_redirect_uri,
                config.scopes,
                _json(config.claim_mapping.to_dict()),
                config.pkce_enabled,
                config.nonce_enabled,
                config.display_name,
            )
        return self._row_to_oidc_config(row)

    def _row_to_saml_config(self, row: Any) -> SAMLConfig:
        """Convert database row to SAMLConfig."""
        return SAMLConfig(
            id=row["id"],
            tenant_id=row["tenant_id"],
            is_enabled=row["is_enabled"],
            idp_entity_id=row["idp_entity_id"],
            idp_sso_url=row["idp_sso_url"],
            idp_certificate=row["idp_certificate"],
            sp_entity_id=row["sp_entity_id"],
            sp_acs_url=row["sp_acs_url"],
            idp_slo_url=row["idp_slo_url"],
            sp_slo_url=row["sp_slo_url"],
            sp_certificate=row["sp_certificate"],
            sp_private_key=row["sp_private_key"],
            attribute_mapping=AttributeMapping.from_dict(
                _load(row["attribute_mapping"]), AttributeMapping.saml_defaults()
            ),
            sign_requests=row["sign_requests"],
            want_assertions_signed=row["want_assertions_signed"],
            display_name=row["display_name"],
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )

    def _row_to_oidc_config(self, row: Any) -> OIDCConfig:
        """Convert database row to OIDCConfig."""
        return OIDCConfig(
            id=row["id"],
            tenant_id=row["tenant_id"],
            is_enabled=row["is_enabled"],
            issuer=row["issuer"],
            client_id=row["client_id"],
            client_secret=row["client_secret"],
            redirect_uri=row["redirect_uri"],
            authorization_endpoint=row["authorization_endpoint"],
            token_endpoint=row["token_endpoint"],
            userinfo_endpoint=row["userinfo_endpoint"],
            jwks_uri=row["jwks_uri"],
            end_session_endpoint=row["end_session_endpoint"],
            post_logout_redirect_uri=row["post_logout_redirect_uri"],
            scopes=list(row["scopes"]) if row["scopes"] else None,
            claim_mapping=AttributeMapping.from_dict(
                _load(row["claim_mapping"]), AttributeMapping.oidc_defaults()
            ),
            pkce_enabled=row["pkce_enabled"],
            nonce_enabled=row["nonce_enabled"],
            display_name=row["display_name"],
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )


class PostgresRoleMappingStore:
    """Role mapping rules. ``seq`` keeps insertion order for priority ties."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize the repository.

        Args:
            pool: Database connection pool.
        """
        self._pool = pool

    async def list_mappings(self, tenant_id: UUID) -> list[RoleMapping]:
        """List a tenant's mappings in insertion order."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM role_mappings WHERE tenant_id = $1 ORDER BY seq",
                tenant_id,
            )
        return [self._row_to_mapping(row) for row in rows]

    async def get_mapping(self, mapping_id: UUID) -> RoleMapping | None:
        """Get a mapping by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM role_mappings WHERE id = $1", mapping_id)
        return self._row_to_mapping(row) if row else None

    async def save_mapping(self, mapping: RoleMapping) -> RoleMapping:
        """Insert or replace a mapping. Updates keep the original ``seq``."""
        query = """
            INSERT INTO role_mappings (
                id, tenant_id, name, source_type, source_value, source_pattern,
                target_role, target_permissions, priority, is_enabled, description
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                source_type = EXCLUDED.source_type,
                source_value = EXCLUDED.source_value,
                source_pattern = EXCLUDED.source_pattern,
                target_role = EXCLUDED.target_role,
                target_permissions = EXCLUDED.target_permissions,
                priority = EXCLUDED.priority,
                is_enabled = EXCLUDED.is_enabled,
                description = EXCLUDED.description,
                updated_at = NOW()
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                mapping.id,
                mapping.tenant_id,
                mapping.name,
                mapping.source_type.value,
                mapping.source_value,
                mapping.source_pattern,
                mapping.target_role,
                list(mapping.target_permissions),
                mapping.priority,
                mapping.is_enabled,
                mapping.description,
            )
        return self._row_to_mapping(row)

    async def delete_mapping(self, mapping_id: UUID) -> bool:
        """Delete a mapping."""
        async with self._pool.acquire() as conn:
            result: str = await conn.execute("DELETE FROM role_mappings WHERE id = $1", mapping_id)
        return result == "DELETE 1"

    def _row_to_mapping(self, row: Any) -> RoleMapping:
        """Convert database row to RoleMapping."""
        return RoleMapping(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            source_type=MappingSourceType(row["source_type"]),
            source_value=row["source_value"],
            source_pattern=row["source_pattern"],
            target_role=row["target_role"],
            target_permissions=list(row["target_permissions"] or []),
            priority=row["priority"],
            is_enabled=row["is_enabled"],
            description=row["description"],
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )


class PostgresIdentityStore:
    """Identity records, directory groups and memberships."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize the repository.

        Args:
            pool: Database connection pool.
        """
        self._pool = pool

    # Users

    async def list_users(self, tenant_id: UUID, source: str | None = None) -> list[IdentityRecord]:
        """List identity records, optionally limited to one source."""
        query = "SELECT * FROM identities WHERE tenant_id = $1"
        params: list[Any] = [tenant_id]
        if source is not None:
            query += " AND source = $2"
            params.append(source)
        query += " ORDER BY created_at, external_id"

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_identity(row) for row in rows]

    async def get_user(self, user_id: UUID) -> IdentityRecord | None:
        """Get an identity record by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM identities WHERE id = $1", user_id)
        return self._row_to_identity(row) if row else None

    async def get_user_by_external_id(
        self, tenant_id: UUID, external_id: str
    ) -> IdentityRecord | None:
        """Get an identity record by external ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM identities WHERE tenant_id = $1 AND external_id = $2",
                tenant_id,
                external_id,
            )
        return self._row_to_identity(row) if row else None

    async def create_user(
        self, tenant_id: UUID, identity: NormalizedIdentity, source: str, is_active: bool = True
    ) -> IdentityRecord:
        """Create an identity record."""
        query = """
            INSERT INTO identities (
                tenant_id, external_id, email, display_name, first_name, last_name,
                is_active, source, groups, roles, attributes
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb)
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                tenant_id,
                identity.external_id,
                identity.email,
                identity.display_name,
                identity.first_name,
                identity.last_name,
                is_active,
                source,
                list(identity.groups),
                list(identity.roles),
                _json(identity.attributes),
            )
        return self._row_to_identity(row)

    async def update_user(
        self, user_id: UUID, identity: NormalizedIdentity, is_active: bool = True
    ) -> IdentityRecord:
        """Overwrite profile fields and claims of an identity record.

        Raises:
            NotFoundError: If the record does not exist.
        """
        query = """
            UPDATE identities SET
                email = $2, display_name = $3, first_name = $4, last_name = $5,
                is_active = $6, groups = $7, roles = $8, attributes = $9::jsonb,
                updated_at = NOW()
            WHERE id = $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                user_id,
                identity.email,
                identity.display_name,
                identity.first_name,
                identity.last_name,
                is_active,
                list(identity.groups),
                list(identity.roles),
                _json(identity.attributes),
            )
        if not row:
            raise NotFoundError(f"User not found: {user_id}")
        return self._row_to_identity(row)

    async def deactivate_user(self, user_id: UUID) -> None:
        """Mark an identity record inactive."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                "UPDATE identities SET is_active = false, updated_at = NOW() WHERE id = $1",
                user_id,
            )

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
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                """
                UPDATE identities SET
                    assigned_roles = $2, permissions = $3, mappings_applied = $4,
                    updated_at = NOW()
                WHERE id = $1
                """,
                user_id,
                list(roles),
                list(permissions),
                list(mappings_applied),
            )
        if result != "UPDATE 1":
            raise NotFoundError(f"User not found: {user_id}")

    # Groups

    async def list_groups(self, tenant_id: UUID, source: str) -> list[GroupRecord]:
        """List groups of one source, active and inactive."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM directory_groups
                WHERE tenant_id = $1 AND source = $2
                ORDER BY created_at, external_id
                """,
                tenant_id,
                source,
            )
        return [self._row_to_group(row) for row in rows]

    async def create_group(
        self, tenant_id: UUID, external_id: str, name: str, source: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Create a group."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO directory_groups (tenant_id, external_id, name, source, attributes)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                RETURNING *
                """,
                tenant_id,
                external_id,
                name,
                source,
                _json(attributes),
            )
        return self._row_to_group(row)

    async def update_group(
        self, group_id: UUID, name: str, attributes: dict[str, Any]
    ) -> GroupRecord:
        """Rename a group, reactivating it if it was deleted.

        Raises:
            NotFoundError: If the group does not exist.
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE directory_groups SET
                    name = $2, attributes = $3::jsonb, is_active = true, updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                group_id,
                name,
                _json(attributes),
            )
        if not row:
            raise NotFoundError(f"Group not found: {group_id}")
        return self._row_to_group(row)

    async def delete_group(self, group_id: UUID) -> None:
        """Soft-delete a group and drop its memberships."""
        async with self._pool.acquire() as conn, conn.transaction():
            row = await conn.fetchrow(
                """
                UPDATE directory_groups SET is_active = false, updated_at = NOW()
                WHERE id = $1
                RETURNING tenant_id, source, external_id
                """,
                group_id,
            )
            if not row:
                return
            await conn.execute(
                """
                DELETE FROM directory_memberships
                WHERE tenant_id = $1 AND source = $2 AND group_external_id = $3
                """,
                row["tenant_id"],
                row["source"],
                row["external_id"],
            )

    # Memberships

    async def list_memberships(self, tenant_id: UUID, source: str) -> set[tuple[str, str]]:
        """List memberships as (user external ID, group external ID) pairs."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT user_external_id, group_external_id FROM directory_memberships
                WHERE tenant_id = $1 AND source = $2
                """,
                tenant_id,
                source,
            )
        return {(row["user_external_id"], row["group_external_id"]) for row in rows}

    async def add_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> bool:
        """Add a membership.

        Raises:
            NotFoundError: If the user or the active group does not exist.
        """
        async with self._pool.acquire() as conn:
            user_exists = await conn.fetchval(
                "SELECT 1 FROM identities WHERE tenant_id = $1 AND external_id = $2",
                tenant_id,
                user_external_id,
            )
            if not user_exists:
                raise NotFoundError(f"User not found: {user_external_id}")
            group_exists = await conn.fetchval(
                """
                SELECT 1 FROM directory_groups
                WHERE tenant_id = $1 AND source = $2 AND external_id = $3 AND is_active
                """,
                tenant_id,
                source,
                group_external_id,
            )
            if not group_exists:
                raise NotFoundError(f"Group not found: {group_external_id}")
            result: str = await conn.execute(
                """
                INSERT INTO directory_memberships
                    (tenant_id, source, user_external_id, group_external_id)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT DO NOTHING
                """,
                tenant_id,
                source,
                user_external_id,
                group_external_id,
            )
        return result == "INSERT 0 1"

    async def remove_membership(
        self, tenant_id: UUID, source: str, user_external_id: str, group_external_id: str
    ) -> None:
        """Remove a membership if present."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                DELETE FROM directory_memberships
                WHERE tenant_id = $1 AND source = $2
                  AND user_external_id = $3 AND group_external_id = $4
                """,
                tenant_id,
                source,
                user_external_id,
                group_external_id,
            )

    # Helper methods

    def _row_to_identity(self, row: Any) -> IdentityRecord:
        """Convert database row to IdentityRecord."""
        return IdentityRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            external_id=row["external_id"],
            email=row["email"],
            display_name=row["display_name"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            is_active=row["is_active"],
            source=row["source"],
            groups=list(row["groups"] or []),
            roles=list(row["roles"] or []),
            attributes=_load(row["attributes"]) or {},
            assigned_roles=list(row["assigned_roles"] or []),
            permissions=list(row["permissions"] or []),
            mappings_applied=list(row["mappings_applied"] or []),
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )

    def _row_to_group(self, row: Any) -> GroupRecord:
        """Convert database row to GroupRecord."""
        return GroupRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            external_id=row["external_id"],
            name=row["name"],
            is_active=row["is_active"],
            source=row["source"],
            attributes=_load(row["attributes"]) or {},
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )


class PostgresSyncStore:
    """Directory sync configurations and their job records."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        """Initialize the repository.

        Args:
            pool: Database connection pool.
        """
        self._pool = pool

    # Configurations

    async def get_sync_config(self, config_id: UUID) -> DirectorySyncConfig | None:
        """Get a sync configuration by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM directory_sync_configs WHERE id = $1 AND deleted_at IS NULL",
                config_id,
            )
        return self._row_to_config(row) if row else None

    async def list_sync_configs(self, tenant_id: UUID) -> list[DirectorySyncConfig]:
        """List a tenant's sync configurations."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM directory_sync_configs
                WHERE tenant_id = $1 AND deleted_at IS NULL
                ORDER BY created_at
                """,
                tenant_id,
            )
        return [self._row_to_config(row) for row in rows]

    async def list_scheduled_configs(self) -> list[DirectorySyncConfig]:
        """List enabled, scheduled configurations across tenants."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM directory_sync_configs
                WHERE is_enabled AND schedule_enabled AND deleted_at IS NULL
                ORDER BY last_sync_at NULLS FIRST
                """
            )
        return [self._row_to_config(row) for row in rows]

    async def save_sync_config(self, config: DirectorySyncConfig) -> DirectorySyncConfig:
        """Insert or replace a sync configuration.

        The last-sync columns are owned by ``record_sync_result`` and are
        not overwritten here.
        """
        query = """
            INSERT INTO directory_sync_configs (
                id, tenant_id, name, source_type, source_config, sync_users, sync_groups,
                sync_roles, schedule_enabled, schedule_interval, user_filter, group_filter,
                is_enabled
            ) VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10, $11, $12, $13)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                source_config = EXCLUDED.source_config,
                sync_users = EXCLUDED.sync_users,
                sync_groups = EXCLUDED.sync_groups,
                sync_roles = EXCLUDED.sync_roles,
                schedule_enabled = EXCLUDED.schedule_enabled,
                schedule_interval = EXCLUDED.schedule_interval,
                user_filter = EXCLUDED.user_filter,
                group_filter = EXCLUDED.group_filter,
                is_enabled = EXCLUDED.is_enabled,
                updated_at = NOW()
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                config.id,
                config.tenant_id,
                config.name,
                config.source_type.value,
                _json(config.source_config),
                config.sync_users,
                config.sync_groups,
                config.sync_roles,
                config.schedule_enabled,
                config.schedule_interval,
                config.user_filter,
                config.group_filter,
                config.is_enabled,
            )
        return self._row_to_config(row)

    async def delete_sync_config(self, config_id: UUID) -> bool:
        """Soft-delete a sync configuration. Its jobs are kept."""
        async with self._pool.acquire() as conn:
            result: str = await conn.execute(
                """
                UPDATE directory_sync_configs
                SET deleted_at = NOW(), is_enabled = false, updated_at = NOW()
                WHERE id = $1 AND deleted_at IS NULL
                """,
                config_id,
            )
        return result == "UPDATE 1"

    async def record_sync_result(
        self,
        config_id: UUID,
        last_sync_at: datetime | None,
        status: SyncStatus,
        error: str | None,
    ) -> None:
        """Store the outcome of a job. A None cursor keeps the current one."""
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE directory_sync_configs SET
                    last_sync_at = COALESCE($2, last_sync_at),
                    last_sync_status = $3,
                    last_sync_error = $4,
                    updated_at = NOW()
                WHERE id = $1
                """,
                config_id,
                last_sync_at,
                status.value,
                error,
            )

    # Jobs

    async def create_job(self, job: SyncJob) -> SyncJob:
        """Insert a job record."""
        query = """
            INSERT INTO directory_sync_jobs (
                id, config_id, tenant_id, status, sync_type, stats, errors,
                created_at, started_at, completed_at
            ) VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, COALESCE($8, NOW()), $9, $10)
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                job.id,
                job.config_id,
                job.tenant_id,
                job.status.value,
                job.sync_type.value,
                job.stats.model_dump_json(),
                _json([error.model_dump(mode="json") for error in job.errors]),
                job.created_at,
                job.started_at,
                job.completed_at,
            )
        return self._row_to_job(row)

    async def update_job(self, job: SyncJob) -> SyncJob:
        """Replace a job record.

        Raises:
            NotFoundError: If the job does not exist.
        """
        query = """
            UPDATE directory_sync_jobs SET
                status = $2, stats = $3::jsonb, errors = $4::jsonb,
                started_at = $5, completed_at = $6
            WHERE id = $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                job.id,
                job.status.value,
                job.stats.model_dump_json(),
                _json([error.model_dump(mode="json") for error in job.errors]),
                job.started_at,
                job.completed_at,
            )
        if not row:
            raise NotFoundError(f"Sync job not found: {job.id}")
        return self._row_to_job(row)

    async def get_job(self, job_id: UUID) -> SyncJob | None:
        """Get a job by ID."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM directory_sync_jobs WHERE id = $1", job_id)
        return self._row_to_job(row) if row else None

    async def list_jobs(self, config_id: UUID, limit: int = 20) -> list[SyncJob]:
        """List jobs of a config, newest first."""
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM directory_sync_jobs
                WHERE config_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                config_id,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    # Helper methods

    def _row_to_config(self, row: Any) -> DirectorySyncConfig:
        """Convert database row to DirectorySyncConfig."""
        return DirectorySyncConfig(
            id=row["id"],
            tenant_id=row["tenant_id"],
            name=row["name"],
            source_type=DirectorySourceType(row["source_type"]),
            source_config=_load(row["source_config"]) or {},
            sync_users=row["sync_users"],
            sync_groups=row["sync_groups"],
            sync_roles=row["sync_roles"],
            schedule_enabled=row["schedule_enabled"],
            schedule_interval=row["schedule_interval"],
            user_filter=row["user_filter"],
            group_filter=row["group_filter"],
            is_enabled=row["is_enabled"],
            last_sync_at=_ts(row["last_sync_at"]),
            last_sync_status=(
                SyncStatus(row["last_sync_status"]) if row["last_sync_status"] else None
            ),
            last_sync_error=row["last_sync_error"],
            created_at=_ts(row["created_at"]),
            updated_at=_ts(row["updated_at"]),
        )

    def _row_to_job(self, row: Any) -> SyncJob:
        """Convert database row to SyncJob."""
        stats = _load(row["stats"])
        return SyncJob(
            id=row["id"],
            config_id=row["config_id"],
            tenant_id=row["tenant_id"],
            status=SyncStatus(row["status"]),
            sync_type=SyncType(row["sync_type"]),
            stats=SyncStats.model_validate(stats) if stats else SyncStats(),
            errors=[SyncError.model_validate(item) for item in _load(row["errors"]) or []],
            created_at=_ts(row["created_at"]),
            started_at=_ts(row["started_at"]),
            completed_at=_ts(row["completed_at"]),
        )
