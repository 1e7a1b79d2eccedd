"""Audit log repository."""

from __future__ import annotations

import json
from typing import Any
from uuid import UUID

import structlog
from asyncpg import Pool

from idbridge.core.audit import AuditLogCreate, AuditLogEntry

logger = structlog.get_logger()


def _json(value: dict[str, Any] | None) -> str | None:
    return json.dumps(value, default=str) if value is not None else None


def _load(value: Any) -> dict[str, Any] | None:
    if value is None or isinstance(value, dict):
        return value
    loaded: dict[str, Any] = json.loads(value)
    return loaded


class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, pool: Pool) -> None:
        """Initialize the repository.

        Args:
            pool: Database connection pool.
        """
        self._pool = pool

    async def record(self, entry: AuditLogCreate) -> UUID:
        """Record an audit log entry.

        Args:
            entry: Audit log entry to record.

        Returns:
            ID of the created entry.
        """
        query = """
            INSERT INTO audit_logs (
                tenant_id, actor_id, actor_email, action,
                resource_type, resource_id, resource_name, changes, metadata
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9::jsonb)
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                entry.tenant_id,
                entry.actor_id,
                entry.actor_email,
                entry.action,
                entry.resource_type,
                entry.resource_id,
                entry.resource_name,
                _json(entry.changes),
                _json(entry.metadata),
            )
            result: UUID = row["id"]
            logger.debug("audit_log_recorded", action=entry.action, entry_id=str(result))
            return result

    async def list(
        self,
        tenant_id: UUID,
        limit: int = 50,
        offset: int = 0,
        action: str | None = None,
        resource_id: UUID | None = None,
    ) -> tuple[list[AuditLogEntry], int]:
        """List audit log entries with filters.

        Args:
            tenant_id: Tenant to filter by.
            limit: Maximum entries to return.
            offset: Number of entries to skip.
            action: Filter by action type.
            resource_id: Filter by resource.

        Returns:
            Tuple of (entries, total_count).
        """
        conditions = ["tenant_id = $1"]
        params: list[Any] = [tenant_id]
        param_idx = 2

        if action:
            conditions.append(f"action = ${param_idx}")
            params.append(action)
            param_idx += 1

        if resource_id:
            conditions.append(f"resource_id = ${param_idx}")
            params.append(resource_id)
            param_idx += 1

        where_clause = " AND ".join(conditions)

        count_query = f"SELECT COUNT(*) FROM audit_logs WHERE {where_clause}"
        list_query = f"""
            SELECT id, timestamp, tenant_id, actor_id, actor_email, action,
                   resource_type, resource_id, resource_name, changes, metadata
            FROM audit_logs
            WHERE {where_clause}
            ORDER BY timestamp DESC
            LIMIT ${param_idx} OFFSET ${param_idx + 1}
        """
        params.extend([limit, offset])

        async with self._pool.acquire() as conn:
            total = await conn.fetchval(count_query, *params[:-2])
            rows = await conn.fetch(list_query, *params)

        entries = [
            AuditLogEntry(
                id=row["id"],
                timestamp=row["timestamp"],
                tenant_id=row["tenant_id"],
                actor_id=row["actor_id"],
                actor_email=row["actor_email"],
                action=row["action"],
                resource_type=row["resource_type"],
                resource_id=row["resource_id"],
                resource_name=row["resource_name"],
                changes=_load(row["changes"]),
                metadata=_load(row["metadata"]),
            )
            for row in rows
        ]

        total_count: int = total or 0
        return entries, total_count
