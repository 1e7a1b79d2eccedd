"""Persistence adapters: asyncpg repositories and in-memory stores."""

from idbridge.adapters.db.memory import (
    InMemoryAuditLog,
    InMemoryFederationConfigStore,
    InMemoryIdentityStore,
    InMemoryRoleMappingStore,
    InMemorySyncStore,
)
from idbridge.adapters.db.postgres import (
    PostgresFederationConfigStore,
    PostgresIdentityStore,
    PostgresRoleMappingStore,
    PostgresSyncStore,
    create_pool,
)

__all__ = [
    "InMemoryAuditLog",
    "InMemoryFederationConfigStore",
    "InMemoryIdentityStore",
    "InMemoryRoleMappingStore",
    "InMemorySyncStore",
    "PostgresFederationConfigStore",
    "PostgresIdentityStore",
    "PostgresRoleMappingStore",
    "PostgresSyncStore",
    "create_pool",
]
