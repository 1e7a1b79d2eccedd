"""In-memory stores and services wired together."""

from __future__ import annotations

import uuid

import pytest

from idbridge.adapters.db import (
    InMemoryAuditLog,
    InMemoryFederationConfigStore,
    InMemoryIdentityStore,
    InMemoryRoleMappingStore,
    InMemorySyncStore,
)
from idbridge.core.rbac import RoleMappingService


@pytest.fixture
def tenant_id() -> uuid.UUID:
    """Return a tenant ID."""
    return uuid.uuid4()


@pytest.fixture
def identity_store() -> InMemoryIdentityStore:
    """Return an empty identity store."""
    return InMemoryIdentityStore()


@pytest.fixture
def mapping_store() -> InMemoryRoleMappingStore:
    """Return an empty role mapping store."""
    return InMemoryRoleMappingStore()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    """Return an empty audit log."""
    return InMemoryAuditLog()


@pytest.fixture
def sync_store() -> InMemorySyncStore:
    """Return an empty sync config and job store."""
    return InMemorySyncStore()


@pytest.fixture
def federation_store() -> InMemoryFederationConfigStore:
    """Return an empty federation config store."""
    return InMemoryFederationConfigStore()


@pytest.fixture
def role_service(
    mapping_store: InMemoryRoleMappingStore,
    identity_store: InMemoryIdentityStore,
    audit_log: InMemoryAuditLog,
) -> RoleMappingService:
    """Return a role mapping service over the in-memory stores."""
    return RoleMappingService(
        mappings=mapping_store,
        identities=identity_store,
        audit=audit_log,
        default_role="USER",
    )
