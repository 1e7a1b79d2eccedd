"""Audit log types."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

# Actions written by this package
ROLE_ASSIGNMENT = "sso.role_assignment"
SSO_LOGIN = "sso.login"
SCIM_PROVISIONING = "scim.provisioning"


class AuditLogCreate(BaseModel):
    """Request to create an audit log entry."""

    model_config = ConfigDict(frozen=True)

    tenant_id: UUID
    actor_id: UUID | None = None
    actor_email: str | None = None
    action: str
    resource_type: str | None = None
    resource_id: UUID | None = None
    resource_name: str | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class AuditLogEntry(BaseModel):
    """Audit log entry from storage."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    timestamp: datetime
    tenant_id: UUID
    actor_id: UUID | None = None
    actor_email: str | None = None
    action: str
    resource_type: str | None = None
    resource_id: UUID | None = None
    resource_name: str | None = None
    changes: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
