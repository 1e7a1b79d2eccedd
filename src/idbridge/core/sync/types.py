"""Directory sync domain types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from idbridge.core.identity.claims import normalize_attributes
from idbridge.core.identity.types import NormalizedIdentity


class SyncStatus(str, Enum):
    """Lifecycle of a sync job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the job can no longer change."""
        return self in (SyncStatus.COMPLETED, SyncStatus.PARTIAL, SyncStatus.FAILED)


class SyncType(str, Enum):
    """Full syncs reconcile everything; incremental ones only fetch changes."""

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncCategory(str, Enum):
    """Record categories a job processes, in execution order."""

    USER = "user"
    GROUP = "group"
    MEMBERSHIP = "membership"
    ROLE = "role"


class SyncOutcome(str, Enum):
    """What happened to a single record."""

    CREATED = "created"
    UPDATED = "updated"
    DEACTIVATED = "deactivated"
    SKIPPED = "skipped"


class DirectorySourceType(str, Enum):
    """Supported directory sources."""

    SCIM = "scim"
    OKTA = "okta"


@dataclass
class DirectorySyncConfig:
    """A tenant's connection to an external directory."""

    id: UUID
    tenant_id: UUID
    name: str
    source_type: DirectorySourceType
    source_config: dict[str, Any] = field(default_factory=dict)
    sync_users: bool = True
    sync_groups: bool = True
    sync_roles: bool = True
    schedule_enabled: bool = False
    schedule_interval: int = 60  # minutes
    user_filter: str | None = None
    group_filter: str | None = None
    is_enabled: bool = True
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    last_sync_error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def source(self) -> str:
        """Source label stored on synced identity records."""
        return self.source_type.value

    def is_due(self, now: datetime | None = None) -> bool:
        """Check whether a scheduled sync should start.

        A config that has never synced is always due.
        """
        if self.last_sync_at is None:
            return True
        now = now or datetime.now(UTC)
        return now - self.last_sync_at >= timedelta(minutes=self.schedule_interval)


class CategoryStats(BaseModel):
    """Per-category counters.

    ``processed`` always equals created + updated + deactivated + skipped.
    Records whose write failed are only counted in ``failed``.
    """

    processed: int = 0
    created: int = 0
    updated: int = 0
    deactivated: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: SyncOutcome) -> None:
        """Count one successfully handled record."""
        if outcome == SyncOutcome.CREATED:
            self.created += 1
        elif outcome == SyncOutcome.UPDATED:
            self.updated += 1
        elif outcome == SyncOutcome.DEACTIVATED:
            self.deactivated += 1
        else:
            self.skipped += 1
        self.processed += 1

    @property
    def writes(self) -> int:
        """Successful writes (skips excluded)."""
        return self.created + self.updated + self.deactivated


class SyncStats(BaseModel):
    """Counters for every category of a job."""

    users: CategoryStats = Field(default_factory=CategoryStats)
    groups: CategoryStats = Field(default_factory=CategoryStats)
    memberships: CategoryStats = Field(default_factory=CategoryStats)
    roles: CategoryStats = Field(default_factory=CategoryStats)
    duration_ms: int | None = None

    def for_category(self, category: SyncCategory) -> CategoryStats:
        """Get the counters of a category."""
        return {
            SyncCategory.USER: self.users,
            SyncCategory.GROUP: self.groups,
            SyncCategory.MEMBERSHIP: self.memberships,
            SyncCategory.ROLE: self.roles,
        }[category]

    @property
    def writes(self) -> int:
        """Successful writes across categories."""
        return sum(
            stats.writes for stats in (self.users, self.groups, self.memberships, self.roles)
        )


class SyncError(BaseModel):
    """An error recorded on a job. ``category`` is None for job-level errors."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    category: SyncCategory | None = None
    external_id: str | None = None
    message: str
    details: dict[str, Any] | None = None


@dataclass
class SyncJob:
    """One execution of a directory sync."""

    id: UUID
    config_id: UUID
    tenant_id: UUID
    status: SyncStatus
    sync_type: SyncType
    stats: SyncStats = field(default_factory=SyncStats)
    errors: list[SyncError] = field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SyncStatusSummary:
    """Current state of a sync config for dashboards."""

    config_id: UUID
    is_running: bool
    running_job_id: UUID | None
    last_sync_at: datetime | None
    last_sync_status: SyncStatus | None
    last_sync_error: str | None
    outstanding_conflicts: int | None
    recent_jobs: list[SyncJob] = field(default_factory=list)


@dataclass
class DirectoryUser:
    """A user as read from an external directory."""

    external_id: str
    user_name: str
    email: str
    active: bool = True
    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    groups: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    last_modified: datetime | None = None

    def to_identity(self) -> NormalizedIdentity:
        """Convert to the provider-independent identity shape."""
        return NormalizedIdentity(
            external_id=self.external_id,
            email=self.email or self.user_name,
            display_name=self.display_name,
            first_name=self.first_name,
            last_name=self.last_name,
            groups=list(self.groups),
            roles=list(self.roles),
            attributes=normalize_attributes(self.attributes),
        )


@dataclass
class DirectoryGroup:
    """A group as read from an external directory."""

    external_id: str
    display_name: str
    member_ids: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    last_modified: datetime | None = None
