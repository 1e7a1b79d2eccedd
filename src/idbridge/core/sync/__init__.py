"""Directory sync: reconcile an external directory into local records."""

from idbridge.core.sync.delta import diff_groups, diff_memberships, diff_users
from idbridge.core.sync.engine import DirectorySyncService, combine_filters
from idbridge.core.sync.lock import InMemoryJobLock
from idbridge.core.sync.types import (
    CategoryStats,
    DirectoryGroup,
    DirectorySourceType,
    DirectorySyncConfig,
    DirectoryUser,
    SyncCategory,
    SyncError,
    SyncJob,
    SyncOutcome,
    SyncStats,
    SyncStatus,
    SyncStatusSummary,
    SyncType,
)

__all__ = [
    "CategoryStats",
    "DirectoryGroup",
    "DirectorySourceType",
    "DirectorySyncConfig",
    "DirectorySyncService",
    "DirectoryUser",
    "InMemoryJobLock",
    "SyncCategory",
    "SyncError",
    "SyncJob",
    "SyncOutcome",
    "SyncStats",
    "SyncStatus",
    "SyncStatusSummary",
    "SyncType",
    "combine_filters",
    "diff_groups",
    "diff_memberships",
    "diff_users",
]
