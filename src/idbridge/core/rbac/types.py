"""RBAC domain types."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from uuid import UUID


class MappingSourceType(str, Enum):
    """Which part of the claim set a mapping reads."""

    GROUP = "group"
    ROLE = "role"
    ATTRIBUTE = "attribute"


@dataclass(frozen=True)
class RoleDefinition:
    """A built-in application role and its default permissions."""

    name: str
    permissions: tuple[str, ...]
    description: str


DEFAULT_ROLES: dict[str, RoleDefinition] = {
    "SUPER_ADMIN": RoleDefinition(
        name="Super Admin",
        permissions=("*",),
        description="Full system access",
    ),
    "ADMIN": RoleDefinition(
        name="Admin",
        permissions=(
            "users:read",
            "users:write",
            "users:delete",
            "entities:read",
            "entities:write",
            "settings:read",
            "settings:write",
            "reports:read",
            "reports:write",
            "sso:read",
            "sso:write",
        ),
        description="Organization administrator",
    ),
    "MANAGER": RoleDefinition(
        name="Manager",
        permissions=(
            "users:read",
            "entities:read",
            "entities:write",
            "reports:read",
            "reports:write",
            "processes:read",
            "processes:write",
        ),
        description="Team manager",
    ),
    "ANALYST": RoleDefinition(
        name="Analyst",
        permissions=(
            "entities:read",
            "reports:read",
            "reports:write",
            "processes:read",
            "analytics:read",
        ),
        description="Data analyst",
    ),
    "USER": RoleDefinition(
        name="User",
        permissions=("entities:read", "processes:read", "reports:read"),
        description="Standard user",
    ),
    "VIEWER": RoleDefinition(
        name="Viewer",
        permissions=("entities:read", "reports:read"),
        description="Read-only access",
    ),
}


def default_permissions(role: str) -> tuple[str, ...]:
    """Get the built-in permissions for a role (empty for custom roles)."""
    definition = DEFAULT_ROLES.get(role)
    return definition.permissions if definition else ()


@dataclass(frozen=True)
class ExactMatch:
    """Case-insensitive equality against a literal value."""

    value: str

    def matches(self, candidate: str) -> bool:
        """Check a candidate value."""
        return candidate.casefold() == self.value.casefold()


@dataclass(frozen=True)
class PatternMatch:
    """Case-insensitive regular expression search."""

    pattern: str

    @cached_property
    def compiled(self) -> re.Pattern[str]:
        """Compiled pattern. Raises re.error for invalid expressions."""
        return re.compile(self.pattern, re.IGNORECASE)

    def matches(self, candidate: str) -> bool:
        """Check a candidate value."""
        return self.compiled.search(candidate) is not None


MatchRule = ExactMatch | PatternMatch


@dataclass
class RoleMapping:
    """A tenant rule translating an IdP group/role/attribute into a role."""

    id: UUID
    tenant_id: UUID
    name: str
    source_type: MappingSourceType
    source_value: str
    target_role: str
    priority: int
    is_enabled: bool
    source_pattern: str | None = None
    target_permissions: list[str] = field(default_factory=list)
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def match_rule(self) -> MatchRule:
        """The rule candidates are tested with."""
        if self.source_pattern:
            return PatternMatch(self.source_pattern)
        return ExactMatch(self.source_value)


@dataclass
class AppliedMapping:
    """Audit record of a mapping that fired."""

    mapping_id: UUID
    mapping_name: str
    matched_value: str
    target_role: str


@dataclass
class RoleResolution:
    """Result of evaluating a tenant's mappings against a claim set."""

    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    mappings_applied: list[AppliedMapping] = field(default_factory=list)
    used_fallback: bool = False


@dataclass
class UserRoleAssignment:
    """Roles and permissions persisted on an identity record."""

    user_id: UUID
    roles: list[str]
    permissions: list[str]
    mappings_applied: list[UUID]
    source: str  # "sso" or "manual"


@dataclass
class RoleSyncSummary:
    """Counters from a bulk role re-resolution."""

    processed: int = 0
    updated: int = 0
    failed: int = 0
