"""Role resolution: mapping IdP claims to application roles."""

from idbridge.core.rbac.presets import PRESETS, PresetMapping, get_preset
from idbridge.core.rbac.resolver import match_mapping, resolve_roles
from idbridge.core.rbac.service import RoleMappingService, validate_mapping
from idbridge.core.rbac.types import (
    DEFAULT_ROLES,
    AppliedMapping,
    MappingSourceType,
    RoleDefinition,
    RoleMapping,
    RoleResolution,
    RoleSyncSummary,
    UserRoleAssignment,
    default_permissions,
)

__all__ = [
    "DEFAULT_ROLES",
    "PRESETS",
    "AppliedMapping",
    "MappingSourceType",
    "PresetMapping",
    "RoleDefinition",
    "RoleMapping",
    "RoleMappingService",
    "RoleResolution",
    "RoleSyncSummary",
    "UserRoleAssignment",
    "default_permissions",
    "get_preset",
    "match_mapping",
    "resolve_roles",
    "validate_mapping",
]
