"""Preset role mapping bundles for common identity providers.

Each bundle maps the provider's well-known administrative groups or
roles to high-privilege application roles. Presets are materialized as
ordinary RoleMapping rows and can be edited afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass

from idbridge.core.rbac.types import MappingSourceType


@dataclass(frozen=True)
class PresetMapping:
    """Template for a RoleMapping row."""

    name: str
    source_type: MappingSourceType
    source_value: str
    target_role: str
    priority: int
    source_pattern: str | None = None


PRESETS: dict[str, tuple[PresetMapping, ...]] = {
    "azure-ad": (
        PresetMapping(
            "Azure AD Global Admins", MappingSourceType.GROUP, "Global Administrators",
            "SUPER_ADMIN", 1,
        ),
        PresetMapping(
            "Azure AD App Admins", MappingSourceType.GROUP, "Application Administrators",
            "ADMIN", 2,
        ),
        PresetMapping("Azure AD Users", MappingSourceType.GROUP, "Users", "USER", 10),
    ),
    "okta": (
        PresetMapping(
            "Okta Super Admins", MappingSourceType.GROUP, "SUPER_ADMIN", "SUPER_ADMIN", 1
        ),
        PresetMapping("Okta Org Admins", MappingSourceType.GROUP, "ORG_ADMIN", "ADMIN", 2),
        PresetMapping("Okta Everyone", MappingSourceType.GROUP, "Everyone", "USER", 10),
    ),
    "google": (
        PresetMapping(
            "Google Super Admins", MappingSourceType.ROLE, "admin#directory#admin",
            "SUPER_ADMIN", 1,
        ),
        PresetMapping(
            "Google Users", MappingSourceType.GROUP, "users@", "USER", 10,
            source_pattern=r"^users@.*",
        ),
    ),
    "onelogin": (
        PresetMapping(
            "OneLogin Super Users", MappingSourceType.ROLE, "Super user", "SUPER_ADMIN", 1
        ),
        PresetMapping(
            "OneLogin Account Owners", MappingSourceType.ROLE, "Account owner", "ADMIN", 2
        ),
        PresetMapping("OneLogin Users", MappingSourceType.ROLE, "User", "USER", 10),
    ),
}


def get_preset(name: str) -> tuple[PresetMapping, ...]:
    """Get a preset bundle by provider name.

    Raises:
        KeyError: If no preset exists for the name.
    """
    return PRESETS[name]
