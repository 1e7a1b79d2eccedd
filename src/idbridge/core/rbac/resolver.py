"""Role resolution: evaluate role mappings against a claim set.

Mappings are tried in ascending priority; equal priorities keep their
stored order. Every matching mapping contributes its role, so a user in
both an admin group and a catch-all group ends up with both roles. When
nothing matches, the default role is applied.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

import structlog

from idbridge.core.identity.claims import normalize_attributes
from idbridge.core.identity.types import ClaimSet
from idbridge.core.rbac.types import (
    AppliedMapping,
    MappingSourceType,
    RoleMapping,
    RoleResolution,
    default_permissions,
)

logger = structlog.get_logger()


def candidate_values(mapping: RoleMapping, claims: ClaimSet) -> list[str]:
    """Get the claim values a mapping is tested against.

    Args:
        mapping: The mapping being evaluated.
        claims: Claim set of the user.

    Returns:
        Groups, roles, or the string values of one named attribute. Numbers
        and booleans are stringified and other values are ignored.
    """
    if mapping.source_type == MappingSourceType.GROUP:
        return claims.groups
    if mapping.source_type == MappingSourceType.ROLE:
        return claims.roles

    name = mapping.source_value
    value = normalize_attributes({name: claims.attributes.get(name)}).get(name)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def match_mapping(mapping: RoleMapping, claims: ClaimSet) -> str | None:
    """Find the first claim value matching a mapping.

    For attribute mappings ``source_value`` names the attribute and the
    pattern is tested against its values. Stored attribute mappings
    always carry a pattern; one without falls back to comparing the
    values with the attribute name, so presence alone never matches.

    Returns:
        The matched value, or None.
    """
    rule = mapping.match_rule
    for candidate in candidate_values(mapping, claims):
        if rule.matches(candidate):
            return candidate
    return None


def order_mappings(mappings: Iterable[RoleMapping]) -> list[RoleMapping]:
    """Sort enabled mappings by priority, keeping stored order for ties."""
    return sorted((m for m in mappings if m.is_enabled), key=lambda m: m.priority)


def resolve_roles(
    mappings: Iterable[RoleMapping],
    claims: ClaimSet,
    default_role: str = "USER",
) -> RoleResolution:
    """Resolve roles and permissions for a claim set.

    Args:
        mappings: The tenant's mappings, in stored order.
        claims: Groups, roles and attributes of the user.
        default_role: Role applied when no mapping matches.

    Returns:
        Deduplicated roles and permissions plus the mappings that fired.
    """
    result = RoleResolution()

    for mapping in order_mappings(mappings):
        try:
            matched = match_mapping(mapping, claims)
        except re.error as e:
            logger.warning(
                "role_mapping_invalid_pattern",
                mapping_id=str(mapping.id),
                pattern=mapping.source_pattern,
                error=str(e),
            )
            continue
        if matched is None:
            continue

        _append(result.roles, mapping.target_role)
        _extend(result.permissions, mapping.target_permissions)
        _extend(result.permissions, default_permissions(mapping.target_role))
        result.mappings_applied.append(
            AppliedMapping(
                mapping_id=mapping.id,
                mapping_name=mapping.name,
                matched_value=matched,
                target_role=mapping.target_role,
            )
        )

    if not result.roles:
        result.roles = [default_role]
        result.permissions = list(default_permissions(default_role))
        result.used_fallback = True

    return result


def _append(values: list[str], value: str) -> None:
    if value not in values:
        values.append(value)


def _extend(values: list[str], new_values: Iterable[str]) -> None:
    for value in new_values:
        _append(values, value)
