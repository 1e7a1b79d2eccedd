"""Claim mapping: provider attribute bags to NormalizedIdentity.

Attribute values can be strings or lists. Single-valued fields take the
first value; list fields (groups, roles) keep every string value.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from idbridge.core.identity.types import AttributeMapping, AttributeValue, NormalizedIdentity


def lookup(bag: Mapping[str, Any], key: str | None) -> Any:
    """Look up a claim, falling back to a dotted path into nested objects.

    Args:
        bag: Claim or attribute dictionary.
        key: Claim name or dotted path. None returns None.

    Returns:
        The raw claim value, or None if absent.
    """
    if not key:
        return None
    if key in bag:
        return bag[key]

    current: Any = bag
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def first_value(bag: Mapping[str, Any], key: str | None) -> str | None:
    """Get a single string value for a claim."""
    value = lookup(bag, key)
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, str) and v), None)
    if isinstance(value, str) and value:
        return value
    return None


def all_values(bag: Mapping[str, Any], key: str | None) -> list[str]:
    """Get every string value for a claim, in order."""
    value = lookup(bag, key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str) and v]
    return []


def normalize_attributes(bag: Mapping[str, Any]) -> dict[str, AttributeValue]:
    """Keep only string and list-of-string attributes.

    Role mappings of type ``attribute`` evaluate against this bag, so
    nested objects and non-string scalars are dropped (booleans and
    numbers are stringified).
    """
    result: dict[str, AttributeValue] = {}
    for name, value in bag.items():
        if isinstance(value, str):
            result[name] = value
        elif isinstance(value, bool | int | float):
            result[name] = str(value).lower() if isinstance(value, bool) else str(value)
        elif isinstance(value, list):
            strings = [v for v in value if isinstance(v, str)]
            if strings:
                result[name] = strings
    return result


def map_identity(
    external_id: str,
    bag: Mapping[str, Any],
    mapping: AttributeMapping,
    default_email: str | None = None,
) -> NormalizedIdentity:
    """Map a provider attribute bag into a NormalizedIdentity.

    Args:
        external_id: Stable subject identifier at the provider.
        bag: Raw claims (OIDC) or attributes (SAML).
        mapping: Field-to-claim mapping table.
        default_email: Fallback when the mapped email claim is absent
            (the SAML NameID, for example).

    Returns:
        Normalized identity.
    """
    email = first_value(bag, mapping.email) or default_email or ""
    return NormalizedIdentity(
        external_id=external_id,
        email=email,
        display_name=first_value(bag, mapping.display_name),
        first_name=first_value(bag, mapping.first_name),
        last_name=first_value(bag, mapping.last_name),
        picture=first_value(bag, mapping.picture),
        groups=_dedupe(all_values(bag, mapping.groups)),
        roles=_dedupe(all_values(bag, mapping.roles)),
        attributes=normalize_attributes(bag),
    )


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result
