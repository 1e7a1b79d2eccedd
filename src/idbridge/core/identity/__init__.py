"""Identity types and claim mapping."""

from idbridge.core.identity.claims import (
    all_values,
    first_value,
    lookup,
    map_identity,
    normalize_attributes,
)
from idbridge.core.identity.types import (
    AttributeMapping,
    AttributeValue,
    ClaimSet,
    GroupRecord,
    IdentityRecord,
    NormalizedIdentity,
)

__all__ = [
    "AttributeMapping",
    "AttributeValue",
    "ClaimSet",
    "GroupRecord",
    "IdentityRecord",
    "NormalizedIdentity",
    "all_values",
    "first_value",
    "lookup",
    "map_identity",
    "normalize_attributes",
]
