"""Identity domain types shared by the protocol handlers and directory sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

AttributeValue = str | list[str]


@dataclass
class ClaimSet:
    """The inputs role resolution evaluates against."""

    groups: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, AttributeValue] = field(default_factory=dict)


@dataclass
class NormalizedIdentity:
    """Provider-independent view of an external identity.

    Produced by the SAML/OIDC handlers and by directory fetches, consumed
    by role resolution. Never persisted as-is.
    """

    external_id: str
    email: str
    display_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    picture: str | None = None
    groups: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, AttributeValue] = field(default_factory=dict)

    def claims(self) -> ClaimSet:
        """Get the claim set used for role resolution."""
        return ClaimSet(
            groups=list(self.groups),
            roles=list(self.roles),
            attributes=dict(self.attributes),
        )


@dataclass
class AttributeMapping:
    """Maps normalized identity fields to provider claim/attribute names.

    Names may be dotted paths (``realm_access.roles``) to reach nested
    claims in OIDC payloads.
    """

    email: str = "email"
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    groups: str | None = "groups"
    roles: str | None = "roles"
    picture: str | None = None

    @classmethod
    def oidc_defaults(cls) -> AttributeMapping:
        """Standard OIDC claim names."""
        return cls(
            email="email",
            first_name="given_name",
            last_name="family_name",
            display_name="name",
            groups="groups",
            roles="roles",
            picture="picture",
        )

    @classmethod
    def saml_defaults(cls) -> AttributeMapping:
        """Common SAML attribute names."""
        return cls(
            email="email",
            first_name="firstName",
            last_name="lastName",
            display_name="displayName",
            groups="groups",
            roles="roles",
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, default: AttributeMapping) -> AttributeMapping:
        """Build a mapping from stored JSON, filling gaps from ``default``."""
        if not data:
            return default
        return cls(
            email=data.get("email") or default.email,
            first_name=data.get("first_name", default.first_name),
            last_name=data.get("last_name", default.last_name),
            display_name=data.get("display_name", default.display_name),
            groups=data.get("groups", default.groups),
            roles=data.get("roles", default.roles),
            picture=data.get("picture", default.picture),
        )

    def to_dict(self) -> dict[str, str | None]:
        """Convert to a JSON-serializable dict."""
        return {
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "groups": self.groups,
            "roles": self.roles,
            "picture": self.picture,
        }


@dataclass
class IdentityRecord:
    """A local user linked to an external identity."""

    id: UUID
    tenant_id: UUID
    external_id: str
    email: str
    display_name: str | None
    first_name: str | None
    last_name: str | None
    is_active: bool
    source: str
    groups: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    assigned_roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    mappings_applied: list[UUID] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def claims(self) -> ClaimSet:
        """Get the stored claim set used for role resolution."""
        return ClaimSet(
            groups=list(self.groups),
            roles=list(self.roles),
            attributes=dict(self.attributes),
        )


@dataclass
class GroupRecord:
    """A local group linked to an external directory group."""

    id: UUID
    tenant_id: UUID
    external_id: str
    name: str
    is_active: bool
    source: str
    attributes: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
