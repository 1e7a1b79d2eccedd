"""SCIM 2.0 resource parsing.

Based on RFC 7643 (SCIM Core Schema) and RFC 7644 (SCIM Protocol).
Resources pulled from a directory are converted into directory records;
the provisioning service parses pushed resources and PatchOp messages
and renders identity records back as SCIM JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from idbridge.core.sync.types import DirectoryGroup, DirectoryUser

# SCIM Schema URNs
SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_GROUP_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:Group"
SCIM_ENTERPRISE_USER_SCHEMA = "urn:ietf:params:scim:schemas:extension:enterprise:2.0:User"
SCIM_LIST_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"

# Simple user attributes copied into the attribute bag
_USER_ATTRIBUTES = ("title", "userType", "locale", "preferredLanguage", "timezone")
_ENTERPRISE_ATTRIBUTES = (
    "employeeNumber",
    "costCenter",
    "organization",
    "division",
    "department",
)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp, returning None when absent or invalid."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _values(items: Any, key: str = "value") -> list[str]:
    if not isinstance(items, list):
        return []
    return [str(item[key]) for item in items if isinstance(item, dict) and item.get(key)]


def _meta(
    resource_type: str,
    created: datetime | None,
    last_modified: datetime | None,
    location: str | None,
) -> dict[str, Any]:
    meta: dict[str, Any] = {"resourceType": resource_type}
    if created:
        meta["created"] = created.isoformat()
    if last_modified:
        meta["lastModified"] = last_modified.isoformat()
    if location:
        meta["location"] = location
    return meta


@dataclass
class SCIMName:
    """SCIM user name component."""

    formatted: str | None = None
    family_name: str | None = None
    given_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SCIMName | None:
        """Parse from SCIM JSON."""
        if not data:
            return None
        return cls(
            formatted=data.get("formatted"),
            family_name=data.get("familyName"),
            given_name=data.get("givenName"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format."""
        result: dict[str, Any] = {}
        if self.formatted:
            result["formatted"] = self.formatted
        if self.family_name:
            result["familyName"] = self.family_name
        if self.given_name:
            result["givenName"] = self.given_name
        return result


@dataclass
class SCIMUserEmail:
    """SCIM user email address."""

    value: str
    primary: bool = False
    type: str = "work"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMUserEmail:
        """Parse from SCIM JSON."""
        return cls(
            value=data["value"],
            primary=bool(data.get("primary", False)),
            type=data.get("type") or "work",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format."""
        return {
            "value": self.value,
            "primary": self.primary,
            "type": self.type,
        }


@dataclass
class SCIMGroupMember:
    """SCIM group member reference."""

    value: str  # User ID
    display: str | None = None
    type: str = "User"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMGroupMember:
        """Parse from SCIM JSON."""
        return cls(
            value=str(data["value"]),
            display=data.get("display"),
            type=data.get("type") or "User",
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format."""
        result: dict[str, Any] = {"value": self.value, "type": self.type}
        if self.display:
            result["display"] = self.display
        return result


@dataclass
class SCIMUser:
    """SCIM 2.0 User resource."""

    id: str
    user_name: str
    active: bool = True
    name: SCIMName | None = None
    emails: list[SCIMUserEmail] = field(default_factory=list)
    display_name: str | None = None
    external_id: str | None = None
    groups: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    attributes: dict[str, Any] = field(default_factory=dict)
    last_modified: datetime | None = None
    created: datetime | None = None
    location: str | None = None

    @classmethod
    def from_request(cls, data: dict[str, Any]) -> SCIMUser:
        """Parse a User resource pushed by a provisioning client.

        The server assigns the resource ``id``, so any value sent is ignored.

        Raises:
            KeyError: If ``userName`` is missing.
        """
        return cls.from_dict({**data, "id": ""})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMUser:
        """Parse a User resource.

        Raises:
            KeyError: If ``id`` or ``userName`` is missing.
        """
        attributes = {name: data[name] for name in _USER_ATTRIBUTES if data.get(name)}
        enterprise = data.get(SCIM_ENTERPRISE_USER_SCHEMA) or {}
        attributes.update(
            {name: enterprise[name] for name in _ENTERPRISE_ATTRIBUTES if enterprise.get(name)}
        )
        manager = enterprise.get("manager")
        if isinstance(manager, dict) and manager.get("value"):
            attributes["manager"] = manager["value"]

        return cls(
            id=str(data["id"]),
            user_name=data["userName"],
            active=bool(data.get("active", True)),
            name=SCIMName.from_dict(data.get("name")),
            emails=[
                SCIMUserEmail.from_dict(e)
                for e in data.get("emails") or []
                if isinstance(e, dict) and e.get("value")
            ],
            display_name=data.get("displayName"),
            external_id=data.get("externalId"),
            groups=_values(data.get("groups"), "display"),
            roles=_values(data.get("roles")),
            attributes=attributes,
            last_modified=parse_timestamp((data.get("meta") or {}).get("lastModified")),
        )

    @property
    def primary_email(self) -> str | None:
        """The primary email, else the first one."""
        for email in self.emails:
            if email.primary:
                return email.value
        return self.emails[0].value if self.emails else None

    def to_directory_user(self) -> DirectoryUser:
        """Convert to a directory record."""
        return DirectoryUser(
            external_id=self.id,
            user_name=self.user_name,
            email=self.primary_email or self.user_name,
            active=self.active,
            display_name=self.display_name or (self.name.formatted if self.name else None),
            first_name=self.name.given_name if self.name else None,
            last_name=self.name.family_name if self.name else None,
            groups=list(self.groups),
            roles=list(self.roles),
            attributes=dict(self.attributes),
            last_modified=self.last_modified,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format.

        Known user attributes are written at the top level and enterprise
        attributes under the enterprise extension. Other attributes are
        not part of the resource.
        """
        result: dict[str, Any] = {
            "schemas": [SCIM_USER_SCHEMA],
            "id": self.id,
            "userName": self.user_name,
            "active": self.active,
        }
        if self.name and self.name.to_dict():
            result["name"] = self.name.to_dict()
        if self.emails:
            result["emails"] = [e.to_dict() for e in self.emails]
        if self.display_name:
            result["displayName"] = self.display_name
        if self.external_id:
            result["externalId"] = self.external_id
        if self.roles:
            result["roles"] = [{"value": role} for role in self.roles]
        for name in _USER_ATTRIBUTES:
            if self.attributes.get(name):
                result[name] = self.attributes[name]
        enterprise = {
            name: self.attributes[name]
            for name in _ENTERPRISE_ATTRIBUTES
            if self.attributes.get(name)
        }
        if enterprise:
            result["schemas"].append(SCIM_ENTERPRISE_USER_SCHEMA)
            result[SCIM_ENTERPRISE_USER_SCHEMA] = enterprise
        result["meta"] = _meta("User", self.created, self.last_modified, self.location)
        return result


@dataclass
class SCIMGroup:
    """SCIM 2.0 Group resource."""

    id: str
    display_name: str
    members: list[SCIMGroupMember] = field(default_factory=list)
    external_id: str | None = None
    last_modified: datetime | None = None
    created: datetime | None = None
    location: str | None = None

    @classmethod
    def from_request(cls, data: dict[str, Any]) -> SCIMGroup:
        """Parse a Group resource pushed by a provisioning client.

        Raises:
            KeyError: If ``displayName`` is missing.
        """
        return cls.from_dict({**data, "id": ""})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMGroup:
        """Parse a Group resource.

        Raises:
            KeyError: If ``id`` or ``displayName`` is missing.
        """
        return cls(
            id=str(data["id"]),
            display_name=data["displayName"],
            members=[
                SCIMGroupMember.from_dict(m)
                for m in data.get("members") or []
                if isinstance(m, dict) and m.get("value")
            ],
            external_id=data.get("externalId"),
            last_modified=parse_timestamp((data.get("meta") or {}).get("lastModified")),
        )

    def to_directory_group(self) -> DirectoryGroup:
        """Convert to a directory record. Nested group members are dropped."""
        return DirectoryGroup(
            external_id=self.id,
            display_name=self.display_name,
            member_ids=[m.value for m in self.members if m.type == "User"],
            attributes={"externalId": self.external_id} if self.external_id else {},
            last_modified=self.last_modified,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format."""
        result: dict[str, Any] = {
            "schemas": [SCIM_GROUP_SCHEMA],
            "id": self.id,
            "displayName": self.display_name,
            "members": [m.to_dict() for m in self.members],
        }
        if self.external_id:
            result["externalId"] = self.external_id
        result["meta"] = _meta("Group", self.created, self.last_modified, self.location)
        return result


@dataclass
class SCIMListResponse:
    """SCIM list response page."""

    resources: list[dict[str, Any]]
    total_results: int
    start_index: int = 1
    items_per_page: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMListResponse:
        """Parse a ListResponse page."""
        resources = data.get("Resources") or []
        return cls(
            resources=[r for r in resources if isinstance(r, dict)],
            total_results=int(data.get("totalResults", len(resources))),
            start_index=int(data.get("startIndex", 1)),
            items_per_page=int(data.get("itemsPerPage", len(resources))),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to SCIM JSON format."""
        return {
            "schemas": [SCIM_LIST_SCHEMA],
            "totalResults": self.total_results,
            "startIndex": self.start_index,
            "itemsPerPage": self.items_per_page,
            "Resources": self.resources,
        }


class SCIMPatchOp(str, Enum):
    """SCIM patch operation types."""

    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"


@dataclass
class SCIMPatchOperation:
    """SCIM patch operation."""

    op: SCIMPatchOp
    path: str | None = None
    value: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SCIMPatchOperation:
        """Parse one operation. Operation names are case-insensitive.

        Raises:
            ValueError: If the operation name is unknown.
        """
        return cls(
            op=SCIMPatchOp(str(data.get("op", "")).lower()),
            path=data.get("path") or None,
            value=data.get("value"),
        )


def parse_patch_request(data: dict[str, Any]) -> list[SCIMPatchOperation]:
    """Parse a PatchOp message body.

    Raises:
        ValueError: If the body is not a PatchOp message or an operation
            cannot be parsed.
    """
    if SCIM_PATCH_SCHEMA not in (data.get("schemas") or []):
        raise ValueError(f"Expected schema {SCIM_PATCH_SCHEMA}")
    operations = data.get("Operations")
    if not isinstance(operations, list) or not operations:
        raise ValueError("Operations must be a non-empty list")
    if not all(isinstance(op, dict) for op in operations):
        raise ValueError("Every operation must be an object")
    return [SCIMPatchOperation.from_dict(op) for op in operations]
