"""SCIM 2.0 inbound provisioning.

An identity provider pushes users and groups to the SCIM endpoints and
this service applies them to the identity store. The resource ``id``
handed back to the client is the record's UUID. Deleting a user only
deactivates it; deleting a group soft-deletes it and drops its
memberships. Role mappings are re-applied to every user whose profile
or group membership changed.

Each applied change is written to the audit log under
``SCIM_PROVISIONING``, which serves as the provisioning sync log.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from idbridge.adapters.directory.scim_schemas import (
    SCIMGroup,
    SCIMGroupMember,
    SCIMListResponse,
    SCIMName,
    SCIMPatchOp,
    SCIMPatchOperation,
    SCIMUser,
    SCIMUserEmail,
    parse_patch_request,
)
from idbridge.core.audit import SCIM_PROVISIONING, AuditLogCreate
from idbridge.core.exceptions import ConflictError, InvalidRequestError, NotFoundError
from idbridge.core.identity import NormalizedIdentity, normalize_attributes

if TYPE_CHECKING:
    from idbridge.core.audit import AuditLogEntry
    from idbridge.core.identity import GroupRecord, IdentityRecord
    from idbridge.core.interfaces import AuditLog, IdentityStore
    from idbridge.core.rbac.service import RoleMappingService

logger = structlog.get_logger()

# Source label of users and groups created through provisioning
PROVISIONING_SOURCE = "scim_provisioning"

# Attribute holding the client's userName when it differs from the email
USER_NAME_ATTRIBUTE = "userName"

_EQ_FILTER = re.compile(r'^\s*([\w.]+)\s+eq\s+"([^"]*)"\s*$', re.IGNORECASE)
_MEMBER_PATH = re.compile(r'^members\[\s*value\s+eq\s+"([^"]+)"\s*\]$', re.IGNORECASE)

# Patchable user paths, lower-cased, mapped to profile fields
_USER_PATHS = {
    "active": "active",
    "username": "user_name",
    "displayname": "display_name",
    "name.givenname": "first_name",
    "name.familyname": "last_name",
    "emails": "email",
    'emails[type eq "work"].value': "email",
}
_REQUIRED_USER_FIELDS = frozenset({"active", "user_name", "email"})


class SCIMOperation(str, Enum):
    """Kind of change recorded in the provisioning log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class _Profile:
    """Mutable user fields a PATCH request works on."""

    user_name: str
    email: str
    display_name: str | None
    first_name: str | None
    last_name: str | None
    active: bool

    @classmethod
    def of(cls, record: IdentityRecord) -> _Profile:
        return cls(
            user_name=str(record.attributes.get(USER_NAME_ATTRIBUTE) or record.email),
            email=record.email,
            display_name=record.display_name,
            first_name=record.first_name,
            last_name=record.last_name,
            active=record.is_active,
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _email_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        emails = [
            SCIMUserEmail.from_dict(e) for e in value if isinstance(e, dict) and e.get("value")
        ]
        if emails:
            primary = [e.value for e in emails if e.primary]
            return primary[0] if primary else emails[0].value
    raise InvalidRequestError(f"Invalid email value: {value!r}")


def _targets(operation: SCIMPatchOperation) -> Iterator[tuple[str, Any]]:
    """Yield (path, value) pairs, expanding a path-less object value."""
    if operation.path:
        yield operation.path, operation.value
        return
    if not isinstance(operation.value, dict):
        raise InvalidRequestError("A patch operation without path needs an object value")
    for key, value in operation.value.items():
        if key == "name" and isinstance(value, dict):
            for part, part_value in value.items():
                yield f"name.{part}", part_value
        else:
            yield key, value


def parse_filter(expression: str | None) -> tuple[str, str] | None:
    """Parse a single ``attribute eq "value"`` filter.

    Returns:
        The lower-cased attribute and the value, or None without a filter.

    Raises:
        InvalidRequestError: If the filter is not a supported equality.
    """
    if not expression:
        return None
    match = _EQ_FILTER.match(expression)
    if match is None:
        raise InvalidRequestError(f"Unsupported filter: {expression}")
    return match.group(1).lower(), match.group(2)


def _page(items: list[Any], start_index: int, count: int) -> list[Any]:
    start = max(start_index, 1) - 1
    return items[start : start + max(count, 0)]


class SCIMProvisioningService:
    """Applies SCIM 2.0 provisioning requests to the identity store."""

    def __init__(
        self,
        identities: IdentityStore,
        roles: RoleMappingService,
        audit: AuditLog,
        base_url: str,
    ) -> None:
        """Initialize the service.

        Args:
            identities: Identity record storage.
            roles: Role mapping service applied after changes.
            audit: Audit trail, also used as the provisioning log.
            base_url: Public SCIM base URL, used for resource locations.
        """
        self._identities = identities
        self._roles = roles
        self._audit = audit
        self._base_url = base_url.rstrip("/")

    # Users

    async def list_users(
        self,
        tenant_id: UUID,
        filter_expression: str | None = None,
        start_index: int = 1,
        count: int = 100,
    ) -> SCIMListResponse:
        """List users, optionally filtered by ``userName`` or ``externalId``.

        Raises:
            InvalidRequestError: If the filter is not supported.
        """
        condition = parse_filter(filter_expression)
        users = sorted(
            await self._identities.list_users(tenant_id),
            key=lambda user: (user.created_at is None, user.created_at, str(user.id)),
        )
        if condition is not None:
            attribute, value = condition
            if attribute == "username":
                users = [
                    u for u in users if _Profile.of(u).user_name.lower() == value.lower()
                ]
            elif attribute == "externalid":
                users = [u for u in users if u.external_id == value]
            else:
                raise InvalidRequestError(f"Unsupported filter attribute: {attribute}")

        page = _page(users, start_index, count)
        return SCIMListResponse(
            resources=[self._render_user(user).to_dict() for user in page],
            total_results=len(users),
            start_index=max(start_index, 1),
            items_per_page=len(page),
        )

    async def get_user(self, tenant_id: UUID, user_id: UUID) -> SCIMUser:
        """Get a user resource.

        Raises:
            NotFoundError: If the user does not exist in the tenant.
        """
        return self._render_user(await self._require_user(tenant_id, user_id))

    async def create_user(self, tenant_id: UUID, payload: dict[str, Any]) -> SCIMUser:
        """Create a user from a pushed User resource.

        A previously deleted (inactive) user with the same external ID is
        reactivated instead.

        Raises:
            InvalidRequestError: If ``userName`` is missing.
            ConflictError: If an active user has the same external ID or email.
        """
        scim_user = self._parse_user(payload)
        external_id = scim_user.external_id or scim_user.user_name
        identity = self._identity(scim_user, external_id)

        existing: IdentityRecord | None = None
        for user in await self._identities.list_users(tenant_id):
            same_email = user.email.lower() == identity.email.lower()
            if user.external_id == external_id or same_email:
                if user.is_active:
                    raise ConflictError(f"User already exists: {identity.email}")
                if user.external_id == external_id:
                    existing = user

        if existing is not None:
            record = await self._identities.update_user(
                existing.id, identity, is_active=scim_user.active
            )
        else:
            record = await self._identities.create_user(
                tenant_id, identity, PROVISIONING_SOURCE, is_active=scim_user.active
            )
        await self._log(tenant_id, SCIMOperation.CREATE, "user", record.id, external_id)
        await self._refresh_roles(tenant_id, [record.external_id])
        return self._render_user(await self._require_user(tenant_id, record.id))

    async def replace_user(
        self, tenant_id: UUID, user_id: UUID, payload: dict[str, Any]
    ) -> SCIMUser:
        """Replace a user's profile (PUT).

        The external ID is fixed at creation and is not changed.

        Raises:
            NotFoundError: If the user does not exist in the tenant.
            InvalidRequestError: If ``userName`` is missing.
        """
        current = await self._require_user(tenant_id, user_id)
        scim_user = self._parse_user(payload)
        identity = self._identity(scim_user, current.external_id)
        identity.groups = list(current.groups)

        await self._identities.update_user(current.id, identity, is_active=scim_user.active)
        await self._log(
            tenant_id, SCIMOperation.UPDATE, "user", current.id, current.external_id
        )
        await self._refresh_roles(tenant_id, [current.external_id])
        return self._render_user(await self._require_user(tenant_id, user_id))

    async def patch_user(
        self, tenant_id: UUID, user_id: UUID, payload: dict[str, Any]
    ) -> SCIMUser:
        """Apply a PatchOp message to a user.

        Supported paths are ``active``, ``userName``, ``displayName``,
        ``name.givenName``, ``name.familyName`` and the work email.
        Operations without a path take an object of those attributes.
        Unknown attributes are ignored.

        Raises:
            NotFoundError: If the user does not exist in the tenant.
            InvalidRequestError: If the message or an operation is invalid.
        """
        current = await self._require_user(tenant_id, user_id)
        profile = _Profile.of(current)
        for operation in self._parse_patch(payload):
            for path, value in _targets(operation):
                self._patch_profile(profile, operation.op, path, value)

        attributes = dict(current.attributes)
        attributes[USER_NAME_ATTRIBUTE] = profile.user_name
        identity = NormalizedIdentity(
            external_id=current.external_id,
            email=profile.email,
            display_name=profile.display_name,
            first_name=profile.first_name,
            last_name=profile.last_name,
            groups=list(current.groups),
            roles=list(current.roles),
            attributes=attributes,
        )
        await self._identities.update_user(current.id, identity, is_active=profile.active)
        await self._log(
            tenant_id, SCIMOperation.UPDATE, "user", current.id, current.external_id
        )
        await self._refresh_roles(tenant_id, [current.external_id])
        return self._render_user(await self._require_user(tenant_id, user_id))

    async def delete_user(self, tenant_id: UUID, user_id: UUID) -> None:
        """Deactivate a user. The record and its history are kept.

        Raises:
            NotFoundError: If the user does not exist in the tenant.
        """
        current = await self._require_user(tenant_id, user_id)
        await self._identities.deactivate_user(current.id)
        await self._log(
            tenant_id, SCIMOperation.DELETE, "user", current.id, current.external_id
        )

    # Groups

    async def list_groups(
        self,
        tenant_id: UUID,
        filter_expression: str | None = None,
        start_index: int = 1,
        count: int = 100,
    ) -> SCIMListResponse:
        """List provisioned groups, optionally filtered by ``displayName``.

        Raises:
            InvalidRequestError: If the filter is not supported.
        """
        condition = parse_filter(filter_expression)
        groups = [
            group
            for group in await self._identities.list_groups(tenant_id, PROVISIONING_SOURCE)
            if group.is_active
        ]
        groups.sort(key=lambda group: (group.created_at is None, group.created_at, str(group.id)))
        if condition is not None:
            attribute, value = condition
            if attribute != "displayname":
                raise InvalidRequestError(f"Unsupported filter attribute: {attribute}")
            groups = [g for g in groups if g.name.lower() == value.lower()]

        page = _page(groups, start_index, count)
        members = await self._members_by_group(tenant_id)
        return SCIMListResponse(
            resources=[self._render_group(group, members).to_dict() for group in page],
            total_results=len(groups),
            start_index=max(start_index, 1),
            items_per_page=len(page),
        )

    async def get_group(self, tenant_id: UUID, group_id: UUID) -> SCIMGroup:
        """Get a group resource with its members.

        Raises:
            NotFoundError: If the group does not exist or was deleted.
        """
        group = await self._require_group(tenant_id, group_id)
        return self._render_group(group, await self._members_by_group(tenant_id))

    async def create_group(self, tenant_id: UUID, payload: dict[str, Any]) -> SCIMGroup:
        """Create a group and its initial members.

        Raises:
            InvalidRequestError: If ``displayName`` is missing or a member is unknown.
            ConflictError: If an active group has the same name.
        """
        scim_group = self._parse_group(payload)
        for group in await self._identities.list_groups(tenant_id, PROVISIONING_SOURCE):
            if group.is_active and group.name.lower() == scim_group.display_name.lower():
                raise ConflictError(f"Group already exists: {scim_group.display_name}")
        members = await self._resolve_members(tenant_id, scim_group.members)

        group = await self._identities.create_group(
            tenant_id,
            str(uuid4()),
            scim_group.display_name,
            PROVISIONING_SOURCE,
            self._group_attributes(scim_group.external_id),
        )
        for user in members:
            await self._identities.add_membership(
                tenant_id, PROVISIONING_SOURCE, user.external_id, group.external_id
            )
        await self._log(
            tenant_id,
            SCIMOperation.CREATE,
            "group",
            group.id,
            scim_group.external_id or scim_group.display_name,
        )
        await self._refresh_roles(tenant_id, [user.external_id for user in members])
        return await self.get_group(tenant_id, group.id)

    async def replace_group(
        self, tenant_id: UUID, group_id: UUID, payload: dict[str, Any]
    ) -> SCIMGroup:
        """Replace a group's name and, when sent, its full member list (PUT).

        Raises:
            NotFoundError: If the group does not exist or was deleted.
            InvalidRequestError: If ``displayName`` is missing or a member is unknown.
        """
        group = await self._require_group(tenant_id, group_id)
        scim_group = self._parse_group(payload)
        affected: set[str] = set()

        await self._identities.update_group(
            group.id, scim_group.display_name, self._group_attributes(scim_group.external_id)
        )
        if group.name != scim_group.display_name:
            affected |= await self._member_ids(tenant_id, group)
        if "members" in payload:
            members = await self._resolve_members(tenant_id, scim_group.members)
            affected |= await self._set_members(
                tenant_id, group, {user.external_id for user in members}
            )

        await self._log(
            tenant_id,
            SCIMOperation.UPDATE,
            "group",
            group.id,
            scim_group.external_id or scim_group.display_name,
        )
        await self._refresh_roles(tenant_id, affected)
        return await self.get_group(tenant_id, group.id)

    async def patch_group(
        self, tenant_id: UUID, group_id: UUID, payload: dict[str, Any]
    ) -> SCIMGroup:
        """Apply a PatchOp message to a group.

        Supports adding, removing and replacing ``members`` (including the
        ``members[value eq "id"]`` form of remove) and replacing
        ``displayName`` or ``externalId``.

        Raises:
            NotFoundError: If the group does not exist or was deleted.
            InvalidRequestError: If the message or an operation is invalid.
        """
        group = await self._require_group(tenant_id, group_id)
        operations = self._parse_patch(payload)
        members = await self._member_ids(tenant_id, group)
        name = group.name
        external_id = group.attributes.get("externalId")

        for operation in operations:
            for path, value in _targets(operation):
                member_match = _MEMBER_PATH.match(path)
                key = path.lower()
                if member_match and operation.op == SCIMPatchOp.REMOVE:
                    members -= await self._external_ids(tenant_id, [member_match.group(1)])
                elif key == "members":
                    members = await self._patch_members(tenant_id, members, operation.op, value)
                elif key == "displayname" and operation.op != SCIMPatchOp.REMOVE:
                    if not isinstance(value, str) or not value:
                        raise InvalidRequestError("displayName must be a non-empty string")
                    name = value
                elif key == "externalid":
                    external_id = None if operation.op == SCIMPatchOp.REMOVE else value
                else:
                    logger.debug("scim_patch_path_ignored", group_id=str(group_id), path=path)

        affected: set[str] = set()
        if name != group.name or external_id != group.attributes.get("externalId"):
            await self._identities.update_group(
                group.id, name, self._group_attributes(external_id)
            )
            if name != group.name:
                affected |= members | await self._member_ids(tenant_id, group)
        affected |= await self._set_members(tenant_id, group, members)

        await self._log(
            tenant_id, SCIMOperation.UPDATE, "group", group.id, external_id or name
        )
        await self._refresh_roles(tenant_id, affected)
        return await self.get_group(tenant_id, group.id)

    async def delete_group(self, tenant_id: UUID, group_id: UUID) -> None:
        """Soft-delete a group and drop its memberships.

        Raises:
            NotFoundError: If the group does not exist or was deleted.
        """
        group = await self._require_group(tenant_id, group_id)
        affected = await self._member_ids(tenant_id, group)
        await self._identities.delete_group(group.id)
        await self._log(
            tenant_id,
            SCIMOperation.DELETE,
            "group",
            group.id,
            group.attributes.get("externalId") or group.name,
        )
        await self._refresh_roles(tenant_id, affected)

    # Sync log

    async def list_sync_logs(self, tenant_id: UUID, limit: int = 100) -> list[AuditLogEntry]:
        """List the tenant's provisioning changes, newest first."""
        entries, _ = await self._audit.list(tenant_id, limit=limit, action=SCIM_PROVISIONING)
        return entries

    # Helpers

    @staticmethod
    def _parse_user(payload: dict[str, Any]) -> SCIMUser:
        try:
            return SCIMUser.from_request(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid User resource: {e}") from e

    @staticmethod
    def _parse_group(payload: dict[str, Any]) -> SCIMGroup:
        try:
            group = SCIMGroup.from_request(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidRequestError(f"Invalid Group resource: {e}") from e
        if not group.display_name:
            raise InvalidRequestError("displayName is required")
        return group

    @staticmethod
    def _parse_patch(payload: dict[str, Any]) -> list[SCIMPatchOperation]:
        try:
            return parse_patch_request(payload)
        except ValueError as e:
            raise InvalidRequestError(f"Invalid PatchOp message: {e}") from e

    @staticmethod
    def _identity(scim_user: SCIMUser, external_id: str) -> NormalizedIdentity:
        user = scim_user.to_directory_user()
        attributes = normalize_attributes(user.attributes)
        attributes[USER_NAME_ATTRIBUTE] = scim_user.user_name
        return NormalizedIdentity(
            external_id=external_id,
            email=user.email,
            display_name=user.display_name,
            first_name=user.first_name,
            last_name=user.last_name,
            roles=list(user.roles),
            attributes=attributes,
        )

    @staticmethod
    def _patch_profile(profile: _Profile, op: SCIMPatchOp, path: str, value: Any) -> None:
        field_name = _USER_PATHS.get(path.lower())
        if field_name is None:
            logger.debug("scim_patch_path_ignored", path=path)
            return
        if op == SCIMPatchOp.REMOVE:
            if field_name in _REQUIRED_USER_FIELDS:
                raise InvalidRequestError(f"Cannot remove required attribute: {path}")
            setattr(profile, field_name, None)
        elif field_name == "active":
            profile.active = _to_bool(value)
        elif field_name == "email":
            profile.email = _email_value(value)
        else:
            if value is not None and not isinstance(value, str):
                raise InvalidRequestError(f"{path} must be a string")
            if field_name == "user_name" and not value:
                raise InvalidRequestError("userName must not be empty")
            setattr(profile, field_name, value)

    async def _require_user(self, tenant_id: UUID, user_id: UUID) -> IdentityRecord:
        user = await self._identities.get_user(user_id)
        if user is None or user.tenant_id != tenant_id:
            raise NotFoundError(f"User not found: {user_id}")
        return user

    async def _require_group(self, tenant_id: UUID, group_id: UUID) -> GroupRecord:
        for group in await self._identities.list_groups(tenant_id, PROVISIONING_SOURCE):
            if group.id == group_id and group.is_active:
                return group
        raise NotFoundError(f"Group not found: {group_id}")

    async def _external_ids(self, tenant_id: UUID, user_ids: Iterable[str]) -> set[str]:
        """Map resource IDs of users to external IDs, failing on unknown users."""
        by_id = {str(user.id): user for user in await self._identities.list_users(tenant_id)}
        external_ids: set[str] = set()
        for user_id in user_ids:
            user = by_id.get(user_id)
            if user is None:
                raise InvalidRequestError(f"Unknown group member: {user_id}")
            external_ids.add(user.external_id)
        return external_ids

    async def _resolve_members(
        self, tenant_id: UUID, members: list[SCIMGroupMember]
    ) -> list[IdentityRecord]:
        by_id = {str(user.id): user for user in await self._identities.list_users(tenant_id)}
        resolved: list[IdentityRecord] = []
        for member in members:
            user = by_id.get(member.value)
            if user is None:
                raise InvalidRequestError(f"Unknown group member: {member.value}")
            resolved.append(user)
        return resolved

    async def _patch_members(
        self, tenant_id: UUID, members: set[str], op: SCIMPatchOp, value: Any
    ) -> set[str]:
        if op == SCIMPatchOp.REMOVE and value is None:
            return set()
        if not isinstance(value, list):
            raise InvalidRequestError("members must be a list")
        try:
            refs = [SCIMGroupMember.from_dict(m).value for m in value]
        except (KeyError, TypeError) as e:
            raise InvalidRequestError(f"Invalid member reference: {e}") from e
        external_ids = await self._external_ids(tenant_id, refs)
        if op == SCIMPatchOp.ADD:
            return members | external_ids
        if op == SCIMPatchOp.REMOVE:
            return members - external_ids
        return external_ids

    async def _member_ids(self, tenant_id: UUID, group: GroupRecord) -> set[str]:
        memberships = await self._identities.list_memberships(tenant_id, PROVISIONING_SOURCE)
        return {user_id for user_id, group_id in memberships if group_id == group.external_id}

    async def _set_members(
        self, tenant_id: UUID, group: GroupRecord, wanted: set[str]
    ) -> set[str]:
        """Make the group's members exactly ``wanted``. Returns the users changed."""
        current = await self._member_ids(tenant_id, group)
        for user_id in wanted - current:
            await self._identities.add_membership(
                tenant_id, PROVISIONING_SOURCE, user_id, group.external_id
            )
        for user_id in current - wanted:
            await self._identities.remove_membership(
                tenant_id, PROVISIONING_SOURCE, user_id, group.external_id
            )
        return wanted ^ current

    async def _members_by_group(self, tenant_id: UUID) -> dict[str, list[IdentityRecord]]:
        by_external_id = {
            user.external_id: user for user in await self._identities.list_users(tenant_id)
        }
        members: dict[str, list[IdentityRecord]] = {}
        memberships = await self._identities.list_memberships(tenant_id, PROVISIONING_SOURCE)
        for user_id, group_id in sorted(memberships):
            user = by_external_id.get(user_id)
            if user is not None:
                members.setdefault(group_id, []).append(user)
        return members

    async def _refresh_roles(self, tenant_id: UUID, user_external_ids: Iterable[str]) -> None:
        """Re-apply role mappings with provisioned group names merged into the claims."""
        targets = set(user_external_ids)
        if not targets:
            return
        group_names = {
            group.external_id: group.name
            for group in await self._identities.list_groups(tenant_id, PROVISIONING_SOURCE)
            if group.is_active
        }
        memberships = await self._identities.list_memberships(tenant_id, PROVISIONING_SOURCE)
        groups_by_user: dict[str, list[str]] = {}
        for user_id, group_id in sorted(memberships):
            name = group_names.get(group_id)
            if name is not None:
                groups_by_user.setdefault(user_id, []).append(name)

        for external_id in sorted(targets):
            user = await self._identities.get_user_by_external_id(tenant_id, external_id)
            if user is None or not user.is_active:
                continue
            claims = user.claims()
            for name in groups_by_user.get(external_id, []):
                if name not in claims.groups:
                    claims.groups.append(name)
            await self._roles.assign_roles_to_user(tenant_id, user.id, claims)

    async def _log(
        self,
        tenant_id: UUID,
        operation: SCIMOperation,
        resource_type: str,
        resource_id: UUID,
        external_id: str,
    ) -> None:
        await self._audit.record(
            AuditLogCreate(
                tenant_id=tenant_id,
                action=SCIM_PROVISIONING,
                resource_type=resource_type,
                resource_id=resource_id,
                resource_name=external_id,
                metadata={"operation": operation.value, "success": True},
            )
        )
        logger.info(
            "scim_provisioning_applied",
            tenant_id=str(tenant_id),
            operation=operation.value,
            resource_type=resource_type,
            resource_id=str(resource_id),
        )

    @staticmethod
    def _group_attributes(external_id: str | None) -> dict[str, Any]:
        return {"externalId": external_id} if external_id else {}

    def _render_user(self, record: IdentityRecord) -> SCIMUser:
        profile = _Profile.of(record)
        formatted = " ".join(p for p in (record.first_name, record.last_name) if p) or None
        return SCIMUser(
            id=str(record.id),
            user_name=profile.user_name,
            active=record.is_active,
            name=SCIMName(
                formatted=formatted,
                family_name=record.last_name,
                given_name=record.first_name,
            ),
            emails=[SCIMUserEmail(value=record.email, primary=True)],
            display_name=record.display_name,
            external_id=record.external_id,
            roles=list(record.roles),
            attributes=dict(record.attributes),
            last_modified=record.updated_at,
            created=record.created_at,
            location=f"{self._base_url}/Users/{record.id}",
        )

    def _render_group(
        self, group: GroupRecord, members: dict[str, list[IdentityRecord]]
    ) -> SCIMGroup:
        return SCIMGroup(
            id=str(group.id),
            display_name=group.name,
            members=[
                SCIMGroupMember(value=str(user.id), display=user.display_name or user.email)
                for user in members.get(group.external_id, [])
            ],
            external_id=group.attributes.get("externalId"),
            last_modified=group.updated_at,
            created=group.created_at,
            location=f"{self._base_url}/Groups/{group.id}",
        )
