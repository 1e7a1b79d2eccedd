"""Delta computation between a directory snapshot and local records.

Pure functions: nothing here performs I/O. The engine applies the
returned changes record by record.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from idbridge.core.identity.types import GroupRecord, IdentityRecord
from idbridge.core.sync.types import DirectoryGroup, DirectoryUser, SyncType


@dataclass
class UserDelta:
    """Planned user changes."""

    create: list[DirectoryUser] = field(default_factory=list)
    update: list[tuple[IdentityRecord, DirectoryUser]] = field(default_factory=list)
    unchanged: list[DirectoryUser] = field(default_factory=list)
    deactivate: list[IdentityRecord] = field(default_factory=list)


@dataclass
class GroupDelta:
    """Planned group changes."""

    create: list[DirectoryGroup] = field(default_factory=list)
    update: list[tuple[GroupRecord, DirectoryGroup]] = field(default_factory=list)
    unchanged: list[DirectoryGroup] = field(default_factory=list)
    delete: list[GroupRecord] = field(default_factory=list)


@dataclass
class MembershipDelta:
    """Planned membership changes as (user external ID, group external ID)."""

    add: list[tuple[str, str]] = field(default_factory=list)
    remove: list[tuple[str, str]] = field(default_factory=list)
    unknown_member: list[tuple[str, str]] = field(default_factory=list)


def user_differs(local: IdentityRecord, remote: DirectoryUser) -> bool:
    """Check whether a directory user changes any stored field."""
    identity = remote.to_identity()
    return (
        local.email != identity.email
        or local.display_name != identity.display_name
        or local.first_name != identity.first_name
        or local.last_name != identity.last_name
        or local.is_active != remote.active
        or local.groups != identity.groups
        or local.roles != identity.roles
        or local.attributes != identity.attributes
    )


def diff_users(
    remote: list[DirectoryUser],
    local: list[IdentityRecord],
    sync_type: SyncType,
) -> UserDelta:
    """Compare fetched users with stored records.

    Users marked inactive by the directory are updated, not deactivated:
    deactivation only covers users that disappeared, and only a full
    sync can tell that a user disappeared.

    Args:
        remote: Users fetched from the directory.
        local: Stored records of the same tenant and source.
        sync_type: Full or incremental.

    Returns:
        Planned changes.
    """
    delta = UserDelta()
    local_by_id = {record.external_id: record for record in local}
    seen: set[str] = set()

    for user in remote:
        if user.external_id in seen:
            continue
        seen.add(user.external_id)

        record = local_by_id.get(user.external_id)
        if record is None:
            delta.create.append(user)
        elif user_differs(record, user):
            delta.update.append((record, user))
        else:
            delta.unchanged.append(user)

    if sync_type == SyncType.FULL:
        delta.deactivate = [
            record for record in local if record.is_active and record.external_id not in seen
        ]

    return delta


def diff_groups(
    remote: list[DirectoryGroup],
    local: list[GroupRecord],
    sync_type: SyncType,
) -> GroupDelta:
    """Compare fetched groups with stored groups.

    A previously deleted group that reappears is updated, which
    reactivates it.
    """
    delta = GroupDelta()
    local_by_id = {record.external_id: record for record in local}
    seen: set[str] = set()

    for group in remote:
        if group.external_id in seen:
            continue
        seen.add(group.external_id)

        record = local_by_id.get(group.external_id)
        if record is None:
            delta.create.append(group)
        elif record.name != group.display_name or not record.is_active:
            delta.update.append((record, group))
        else:
            delta.unchanged.append(group)

    if sync_type == SyncType.FULL:
        delta.delete = [
            record for record in local if record.is_active and record.external_id not in seen
        ]

    return delta


def diff_memberships(
    remote: list[DirectoryGroup],
    current: set[tuple[str, str]],
    known_users: set[str],
) -> MembershipDelta:
    """Compare member lists of fetched groups with stored memberships.

    Only groups present in ``remote`` are reconciled, so an incremental
    fetch never touches memberships of groups it did not return.

    Args:
        remote: Groups fetched from the directory, with member IDs.
        current: Stored (user external ID, group external ID) pairs.
        known_users: External IDs of users that exist locally.

    Returns:
        Pairs to add, pairs to remove, and pairs naming unknown users.
    """
    delta = MembershipDelta()
    fetched = {group.external_id for group in remote}
    desired: set[tuple[str, str]] = set()

    for group in remote:
        for member_id in group.member_ids:
            pair = (member_id, group.external_id)
            if pair in desired:
                continue
            desired.add(pair)
            if member_id not in known_users:
                delta.unknown_member.append(pair)
            elif pair not in current:
                delta.add.append(pair)

    delta.remove = sorted(
        pair for pair in current if pair[1] in fetched and pair not in desired
    )
    return delta
