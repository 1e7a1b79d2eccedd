"""Okta directory source (Okta Management API)."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from idbridge.adapters.directory.base import BaseDirectorySource
from idbridge.adapters.directory.registry import register_source
from idbridge.adapters.directory.scim_schemas import parse_timestamp
from idbridge.core.exceptions import DirectorySourceError
from idbridge.core.sync.types import DirectoryGroup, DirectorySourceType, DirectoryUser

logger = logging.getLogger(__name__)

# Okta user statuses that mean the account cannot sign in
INACTIVE_STATUSES = frozenset({"DEPROVISIONED", "SUSPENDED"})

_PROFILE_ATTRIBUTES = ("department", "title", "userType", "organization", "division", "costCenter")


def okta_user_to_directory_user(data: dict[str, Any]) -> DirectoryUser:
    """Convert an Okta user object.

    Raises:
        KeyError: If ``id`` is missing.
    """
    profile = data.get("profile") or {}
    login = profile.get("login") or profile.get("email") or ""
    first_name = profile.get("firstName")
    last_name = profile.get("lastName")
    display_name = profile.get("displayName") or " ".join(
        part for part in (first_name, last_name) if part
    )
    return DirectoryUser(
        external_id=str(data["id"]),
        user_name=login,
        email=profile.get("email") or login,
        active=data.get("status") not in INACTIVE_STATUSES,
        display_name=display_name or None,
        first_name=first_name,
        last_name=last_name,
        attributes={name: profile[name] for name in _PROFILE_ATTRIBUTES if profile.get(name)},
        last_modified=parse_timestamp(data.get("lastUpdated")),
    )


@register_source(DirectorySourceType.OKTA)
class OktaDirectorySource(BaseDirectorySource):
    """Reads users and groups from an Okta org.

    Config keys:
        base_url: Org URL, e.g. ``https://example.okta.com``.
        token: API token (sent as ``SSWS``).
        page_size: Optional ``limit`` per page.

    Okta's default user listing leaves out deprovisioned users, so a
    full sync deactivates them locally.
    """

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"SSWS {self._config['token']}"}

    def modified_since_filter(self, since: datetime) -> str:
        """Build a ``lastUpdated gt`` filter."""
        timestamp = since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        return f'lastUpdated gt "{timestamp}"'

    async def fetch_users(self, filter_expr: str | None = None) -> list[DirectoryUser]:
        """Fetch every page of ``/api/v1/users``."""
        users = []
        for item in await self._paginate(f"{self._base_url}/api/v1/users", filter_expr):
            try:
                users.append(okta_user_to_directory_user(item))
            except (KeyError, TypeError) as e:
                raise DirectorySourceError(f"Malformed Okta user: {e!r}") from e
        return users

    async def fetch_groups(self, filter_expr: str | None = None) -> list[DirectoryGroup]:
        """Fetch every page of ``/api/v1/groups`` and each group's members."""
        groups = []
        for item in await self._paginate(f"{self._base_url}/api/v1/groups", filter_expr):
            try:
                group_id = str(item["id"])
                name = (item.get("profile") or {})["name"]
            except (KeyError, TypeError) as e:
                raise DirectorySourceError(f"Malformed Okta group: {e!r}") from e

            members = await self._paginate(f"{self._base_url}/api/v1/groups/{group_id}/users")
            groups.append(
                DirectoryGroup(
                    external_id=group_id,
                    display_name=name,
                    member_ids=[str(m["id"]) for m in members if m.get("id")],
                    attributes={"type": item["type"]} if item.get("type") else {},
                    last_modified=parse_timestamp(item.get("lastUpdated")),
                )
            )
        return groups

    async def _paginate(self, url: str, filter_expr: str | None = None) -> list[dict[str, Any]]:
        first_page: dict[str, Any] = {"limit": self._page_size}
        if filter_expr:
            first_page["filter"] = filter_expr

        params: dict[str, Any] | None = first_page
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        while next_url:
            response = await self._get(next_url, params)
            try:
                page = response.json()
            except ValueError as e:
                raise DirectorySourceError(f"Okta response from {next_url} is not JSON") from e
            if not isinstance(page, list):
                raise DirectorySourceError(f"Okta response from {next_url} is not a list")
            items.extend(item for item in page if isinstance(item, dict))

            # The next link already carries limit, filter and cursor
            next_url = response.links.get("next", {}).get("url")
            params = None
        return items
