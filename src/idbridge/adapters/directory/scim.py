"""SCIM 2.0 directory source."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from idbridge.adapters.directory.base import BaseDirectorySource
from idbridge.adapters.directory.registry import register_source
from idbridge.adapters.directory.scim_schemas import SCIMGroup, SCIMListResponse, SCIMUser
from idbridge.core.exceptions import DirectorySourceError
from idbridge.core.sync.types import DirectoryGroup, DirectorySourceType, DirectoryUser

logger = logging.getLogger(__name__)


@register_source(DirectorySourceType.SCIM)
class SCIMDirectorySource(BaseDirectorySource):
    """Reads users and groups from a SCIM 2.0 service provider.

    Config keys:
        base_url: SCIM base URL (the one ending in ``/scim/v2``).
        token: Bearer token.
        page_size: Optional ``count`` per page.
    """

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config['token']}"}

    def modified_since_filter(self, since: datetime) -> str:
        """Build a ``meta.lastModified gt`` filter."""
        timestamp = since.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        return f'meta.lastModified gt "{timestamp}"'

    async def fetch_users(self, filter_expr: str | None = None) -> list[DirectoryUser]:
        """Fetch every page of ``/Users``."""
        users = []
        for resource in await self._list("Users", filter_expr):
            try:
                users.append(SCIMUser.from_dict(resource).to_directory_user())
            except (KeyError, TypeError, ValueError) as e:
                raise DirectorySourceError(f"Malformed SCIM user resource: {e!r}") from e
        return users

    async def fetch_groups(self, filter_expr: str | None = None) -> list[DirectoryGroup]:
        """Fetch every page of ``/Groups``, members included."""
        groups = []
        for resource in await self._list("Groups", filter_expr):
            try:
                groups.append(SCIMGroup.from_dict(resource).to_directory_group())
            except (KeyError, TypeError, ValueError) as e:
                raise DirectorySourceError(f"Malformed SCIM group resource: {e!r}") from e
        return groups

    async def _list(self, resource_type: str, filter_expr: str | None) -> list[dict[str, Any]]:
        url = f"{self._base_url}/{resource_type}"
        resources: list[dict[str, Any]] = []
        start_index = 1

        while True:
            params: dict[str, Any] = {"startIndex": start_index, "count": self._page_size}
            if filter_expr:
                params["filter"] = filter_expr
            data = await self._get_json(url, params)
            if not isinstance(data, dict):
                raise DirectorySourceError(f"SCIM {resource_type} response is not a ListResponse")
            try:
                page = SCIMListResponse.from_dict(data)
            except (TypeError, ValueError) as e:
                raise DirectorySourceError(f"Malformed SCIM ListResponse: {e}") from e
            resources.extend(page.resources)

            if not page.resources or start_index + len(page.resources) > page.total_results:
                break
            start_index += len(page.resources)

        logger.debug(f"Fetched {len(resources)} SCIM {resource_type} from {self._base_url}")
        return resources
