"""Base class for HTTP directory sources."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx

from idbridge.adapters.http import TRANSIENT_ERRORS, build_client, get_with_retry
from idbridge.core.config import Settings, get_settings
from idbridge.core.exceptions import ConfigurationError, DirectorySourceError
from idbridge.core.sync.types import DirectoryGroup, DirectoryUser

logger = logging.getLogger(__name__)


class BaseDirectorySource(ABC):
    """Shared plumbing for directory sources reached over HTTP.

    Subclasses implement the fetches and the modified-since filter. Any
    network or HTTP failure is raised as DirectorySourceError, which
    aborts the sync job.
    """

    #: Keys that must be present in the source config
    required_config: tuple[str, ...] = ("base_url", "token")

    def __init__(
        self,
        config: dict[str, Any],
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            config: Source connection settings from the sync configuration.
            client: HTTP client. One is created if omitted.
            settings: Settings for timeouts, retries and page size.

        Raises:
            ConfigurationError: If a required key is missing.
        """
        missing = [key for key in self.required_config if not config.get(key)]
        if missing:
            raise ConfigurationError(
                f"{type(self).__name__} config missing: {', '.join(missing)}"
            )
        self._config = config
        self._settings = settings or get_settings()
        self._client = client or build_client(self._settings)
        self._base_url = str(config["base_url"]).rstrip("/")
        self._page_size = int(config.get("page_size") or self._settings.sync_page_size)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    @abstractmethod
    async def fetch_users(self, filter_expr: str | None = None) -> list[DirectoryUser]:
        """Fetch all users matching an optional filter."""

    @abstractmethod
    async def fetch_groups(self, filter_expr: str | None = None) -> list[DirectoryGroup]:
        """Fetch all groups with their member IDs."""

    @abstractmethod
    def modified_since_filter(self, since: datetime) -> str:
        """Build a filter for records changed after ``since``."""

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        """Headers authenticating every request."""

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        """GET with retry, raising DirectorySourceError on failure."""
        try:
            response = await get_with_retry(
                self._client,
                url,
                retries=self._settings.http_retries,
                params=params,
                headers={"Accept": "application/json", **self._auth_headers()},
            )
            response.raise_for_status()
        except TRANSIENT_ERRORS as e:
            raise DirectorySourceError(f"Directory request to {url} failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise DirectorySourceError(
                f"Directory request to {url} failed: HTTP {e.response.status_code}"
            ) from e
        return response

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._get(url, params)
        try:
            return response.json()
        except ValueError as e:
            raise DirectorySourceError(f"Directory response from {url} is not JSON") from e
