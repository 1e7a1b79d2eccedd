"""Directory source registry.

This module provides a singleton registry for registering and creating
directory sources by type.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from idbridge.core.exceptions import ConfigurationError
from idbridge.core.sync.types import DirectorySourceType, DirectorySyncConfig

if TYPE_CHECKING:
    from idbridge.adapters.directory.base import BaseDirectorySource

T = TypeVar("T", bound="BaseDirectorySource")


class DirectorySourceRegistry:
    """Singleton registry mapping source types to source classes."""

    _instance: DirectorySourceRegistry | None = None
    _sources: dict[DirectorySourceType, type[BaseDirectorySource]]

    def __new__(cls) -> DirectorySourceRegistry:
        """Create or return the singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._sources = {}
        return cls._instance

    @classmethod
    def get_instance(cls) -> DirectorySourceRegistry:
        """Get the singleton instance."""
        return cls()

    def register(
        self, source_type: DirectorySourceType, source_class: type[BaseDirectorySource]
    ) -> None:
        """Register a source class for a source type."""
        self._sources[source_type] = source_class

    def create(
        self,
        source_type: DirectorySourceType | str,
        config: dict[str, Any],
        **kwargs: Any,
    ) -> BaseDirectorySource:
        """Create a source instance for a source type.

        Args:
            source_type: The source type (can be string or enum).
            config: Source connection settings.
            **kwargs: Passed to the source constructor (client, settings).

        Returns:
            A new source.

        Raises:
            ConfigurationError: If the type is unknown or not registered.
        """
        try:
            source_type = DirectorySourceType(source_type)
        except ValueError as e:
            raise ConfigurationError(f"Unknown directory source type: {source_type}") from e

        source_class = self._sources.get(source_type)
        if source_class is None:
            raise ConfigurationError(f"No directory source registered for: {source_type.value}")
        return source_class(config, **kwargs)


def register_source(source_type: DirectorySourceType) -> Callable[[type[T]], type[T]]:
    """Decorator to register a directory source class.

    Usage:
        @register_source(DirectorySourceType.SCIM)
        class SCIMDirectorySource(BaseDirectorySource):
            ...
    """

    def decorator(cls: type[T]) -> type[T]:
        DirectorySourceRegistry.get_instance().register(source_type, cls)
        return cls

    return decorator


def get_source_registry() -> DirectorySourceRegistry:
    """Get the global directory source registry."""
    return DirectorySourceRegistry.get_instance()


def create_source(config: DirectorySyncConfig) -> BaseDirectorySource:
    """Build the directory source for a sync configuration.

    Used as the sync engine's source factory.
    """
    return get_source_registry().create(config.source_type, config.source_config)
