"""Directory sources for sync jobs.

Importing this package registers every built-in source type.
"""

from idbridge.adapters.directory.base import BaseDirectorySource
from idbridge.adapters.directory.okta import OktaDirectorySource
from idbridge.adapters.directory.registry import (
    DirectorySourceRegistry,
    create_source,
    get_source_registry,
    register_source,
)
from idbridge.adapters.directory.scim import SCIMDirectorySource

__all__ = [
    "BaseDirectorySource",
    "DirectorySourceRegistry",
    "OktaDirectorySource",
    "SCIMDirectorySource",
    "create_source",
    "get_source_registry",
    "register_source",
]
