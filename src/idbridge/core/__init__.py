"""Core domain - pure business logic with zero external I/O dependencies."""

from idbridge.core.config import Settings, get_settings
from idbridge.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DirectorySourceError,
    IdBridgeError,
    IdentityProviderError,
    InvalidMappingError,
    NotFoundError,
    SignatureVerificationError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncJobStateError,
)

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DirectorySourceError",
    "IdBridgeError",
    "IdentityProviderError",
    "InvalidMappingError",
    "NotFoundError",
    "Settings",
    "SignatureVerificationError",
    "SyncAlreadyRunningError",
    "SyncCancelledError",
    "SyncJobStateError",
    "get_settings",
]
