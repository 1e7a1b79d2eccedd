"""Domain-specific exceptions.

All exceptions in idbridge inherit from IdBridgeError, making it easy
to catch all system errors while still being able to handle specific
error types.

Protocol and security rejections never expose which validation step
failed: ``str(error)`` is a generic message, while the detailed reason
is kept on the exception for internal logging.
"""

from __future__ import annotations

GENERIC_AUTH_FAILURE = "Authentication failed"


class IdBridgeError(Exception):
    """Base exception for all idbridge errors."""

    pass


class ConfigurationError(IdBridgeError):
    """Provider or sync configuration is missing, disabled or malformed.

    Raised before any network call is made so administrators can tell
    setup problems apart from protocol failures.
    """

    pass


class InvalidMappingError(ConfigurationError):
    """A role mapping rule cannot be evaluated (bad regex, bad source type)."""

    pass


class NotFoundError(IdBridgeError):
    """A configuration, mapping or job does not exist."""

    pass


class AuthenticationError(IdBridgeError):
    """An authentication attempt was rejected.

    Attributes:
        reason: Detailed internal reason. Log it, never return it.
    """

    def __init__(self, reason: str) -> None:
        """Initialize AuthenticationError.

        Args:
            reason: Detailed internal reason for the rejection.
        """
        super().__init__(GENERIC_AUTH_FAILURE)
        self.reason = reason


class SignatureVerificationError(AuthenticationError):
    """An XML or JWT signature did not verify against the trusted key."""

    pass


class IdentityProviderError(IdBridgeError):
    """An IdP endpoint (discovery, token, userinfo, jwks) failed.

    The `retryable` attribute indicates whether the failure was a
    transient network error.
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        """Initialize IdentityProviderError.

        Args:
            message: Error description.
            retryable: Whether error is transient.
        """
        super().__init__(message)
        self.retryable = retryable


class DirectorySourceError(IdBridgeError):
    """The external directory could not be read.

    This is FATAL for a sync job - the job is marked failed and the
    incremental cursor is not advanced.
    """

    pass


class SyncAlreadyRunningError(IdBridgeError):
    """A sync was requested while another job holds the config's guard."""

    def __init__(self, config_id: object) -> None:
        """Initialize SyncAlreadyRunningError.

        Args:
            config_id: The directory sync config that is busy.
        """
        super().__init__(f"Sync job already running for configuration {config_id}")
        self.config_id = config_id


class SyncCancelledError(IdBridgeError):
    """Raised inside a sync job when cancellation was requested."""

    pass


class SyncJobStateError(IdBridgeError):
    """The operation is not valid for the job's current status.

    Cancelling a job that already finished raises this error.
    """

    pass


class InvalidRequestError(IdBridgeError):
    """A provisioning request is malformed.

    Covers missing required attributes, unsupported filters and patch
    operations that cannot be applied.
    """

    pass


class ConflictError(IdBridgeError):
    """A resource with the same unique attribute already exists."""

    pass
