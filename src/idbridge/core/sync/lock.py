"""In-process running-job guard."""

from __future__ import annotations

from uuid import UUID


class InMemoryJobLock:
    """JobLock keyed by sync config ID.

    ``acquire`` checks and sets without awaiting in between, so two
    coroutines on the same event loop cannot both take the guard.
    Multi-instance deployments need a shared implementation (an advisory
    lock or a unique row, for example).
    """

    def __init__(self) -> None:
        self._owners: dict[UUID, UUID] = {}

    async def acquire(self, config_id: UUID, owner: UUID) -> bool:
        """Take the guard for a config."""
        if config_id in self._owners:
            return False
        self._owners[config_id] = owner
        return True

    async def release(self, config_id: UUID, owner: UUID) -> bool:
        """Release the guard if ``owner`` holds it."""
        if self._owners.get(config_id) != owner:
            return False
        del self._owners[config_id]
        return True

    async def holder(self, config_id: UUID) -> UUID | None:
        """Get the job currently holding the guard."""
        return self._owners.get(config_id)
