"""In-process store for OIDC authorization states.

States are single-use: ``pop`` removes the entry in the same step that
reads it, so a replayed callback finds nothing. A periodic sweep drops
states whose callback never arrived.

This store is scoped to one process. Deployments running more than one
instance need a shared StateStore implementation.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime

import structlog

from idbridge.core.sso.types import AuthorizationState

logger = structlog.get_logger()


class InMemoryStateStore:
    """Dictionary-backed StateStore with an optional background sweeper."""

    def __init__(self, max_age_seconds: int = 600) -> None:
        """Initialize the store.

        Args:
            max_age_seconds: Age after which a state is swept.
        """
        self._states: dict[str, AuthorizationState] = {}
        self._max_age_seconds = max_age_seconds
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._states)

    async def put(self, state: AuthorizationState) -> None:
        """Store a freshly issued state."""
        self._states[state.state] = state

    async def pop(self, state: str) -> AuthorizationState | None:
        """Atomically read and remove a state.

        Args:
            state: Opaque state token from the callback.

        Returns:
            The stored state, or None if unknown, already used or swept.
        """
        return self._states.pop(state, None)

    async def sweep(self, now: datetime | None = None) -> int:
        """Remove expired states.

        Returns:
            Number of states removed.
        """
        now = now or datetime.now(UTC)
        expired = [
            key
            for key, value in self._states.items()
            if value.is_expired(self._max_age_seconds, now)
        ]
        for key in expired:
            del self._states[key]
        if expired:
            logger.debug("authorization_states_swept", count=len(expired))
        return len(expired)

    def start_sweeper(self, interval_seconds: int = 300) -> None:
        """Start sweeping in the background on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(interval_seconds))

    async def stop_sweeper(self) -> None:
        """Stop the background sweeper if running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_forever(self, interval_seconds: int) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.sweep()
