"""Directory sync scheduler.

Run via: python -m idbridge.jobs.directory_sync

Every tick starts an incremental job for each scheduled configuration
whose interval has elapsed. Processes that also serve OIDC logins can
run the same loop with their authorization-state store so expired
states are swept alongside.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime

import structlog

from idbridge.adapters.audit import AuditRepository
from idbridge.adapters.db import (
    PostgresIdentityStore,
    PostgresRoleMappingStore,
    PostgresSyncStore,
    create_pool,
)
from idbridge.adapters.directory import create_source
from idbridge.core.config import Settings, get_settings
from idbridge.core.interfaces import StateStore
from idbridge.core.rbac import RoleMappingService
from idbridge.core.sync import DirectorySyncService

logger = structlog.get_logger()


async def scheduler_tick(service: DirectorySyncService, now: datetime | None = None) -> int:
    """Run one scheduling pass.

    Errors are logged and swallowed so one bad pass does not stop the
    loop.

    Returns:
        Number of jobs started.
    """
    try:
        started = await service.check_scheduled_syncs(now or datetime.now(UTC))
    except Exception:
        logger.exception("scheduler_tick_failed")
        return 0
    return len(started)


async def run_scheduler(
    service: DirectorySyncService,
    tick_seconds: int,
    stop: asyncio.Event,
) -> None:
    """Call ``check_scheduled_syncs`` every tick until ``stop`` is set."""
    logger.info("directory_sync_scheduler_started", tick_seconds=tick_seconds)
    while not stop.is_set():
        await scheduler_tick(service)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=tick_seconds)
    logger.info("directory_sync_scheduler_stopped")


async def run_state_sweeper(store: StateStore, interval_seconds: int, stop: asyncio.Event) -> None:
    """Sweep expired authorization states every interval until ``stop`` is set."""
    while not stop.is_set():
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
        if stop.is_set():
            break
        try:
            removed = await store.sweep()
        except Exception:
            logger.exception("state_sweep_failed")
            continue
        if removed:
            logger.info("authorization_states_swept", count=removed)


async def run(
    service: DirectorySyncService,
    settings: Settings,
    stop: asyncio.Event,
    state_store: StateStore | None = None,
) -> None:
    """Run the scheduler, and the state sweeper when a store is given.

    Running jobs are cancelled once ``stop`` is set.
    """
    tasks = [asyncio.create_task(run_scheduler(service, settings.scheduler_tick_seconds, stop))]
    if state_store is not None:
        tasks.append(
            asyncio.create_task(
                run_state_sweeper(state_store, settings.state_sweep_interval_seconds, stop)
            )
        )
    try:
        await asyncio.gather(*tasks)
    finally:
        await service.shutdown()


async def main() -> None:
    """Run the directory sync scheduler against the application database."""
    settings = get_settings()
    if not settings.database_url:
        logger.error("DATABASE_URL not set")
        return

    logger.info("Connecting to database...")
    pool = await create_pool(settings.database_url)

    try:
        sync_store = PostgresSyncStore(pool)
        identities = PostgresIdentityStore(pool)
        roles = RoleMappingService(
            mappings=PostgresRoleMappingStore(pool),
            identities=identities,
            audit=AuditRepository(pool),
            default_role=settings.default_role,
        )
        service = DirectorySyncService(
            configs=sync_store,
            jobs=sync_store,
            identities=identities,
            roles=roles,
            source_factory=create_source,
        )
        await run(service, settings, asyncio.Event())
    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
