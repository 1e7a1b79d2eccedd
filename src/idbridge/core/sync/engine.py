"""Directory sync engine.

A job runs in the background on the event loop:

1. Fetch users and groups from the directory (all of them on a full
   sync; only records changed since the last cursor on an incremental
   sync).
2. Reconcile users, then groups, then memberships of the fetched groups.
3. Re-resolve roles for every user touched by steps 1 and 2.

A failure on one record is recorded on the job and the run continues.
A failure to read the directory aborts the job. At most one job per
configuration runs at a time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

import structlog

from idbridge.core.exceptions import (
    ConfigurationError,
    NotFoundError,
    SyncAlreadyRunningError,
    SyncCancelledError,
    SyncJobStateError,
)
from idbridge.core.sync.delta import diff_groups, diff_memberships, diff_users
from idbridge.core.sync.lock import InMemoryJobLock
from idbridge.core.sync.types import (
    DirectoryGroup,
    DirectorySourceType,
    DirectorySyncConfig,
    DirectoryUser,
    SyncCategory,
    SyncError,
    SyncJob,
    SyncOutcome,
    SyncStats,
    SyncStatus,
    SyncStatusSummary,
    SyncType,
)

if TYPE_CHECKING:
    from idbridge.core.interfaces import (
        ConflictDetector,
        DirectorySource,
        IdentityStore,
        JobLock,
        SyncConfigStore,
        SyncJobStore,
    )
    from idbridge.core.rbac.service import RoleMappingService

logger = structlog.get_logger()

SourceFactory = Callable[[DirectorySyncConfig], "DirectorySource"]

_UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "source_config",
        "sync_users",
        "sync_groups",
        "sync_roles",
        "schedule_enabled",
        "schedule_interval",
        "user_filter",
        "group_filter",
        "is_enabled",
    }
)


@dataclass
class _RunContext:
    """Mutable state of one running job."""

    config: DirectorySyncConfig
    job: SyncJob
    cancel: asyncio.Event
    started_at: datetime
    stats: SyncStats = field(default_factory=SyncStats)
    errors: list[SyncError] = field(default_factory=list)
    affected_users: set[str] = field(default_factory=set)

    @property
    def tenant_id(self) -> UUID:
        return self.config.tenant_id

    @property
    def source(self) -> str:
        return self.config.source


def combine_filters(base: str | None, modified_since: str | None) -> str | None:
    """AND a configured filter with a modified-since filter."""
    if base and modified_since:
        return f"({base}) and {modified_since}"
    return base or modified_since


class DirectorySyncService:
    """Runs and schedules directory sync jobs."""

    def __init__(
        self,
        configs: SyncConfigStore,
        jobs: SyncJobStore,
        identities: IdentityStore,
        roles: RoleMappingService,
        source_factory: SourceFactory,
        lock: JobLock | None = None,
        conflicts: ConflictDetector | None = None,
        recent_jobs_limit: int = 10,
    ) -> None:
        """Initialize the service.

        Args:
            configs: Sync configuration storage.
            jobs: Job record storage.
            identities: Users, groups and memberships.
            roles: Role resolution used after reconciliation.
            source_factory: Builds a directory client for a configuration.
            lock: Running-job guard. Defaults to an in-process guard.
            conflicts: Optional source of outstanding conflict counts.
            recent_jobs_limit: Jobs included in status summaries.
        """
        self._configs = configs
        self._jobs = jobs
        self._identities = identities
        self._roles = roles
        self._source_factory = source_factory
        self._lock = lock or InMemoryJobLock()
        self._conflicts = conflicts
        self._recent_jobs_limit = recent_jobs_limit
        self._tasks: dict[UUID, asyncio.Task[None]] = {}
        self._cancel_events: dict[UUID, asyncio.Event] = {}

    # Configuration CRUD

    async def create_config(
        self,
        tenant_id: UUID,
        name: str,
        source_type: DirectorySourceType,
        source_config: dict[str, Any],
        **options: Any,
    ) -> DirectorySyncConfig:
        """Create a sync configuration.

        Args:
            tenant_id: Owning tenant.
            name: Display name.
            source_type: Directory kind.
            source_config: Connection settings for the directory client.
            **options: Any other DirectorySyncConfig field (schedule,
                filters, category switches).

        Raises:
            ConfigurationError: If a field is invalid.
        """
        unknown = set(options) - _UPDATABLE_FIELDS
        if unknown:
            raise ConfigurationError(f"Unknown sync config fields: {', '.join(sorted(unknown))}")

        now = datetime.now(UTC)
        config = DirectorySyncConfig(
            id=uuid4(),
            tenant_id=tenant_id,
            name=name,
            source_type=source_type,
            source_config=dict(source_config),
            created_at=now,
            updated_at=now,
            **options,
        )
        self._validate_config(config)
        saved = await self._configs.save_sync_config(config)
        logger.info(
            "directory_sync_config_created",
            tenant_id=str(tenant_id),
            config_id=str(saved.id),
            source_type=source_type.value,
        )
        return saved

    async def get_config(self, config_id: UUID) -> DirectorySyncConfig:
        """Get a sync configuration.

        Raises:
            NotFoundError: If the configuration does not exist.
        """
        config = await self._configs.get_sync_config(config_id)
        if config is None:
            raise NotFoundError(f"Sync configuration not found: {config_id}")
        return config

    async def list_configs(self, tenant_id: UUID) -> list[DirectorySyncConfig]:
        """List a tenant's sync configurations."""
        return await self._configs.list_sync_configs(tenant_id)

    async def update_config(self, config_id: UUID, **changes: Any) -> DirectorySyncConfig:
        """Update fields of a sync configuration.

        Raises:
            NotFoundError: If the configuration does not exist.
            ConfigurationError: If a field is unknown or invalid.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ConfigurationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.get_config(config_id)
        updated = replace(current, **changes, updated_at=datetime.now(UTC))
        self._validate_config(updated)
        return await self._configs.save_sync_config(updated)

    async def delete_config(self, config_id: UUID) -> None:
        """Delete a sync configuration. Its job history is kept.

        Raises:
            NotFoundError: If the configuration does not exist.
            SyncAlreadyRunningError: If a job is running for it.
        """
        if await self._lock.holder(config_id) is not None:
            raise SyncAlreadyRunningError(config_id)
        if not await self._configs.delete_sync_config(config_id):
            raise NotFoundError(f"Sync configuration not found: {config_id}")
        logger.info("directory_sync_config_deleted", config_id=str(config_id))

    @staticmethod
    def _validate_config(config: DirectorySyncConfig) -> None:
        if not isinstance(config.source_type, DirectorySourceType):
            raise ConfigurationError(f"Unknown directory source: {config.source_type!r}")
        if config.schedule_interval < 1:
            raise ConfigurationError("schedule_interval must be at least 1 minute")

    # Jobs

    async def start_sync(
        self,
        config_id: UUID,
        sync_type: SyncType = SyncType.INCREMENTAL,
    ) -> SyncJob:
        """Start a sync job in the background.

        Args:
            config_id: Configuration to sync.
            sync_type: Full or incremental.

        Returns:
            The pending job record.

        Raises:
            NotFoundError: If the configuration does not exist.
            ConfigurationError: If the configuration is disabled.
            SyncAlreadyRunningError: If a job is already running for it.
        """
        config = await self.get_config(config_id)
        if not config.is_enabled:
            raise ConfigurationError(f"Sync configuration is disabled: {config_id}")

        job_id = uuid4()
        if not await self._lock.acquire(config.id, job_id):
            raise SyncAlreadyRunningError(config.id)

        try:
            job = await self._jobs.create_job(
                SyncJob(
                    id=job_id,
                    config_id=config.id,
                    tenant_id=config.tenant_id,
                    status=SyncStatus.PENDING,
                    sync_type=sync_type,
                    created_at=datetime.now(UTC),
                )
            )
        except Exception:
            await self._lock.release(config.id, job_id)
            raise

        cancel = asyncio.Event()
        self._cancel_events[job.id] = cancel
        context = _RunContext(
            config=config,
            job=job,
            cancel=cancel,
            started_at=datetime.now(UTC),
        )
        task = asyncio.create_task(self._execute(context))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))

        logger.info(
            "directory_sync_queued",
            tenant_id=str(config.tenant_id),
            config_id=str(config.id),
            job_id=str(job.id),
            sync_type=sync_type.value,
        )
        return job

    async def wait_for_job(self, job_id: UUID) -> SyncJob:
        """Wait for a job started by this service to finish."""
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return await self.get_job(job_id)

    async def run_sync(
        self,
        config_id: UUID,
        sync_type: SyncType = SyncType.INCREMENTAL,
    ) -> SyncJob:
        """Start a sync job and wait for its final record."""
        job = await self.start_sync(config_id, sync_type)
        return await self.wait_for_job(job.id)

    async def cancel_job(self, job_id: UUID, reason: str = "Cancelled by user") -> SyncJob:
        """Cancel a pending or running job.

        The job is marked failed and the configuration's guard released
        immediately; the background task stops at its next record.

        Raises:
            NotFoundError: If the job does not exist.
            SyncJobStateError: If the job already finished.
        """
        job = await self.get_job(job_id)
        if job.status.is_terminal:
            raise SyncJobStateError(f"Job {job_id} already finished with status {job.status.value}")

        cancel = self._cancel_events.get(job_id)
        if cancel is not None:
            cancel.set()

        job.status = SyncStatus.FAILED
        job.completed_at = datetime.now(UTC)
        job.errors.append(SyncError(message=reason))
        await self._jobs.update_job(job)
        await self._lock.release(job.config_id, job.id)

        logger.info("directory_sync_cancelled", job_id=str(job_id), reason=reason)
        return job

    async def get_job(self, job_id: UUID) -> SyncJob:
        """Get a job.

        Raises:
            NotFoundError: If the job does not exist.
        """
        job = await self._jobs.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Sync job not found: {job_id}")
        return job

    async def list_jobs(self, config_id: UUID, limit: int = 20) -> list[SyncJob]:
        """List jobs of a configuration, newest first."""
        return await self._jobs.list_jobs(config_id, limit)

    async def get_sync_status(self, config_id: UUID) -> SyncStatusSummary:
        """Summarize the state of a configuration.

        Raises:
            NotFoundError: If the configuration does not exist.
        """
        config = await self.get_config(config_id)
        running_job_id = await self._lock.holder(config_id)
        conflicts = None
        if self._conflicts is not None:
            conflicts = await self._conflicts.count_outstanding(config)

        return SyncStatusSummary(
            config_id=config.id,
            is_running=running_job_id is not None,
            running_job_id=running_job_id,
            last_sync_at=config.last_sync_at,
            last_sync_status=config.last_sync_status,
            last_sync_error=config.last_sync_error,
            outstanding_conflicts=conflicts,
            recent_jobs=await self._jobs.list_jobs(config_id, self._recent_jobs_limit),
        )

    async def check_scheduled_syncs(self, now: datetime | None = None) -> list[SyncJob]:
        """Start incremental jobs for every configuration that is due.

        Returns:
            Jobs started by this check.
        """
        now = now or datetime.now(UTC)
        started: list[SyncJob] = []

        for config in await self._configs.list_scheduled_configs():
            if not (config.is_enabled and config.schedule_enabled):
                continue
            if await self._lock.holder(config.id) is not None:
                continue
            if not config.is_due(now):
                continue
            try:
                started.append(await self.start_sync(config.id, SyncType.INCREMENTAL))
            except (SyncAlreadyRunningError, ConfigurationError, NotFoundError) as e:
                logger.warning(
                    "scheduled_sync_not_started",
                    config_id=str(config.id),
                    error=str(e),
                )

        if started:
            logger.info("scheduled_syncs_started", count=len(started))
        return started

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for their tasks to stop."""
        for job_id in list(self._tasks):
            try:
                await self.cancel_job(job_id, reason="Service shutting down")
            except (NotFoundError, SyncJobStateError):
                continue
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Execution

    async def _execute(self, ctx: _RunContext) -> None:
        status: SyncStatus | None
        try:
            status = await self._run(ctx)
        except SyncCancelledError:
            logger.info("directory_sync_stopped", job_id=str(ctx.job.id))
            status = None
        except Exception as e:
            logger.exception(
                "directory_sync_failed",
                job_id=str(ctx.job.id),
                config_id=str(ctx.config.id),
                error=str(e),
            )
            ctx.errors.append(SyncError(message=f"Sync failed: {e}"))
            status = SyncStatus.FAILED

        try:
            if status is not None:
                await self._finish(ctx, status)
        except Exception:
            logger.exception("directory_sync_finalize_failed", job_id=str(ctx.job.id))
        finally:
            self._cancel_events.pop(ctx.job.id, None)
            await self._lock.release(ctx.config.id, ctx.job.id)

    async def _run(self, ctx: _RunContext) -> SyncStatus:
        self._check_cancelled(ctx)
        ctx.job.status = SyncStatus.RUNNING
        ctx.job.started_at = ctx.started_at
        await self._jobs.update_job(ctx.job)

        logger.info(
            "directory_sync_started",
            tenant_id=str(ctx.tenant_id),
            config_id=str(ctx.config.id),
            job_id=str(ctx.job.id),
            sync_type=ctx.job.sync_type.value,
        )

        users, groups = await self._fetch(ctx)

        if ctx.config.sync_users:
            await self._sync_users(ctx, users)
        if ctx.config.sync_groups:
            await self._sync_groups(ctx, groups)
            await self._sync_memberships(ctx, groups)
        if ctx.config.sync_roles:
            await self._sync_roles(ctx)

        if not ctx.errors:
            return SyncStatus.COMPLETED
        if ctx.stats.writes > 0:
            return SyncStatus.PARTIAL
        return SyncStatus.FAILED

    async def _fetch(self, ctx: _RunContext) -> tuple[list[DirectoryUser], list[DirectoryGroup]]:
        config = ctx.config
        source = self._source_factory(config)
        try:
            since = None
            if ctx.job.sync_type == SyncType.INCREMENTAL and config.last_sync_at:
                since = source.modified_since_filter(config.last_sync_at)

            users: list[DirectoryUser] = []
            groups: list[DirectoryGroup] = []
            if config.sync_users:
                users = await source.fetch_users(combine_filters(config.user_filter, since))
            self._check_cancelled(ctx)
            if config.sync_groups:
                groups = await source.fetch_groups(combine_filters(config.group_filter, since))
        finally:
            await source.aclose()

        logger.info(
            "directory_fetched",
            job_id=str(ctx.job.id),
            users=len(users),
            groups=len(groups),
            incremental=since is not None,
        )
        return users, groups

    async def _sync_users(self, ctx: _RunContext, remote: list[DirectoryUser]) -> None:
        local = await self._identities.list_users(ctx.tenant_id, source=ctx.source)
        delta = diff_users(remote, local, ctx.job.sync_type)

        for user in delta.create:
            self._check_cancelled(ctx)
            created = await self._apply(
                ctx,
                SyncCategory.USER,
                user.external_id,
                SyncOutcome.CREATED,
                lambda u=user: self._identities.create_user(
                    ctx.tenant_id, u.to_identity(), ctx.source, is_active=u.active
                ),
            )
            if created:
                ctx.affected_users.add(user.external_id)

        for record, user in delta.update:
            self._check_cancelled(ctx)
            updated = await self._apply(
                ctx,
                SyncCategory.USER,
                user.external_id,
                SyncOutcome.UPDATED,
                lambda r=record, u=user: self._identities.update_user(
                    r.id, u.to_identity(), is_active=u.active
                ),
            )
            if updated:
                ctx.affected_users.add(user.external_id)

        for _ in delta.unchanged:
            ctx.stats.users.record(SyncOutcome.SKIPPED)

        for record in delta.deactivate:
            self._check_cancelled(ctx)
            await self._apply(
                ctx,
                SyncCategory.USER,
                record.external_id,
                SyncOutcome.DEACTIVATED,
                lambda r=record: self._identities.deactivate_user(r.id),
            )

    async def _sync_groups(self, ctx: _RunContext, remote: list[DirectoryGroup]) -> None:
        local = await self._identities.list_groups(ctx.tenant_id, ctx.source)
        delta = diff_groups(remote, local, ctx.job.sync_type)

        for group in delta.create:
            self._check_cancelled(ctx)
            await self._apply(
                ctx,
                SyncCategory.GROUP,
                group.external_id,
                SyncOutcome.CREATED,
                lambda g=group: self._identities.create_group(
                    ctx.tenant_id, g.external_id, g.display_name, ctx.source, g.attributes
                ),
            )

        for record, group in delta.update:
            self._check_cancelled(ctx)
            await self._apply(
                ctx,
                SyncCategory.GROUP,
                group.external_id,
                SyncOutcome.UPDATED,
                lambda r=record, g=group: self._identities.update_group(
                    r.id, g.display_name, g.attributes
                ),
            )

        for _ in delta.unchanged:
            ctx.stats.groups.record(SyncOutcome.SKIPPED)

        for record in delta.delete:
            self._check_cancelled(ctx)
            await self._apply(
                ctx,
                SyncCategory.GROUP,
                record.external_id,
                SyncOutcome.DEACTIVATED,
                lambda r=record: self._identities.delete_group(r.id),
            )

    async def _sync_memberships(self, ctx: _RunContext, remote: list[DirectoryGroup]) -> None:
        if not remote:
            return
        current = await self._identities.list_memberships(ctx.tenant_id, ctx.source)
        known_users = {
            user.external_id
            for user in await self._identities.list_users(ctx.tenant_id, source=ctx.source)
        }
        delta = diff_memberships(remote, current, known_users)

        for user_id, group_id in delta.add:
            self._check_cancelled(ctx)
            added = await self._apply(
                ctx,
                SyncCategory.MEMBERSHIP,
                f"{user_id}:{group_id}",
                SyncOutcome.CREATED,
                lambda u=user_id, g=group_id: self._identities.add_membership(
                    ctx.tenant_id, ctx.source, u, g
                ),
            )
            if added:
                ctx.affected_users.add(user_id)

        for user_id, group_id in delta.remove:
            self._check_cancelled(ctx)
            removed = await self._apply(
                ctx,
                SyncCategory.MEMBERSHIP,
                f"{user_id}:{group_id}",
                SyncOutcome.DEACTIVATED,
                lambda u=user_id, g=group_id: self._identities.remove_membership(
                    ctx.tenant_id, ctx.source, u, g
                ),
            )
            if removed:
                ctx.affected_users.add(user_id)

        for _ in delta.unknown_member:
            ctx.stats.memberships.record(SyncOutcome.SKIPPED)

    async def _sync_roles(self, ctx: _RunContext) -> None:
        if not ctx.affected_users:
            return

        users = await self._identities.list_users(ctx.tenant_id, source=ctx.source)
        group_names = {
            group.external_id: group.name
            for group in await self._identities.list_groups(ctx.tenant_id, ctx.source)
            if group.is_active
        }
        memberships = await self._identities.list_memberships(ctx.tenant_id, ctx.source)
        groups_by_user: dict[str, list[str]] = {}
        for user_id, group_id in sorted(memberships):
            name = group_names.get(group_id)
            if name is not None:
                groups_by_user.setdefault(user_id, []).append(name)

        for user in users:
            if user.external_id not in ctx.affected_users or not user.is_active:
                continue
            self._check_cancelled(ctx)
            claims = user.claims()
            for name in groups_by_user.get(user.external_id, []):
                if name not in claims.groups:
                    claims.groups.append(name)
            await self._apply(
                ctx,
                SyncCategory.ROLE,
                user.external_id,
                SyncOutcome.UPDATED,
                lambda u=user, c=claims: self._roles.assign_roles_to_user(ctx.tenant_id, u.id, c),
            )

    async def _apply(
        self,
        ctx: _RunContext,
        category: SyncCategory,
        external_id: str,
        outcome: SyncOutcome,
        operation: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Run one record write, recording failure instead of raising."""
        stats = ctx.stats.for_category(category)
        try:
            await operation()
        except Exception as e:
            stats.failed += 1
            ctx.errors.append(
                SyncError(
                    category=category,
                    external_id=external_id,
                    message=f"Failed to apply {outcome.value} {category.value}: {e}",
                )
            )
            logger.warning(
                "directory_sync_record_failed",
                job_id=str(ctx.job.id),
                category=category.value,
                external_id=external_id,
                error=str(e),
            )
            return False
        stats.record(outcome)
        return True

    async def _finish(self, ctx: _RunContext, status: SyncStatus) -> None:
        completed_at = datetime.now(UTC)
        ctx.stats.duration_ms = int((completed_at - ctx.started_at).total_seconds() * 1000)

        stored = await self._jobs.get_job(ctx.job.id)
        if ctx.cancel.is_set() or (stored is not None and stored.status.is_terminal):
            logger.info("directory_sync_result_discarded", job_id=str(ctx.job.id))
            return

        ctx.job.status = status
        ctx.job.stats = ctx.stats
        ctx.job.errors = ctx.errors
        ctx.job.completed_at = completed_at
        await self._jobs.update_job(ctx.job)

        first_error = ctx.errors[0].message if ctx.errors else None
        # A failed job keeps the previous cursor so the next run refetches.
        cursor = ctx.started_at if status != SyncStatus.FAILED else None
        await self._configs.record_sync_result(ctx.config.id, cursor, status, first_error)

        logger.info(
            "directory_sync_finished",
            tenant_id=str(ctx.tenant_id),
            config_id=str(ctx.config.id),
            job_id=str(ctx.job.id),
            status=status.value,
            errors=len(ctx.errors),
            duration_ms=ctx.stats.duration_ms,
        )

    @staticmethod
    def _check_cancelled(ctx: _RunContext) -> None:
        if ctx.cancel.is_set():
            raise SyncCancelledError(f"Job {ctx.job.id} was cancelled")
