"""Job scheduler: promotes queued jobs whose dependencies are satisfied.

One ``tick``:

1. Lock queued jobs in priority order (``FOR UPDATE SKIP LOCKED``)
2. Fail jobs whose parent failed, was cancelled or is missing
3. Promote ready jobs to ``active`` within each kind's concurrency limit
4. Dispatch promoted jobs to the executor (Temporal); requeue on dispatch failure
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from temporalio.client import Client as TemporalClient
from temporalio.common import WorkflowIDReusePolicy
from temporalio.exceptions import WorkflowAlreadyStartedError

from mbs_catalog.core.config import settings
from mbs_catalog.database.models import CatalogJob
from mbs_catalog.repositories.job_repository import JobRepository
from mbs_catalog.schemas.jobs import JobKind, JobState
from mbs_catalog.services.jobs.policies import (
    JOB_POLICIES,
    DependencyStatus,
    JobPolicy,
    resolve_dependency,
    workflow_id_for,
)
from mbs_catalog.temporal.constants import CATALOG_JOB_WORKFLOW
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


class JobDispatcher(Protocol):
    async def dispatch(self, job: CatalogJob) -> None:
        ...


class TemporalJobDispatcher:
    """Starts one ``CatalogJobWorkflow`` execution per job id."""

    def __init__(
        self,
        client_provider: Callable[[], Awaitable[TemporalClient]],
        task_queue: Optional[str] = None,
        policies: Optional[dict[JobKind, JobPolicy]] = None,
    ):
        self.client_provider = client_provider
        self.task_queue = task_queue or settings.temporal_task_queue
        self.policies = policies or JOB_POLICIES

    async def dispatch(self, job: CatalogJob) -> None:
        client = await self.client_provider()
        policy = self.policies[JobKind(job.kind)]
        workflow_id = workflow_id_for(job.id)
        try:
            await client.start_workflow(
                CATALOG_JOB_WORKFLOW,
                args=[
                    str(job.id),
                    job.kind,
                    job.payload or {},
                    {
                        "max_attempts": job.max_attempts,
                        "initial_backoff_seconds": job.initial_backoff_seconds,
                        "backoff_coefficient": job.backoff_coefficient,
                        "max_backoff_seconds": job.max_backoff_seconds,
                        "start_to_close_seconds": policy.start_to_close_timeout.total_seconds(),
                        "heartbeat_seconds": policy.heartbeat_timeout.total_seconds(),
                    },
                ],
                id=workflow_id,
                task_queue=self.task_queue,
                id_reuse_policy=WorkflowIDReusePolicy.REJECT_DUPLICATE,
            )
        except WorkflowAlreadyStartedError:
            LOGGER.warning(f"Workflow {workflow_id} already started, not dispatching again")
            return
        LOGGER.info(f"Dispatched {job.kind} job {job.id}", extra={"workflow_id": workflow_id})


class JobScheduler:
    """Moves jobs from ``queued`` to ``active`` once they may run."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: JobDispatcher,
        job_repository_factory: Callable[[AsyncSession], JobRepository] = JobRepository,
        policies: Optional[dict[JobKind, JobPolicy]] = None,
        claim_batch_size: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.job_repository_factory = job_repository_factory
        self.policies = policies or JOB_POLICIES
        self.claim_batch_size = claim_batch_size or settings.jobs.claim_batch_size
        self.clock = clock
        self._stopping = asyncio.Event()

    async def tick(self) -> int:
        """Run one scheduling pass. Returns the number of jobs dispatched."""
        promoted: list[CatalogJob] = []

        async with self.session_factory() as session:
            async with session.begin():
                repository = self.job_repository_factory(session)
                queued = await repository.lock_queued(self.claim_batch_size)
                if not queued:
                    return 0

                parents = await repository.get_many(
                    {job.parent_job_id for job in queued if job.parent_job_id is not None}
                )
                active_counts = await repository.count_active_by_kind()

                for job in queued:
                    resolution = resolve_dependency(job, parents.get(job.parent_job_id))
                    if resolution.status == DependencyStatus.BLOCKED:
                        await repository.finish(job.id, JobState.FAILED, failure_reason=resolution.reason)
                        LOGGER.warning(
                            f"Job {job.id} will not run: {resolution.reason}",
                            extra={"kind": job.kind, "parent_job_id": str(job.parent_job_id)},
                        )
                        continue
                    if resolution.status == DependencyStatus.WAITING:
                        continue

                    policy = self.policies[JobKind(job.kind)]
                    if active_counts.get(job.kind, 0) >= policy.concurrency:
                        continue

                    await repository.mark_active(job, workflow_id_for(job.id))
                    active_counts[job.kind] = active_counts.get(job.kind, 0) + 1
                    promoted.append(job)

        dispatched = 0
        for job in promoted:
            try:
                await self.dispatcher.dispatch(job)
                dispatched += 1
            except Exception as e:
                LOGGER.error(f"Dispatch of job {job.id} failed, returning it to the queue: {e}", exc_info=True)
                async with self.session_factory() as session:
                    async with session.begin():
                        await self.job_repository_factory(session).requeue(job.id)
        return dispatched

    async def purge_expired(self) -> int:
        """Delete terminal jobs older than their kind's retention window."""
        now = self.clock()
        purged = 0
        async with self.session_factory() as session:
            async with session.begin():
                repository = self.job_repository_factory(session)
                for kind, policy in self.policies.items():
                    purged += await repository.purge_terminal(
                        kind,
                        completed_before=now - policy.completed_retention,
                        failed_before=now - policy.failed_retention,
                    )
        if purged:
            LOGGER.info(f"Purged {purged} expired jobs")
        return purged

    async def run_forever(
        self,
        poll_interval_seconds: Optional[float] = None,
        purge_interval_seconds: Optional[float] = None,
    ) -> None:
        poll_interval = poll_interval_seconds or settings.jobs.poll_interval_seconds
        purge_interval = timedelta(seconds=purge_interval_seconds or settings.jobs.purge_interval_seconds)
        next_purge = self.clock()

        LOGGER.info(f"Job scheduler started (poll every {poll_interval}s)")
        while not self._stopping.is_set():
            try:
                await self.tick()
                if self.clock() >= next_purge:
                    await self.purge_expired()
                    next_purge = self.clock() + purge_interval
            except Exception as e:
                LOGGER.error(f"Scheduler pass failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                pass
        LOGGER.info("Job scheduler stopped")

    def stop(self) -> None:
        self._stopping.set()
