from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID

from sqlalchemy import and_, delete, exists, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from mbs_catalog.database.models import CatalogJob
from mbs_catalog.repositories.base_repository import BaseRepository
from mbs_catalog.schemas.jobs import JobKind, JobState

NON_TERMINAL_STATES = (JobState.QUEUED.value, JobState.ACTIVE.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobRepository(BaseRepository[CatalogJob]):
    """Persistence for the job queue.

    Methods do not commit; the queue service and scheduler own the
    transaction boundaries.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, CatalogJob)

    async def add_job(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        priority: int,
        parent_job_id: Optional[UUID],
        max_attempts: int,
        initial_backoff_seconds: float,
        backoff_coefficient: float,
        max_backoff_seconds: float,
    ) -> CatalogJob:
        return await self.create(
            commit=False,
            kind=kind.value,
            payload=payload,
            priority=priority,
            parent_job_id=parent_job_id,
            state=JobState.QUEUED.value,
            max_attempts=max_attempts,
            initial_backoff_seconds=initial_backoff_seconds,
            backoff_coefficient=backoff_coefficient,
            max_backoff_seconds=max_backoff_seconds,
        )

    async def lock_queued(self, limit: int) -> list[CatalogJob]:
        """Queued jobs in dequeue order, row-locked for this transaction."""
        result = await self.session.execute(
            select(CatalogJob)
            .where(CatalogJob.state == JobState.QUEUED.value)
            .order_by(CatalogJob.priority.desc(), CatalogJob.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def get_many(self, ids: Iterable[UUID]) -> dict[UUID, CatalogJob]:
        ids = list(ids)
        if not ids:
            return {}
        result = await self.session.execute(select(CatalogJob).where(CatalogJob.id.in_(ids)))
        return {job.id: job for job in result.scalars().all()}

    async def count_active_by_kind(self) -> dict[str, int]:
        result = await self.session.execute(
            select(CatalogJob.kind, func.count())
            .where(CatalogJob.state == JobState.ACTIVE.value)
            .group_by(CatalogJob.kind)
        )
        return {kind: count for kind, count in result.all()}

    async def counts_by_kind_and_state(self) -> list[tuple[str, str, int]]:
        result = await self.session.execute(
            select(CatalogJob.kind, CatalogJob.state, func.count())
            .group_by(CatalogJob.kind, CatalogJob.state)
        )
        return [(kind, state, count) for kind, state, count in result.all()]

    async def mark_active(self, job: CatalogJob, workflow_id: str) -> None:
        job.state = JobState.ACTIVE.value
        job.processed_at = _utcnow()
        job.temporal_workflow_id = workflow_id
        job.progress = 0
        await self.session.flush()

    async def requeue(self, job_id: UUID) -> None:
        await self.session.execute(
            update(CatalogJob)
            .where(CatalogJob.id == job_id, CatalogJob.state == JobState.ACTIVE.value)
            .values(state=JobState.QUEUED.value, processed_at=None, temporal_workflow_id=None)
            .execution_options(synchronize_session=False)
        )

    async def finish(
        self,
        job_id: UUID,
        state: JobState,
        result: Optional[dict[str, Any]] = None,
        failure_reason: Optional[str] = None,
    ) -> bool:
        """Move a non-terminal job to a terminal state. Returns False if it was already terminal."""
        try:
            outcome = await self.session.execute(
                update(CatalogJob)
                .where(CatalogJob.id == job_id, CatalogJob.state.in_(NON_TERMINAL_STATES))
                .values(
                    state=state.value,
                    result=result,
                    failure_reason=failure_reason,
                    finished_at=_utcnow(),
                    progress=100 if state == JobState.COMPLETED else CatalogJob.progress,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error finishing job {job_id}: {str(e)}", exc_info=True)
            raise
        return (outcome.rowcount or 0) > 0

    async def record_attempt(self, job_id: UUID, attempt: int) -> None:
        await self.session.execute(
            update(CatalogJob).where(CatalogJob.id == job_id).values(attempts_made=attempt)
            .execution_options(synchronize_session=False)
        )

    async def update_progress(self, job_id: UUID, progress: int) -> bool:
        """Store progress and return whether cancellation was requested."""
        result = await self.session.execute(
            update(CatalogJob)
            .where(CatalogJob.id == job_id)
            .values(progress=max(0, min(100, progress)))
            .returning(CatalogJob.cancel_requested)
            .execution_options(synchronize_session=False)
        )
        return bool(result.scalar_one_or_none())

    async def request_cancel(self, job_id: UUID) -> Optional[CatalogJob]:
        """Cancel a queued job now, or flag an active one for the next batch boundary.

        Returns:
            The job after the change, or None if it does not exist
        """
        job = (
            await self.session.execute(
                select(CatalogJob).where(CatalogJob.id == job_id).with_for_update()
            )
        ).scalar_one_or_none()
        if job is None:
            return None
        if job.state == JobState.QUEUED.value:
            job.state = JobState.CANCELLED.value
            job.finished_at = _utcnow()
            job.failure_reason = "Cancelled before start"
        elif job.state == JobState.ACTIVE.value:
            job.cancel_requested = True
        await self.session.flush()
        return job

    async def purge_terminal(
        self,
        kind: JobKind,
        completed_before: datetime,
        failed_before: datetime,
    ) -> int:
        """Delete expired terminal jobs of one kind that have no pending children."""
        child = aliased(CatalogJob)
        pending_child = exists().where(
            child.parent_job_id == CatalogJob.id,
            child.state.in_(NON_TERMINAL_STATES),
        )
        result = await self.session.execute(
            delete(CatalogJob)
            .where(
                CatalogJob.kind == kind.value,
                or_(
                    and_(
                        CatalogJob.state == JobState.COMPLETED.value,
                        CatalogJob.finished_at < completed_before,
                    ),
                    and_(
                        CatalogJob.state.in_((JobState.FAILED.value, JobState.CANCELLED.value)),
                        CatalogJob.finished_at < failed_before,
                    ),
                ),
                ~pending_child,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
