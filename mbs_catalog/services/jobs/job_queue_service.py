"""Job queue API: enqueue, pipeline chaining, status, cancellation and stats."""

from typing import Any, Callable, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mbs_catalog.core.exceptions import InputError, QueueUnavailableError
from mbs_catalog.repositories.job_repository import JobRepository
from mbs_catalog.schemas.jobs import (
    EmbedPayload,
    IngestPayload,
    JobKind,
    JobState,
    JobStatus,
    PipelineJobs,
    QueueStats,
    ReindexPayload,
)
from mbs_catalog.services.jobs.policies import JOB_POLICIES, PIPELINE_PRIORITIES, JobPolicy
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)

_STATE_VALUES = {state.value for state in JobState}

PAYLOAD_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.INGEST: IngestPayload,
    JobKind.EMBED: EmbedPayload,
    JobKind.REINDEX: ReindexPayload,
}


class JobQueueService:
    """Producer side of the job queue.

    Jobs are rows in ``catalog_jobs``; the scheduler in the worker process
    promotes them to Temporal workflow executions once their parent completes.
    Enqueue only raises ``QueueUnavailableError`` (store unreachable) or
    ``InputError`` (payload does not match the job kind); dependency problems
    surface later through job status.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_repository_factory: Callable[[AsyncSession], JobRepository] = JobRepository,
        policies: Optional[dict[JobKind, JobPolicy]] = None,
    ):
        self.session_factory = session_factory
        self.job_repository_factory = job_repository_factory
        self.policies = policies or JOB_POLICIES

    async def enqueue_ingest(
        self,
        payload: Union[IngestPayload, dict[str, Any]],
        priority: int = 0,
        parent_job_id: Optional[UUID] = None,
    ) -> UUID:
        return await self._enqueue_one(JobKind.INGEST, payload, priority, parent_job_id)

    async def enqueue_embed(
        self,
        payload: Union[EmbedPayload, dict[str, Any]],
        priority: int = 0,
        parent_job_id: Optional[UUID] = None,
    ) -> UUID:
        return await self._enqueue_one(JobKind.EMBED, payload, priority, parent_job_id)

    async def enqueue_reindex(
        self,
        payload: Union[ReindexPayload, dict[str, Any]],
        priority: int = 0,
        parent_job_id: Optional[UUID] = None,
    ) -> UUID:
        return await self._enqueue_one(JobKind.REINDEX, payload, priority, parent_job_id)

    async def enqueue_pipeline(
        self,
        file_path: str,
        file_name: str,
        force_reprocess: bool = False,
    ) -> PipelineJobs:
        """Enqueue ingest -> embed -> reindex as one dependency chain.

        All three jobs are written in a single transaction.
        """
        ingest_payload = self._payload(
            JobKind.INGEST,
            {"file_path": file_path, "file_name": file_name, "force_reprocess": force_reprocess},
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repository = self.job_repository_factory(session)
                    ingest = await self._add(
                        repository, JobKind.INGEST, ingest_payload, PIPELINE_PRIORITIES[JobKind.INGEST], None
                    )
                    embed = await self._add(
                        repository, JobKind.EMBED, {}, PIPELINE_PRIORITIES[JobKind.EMBED], ingest.id
                    )
                    reindex = await self._add(
                        repository, JobKind.REINDEX, {}, PIPELINE_PRIORITIES[JobKind.REINDEX], embed.id
                    )
                    jobs = PipelineJobs(
                        ingest_job_id=ingest.id,
                        embed_job_id=embed.id,
                        reindex_job_id=reindex.id,
                    )
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(f"Failed to enqueue pipeline for {file_name}: {e}", exc_info=True)
            raise QueueUnavailableError(f"Job queue unavailable: {e}", original_error=e) from e

        LOGGER.info(
            f"Enqueued pipeline for {file_name}",
            extra={
                "ingest_job_id": str(jobs.ingest_job_id),
                "embed_job_id": str(jobs.embed_job_id),
                "reindex_job_id": str(jobs.reindex_job_id),
            },
        )
        return jobs

    async def get_job_status(self, job_id: UUID) -> Optional[JobStatus]:
        try:
            async with self.session_factory() as session:
                job = await self.job_repository_factory(session).get_by_id(job_id)
        except (SQLAlchemyError, OSError) as e:
            raise QueueUnavailableError(f"Job queue unavailable: {e}", original_error=e) from e
        if job is None:
            return None
        return JobStatus.model_validate(job)

    async def cancel_job(self, job_id: UUID) -> Optional[JobStatus]:
        """Cancel a queued job, or request cancellation of an active one.

        Returns:
            The job status after the request, or None if the job does not exist
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    job = await self.job_repository_factory(session).request_cancel(job_id)
                    status = JobStatus.model_validate(job) if job is not None else None
        except (SQLAlchemyError, OSError) as e:
            raise QueueUnavailableError(f"Job queue unavailable: {e}", original_error=e) from e

        if status is not None:
            LOGGER.info(
                f"Cancellation requested for job {job_id}",
                extra={"state": status.state, "cancel_requested": status.cancel_requested},
            )
        return status

    async def get_queue_stats(self) -> QueueStats:
        try:
            async with self.session_factory() as session:
                rows = await self.job_repository_factory(session).counts_by_kind_and_state()
        except (SQLAlchemyError, OSError) as e:
            raise QueueUnavailableError(f"Job queue unavailable: {e}", original_error=e) from e

        stats = QueueStats()
        for kind, state, count in rows:
            if state in _STATE_VALUES:
                setattr(stats, state, getattr(stats, state) + count)
            stats.total += count
            stats.by_kind.setdefault(kind, {})[state] = count
        return stats

    async def _enqueue_one(
        self,
        kind: JobKind,
        payload: Union[BaseModel, dict[str, Any]],
        priority: int,
        parent_job_id: Optional[UUID],
    ) -> UUID:
        data = self._payload(kind, payload)
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    job = await self._add(
                        self.job_repository_factory(session), kind, data, priority, parent_job_id
                    )
                    job_id = job.id
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(f"Failed to enqueue {kind.value} job: {e}", exc_info=True)
            raise QueueUnavailableError(f"Job queue unavailable: {e}", original_error=e) from e

        LOGGER.info(
            f"Enqueued {kind.value} job {job_id}",
            extra={"priority": priority, "parent_job_id": str(parent_job_id) if parent_job_id else None},
        )
        return job_id

    async def _add(
        self,
        repository: JobRepository,
        kind: JobKind,
        payload: dict[str, Any],
        priority: int,
        parent_job_id: Optional[UUID],
    ):
        policy = self.policies[kind]
        return await repository.add_job(
            kind=kind,
            payload=payload,
            priority=priority,
            parent_job_id=parent_job_id,
            max_attempts=policy.max_attempts,
            initial_backoff_seconds=policy.initial_backoff_seconds,
            backoff_coefficient=policy.backoff_coefficient,
            max_backoff_seconds=policy.max_backoff_seconds,
        )

    @staticmethod
    def _payload(kind: JobKind, payload: Union[BaseModel, dict[str, Any]]) -> dict[str, Any]:
        model = PAYLOAD_MODELS[kind]
        try:
            if isinstance(payload, model):
                validated = payload
            else:
                raw = payload.model_dump() if isinstance(payload, BaseModel) else payload
                validated = model.model_validate(raw)
        except PydanticValidationError as e:
            raise InputError(f"Invalid {kind.value} job payload: {e}", original_error=e) from e
        return validated.model_dump(mode="json")
