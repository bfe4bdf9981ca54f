"""Administrative endpoints: job queue and ingestion history."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mbs_catalog.core.database import async_session_maker, get_async_session
from mbs_catalog.repositories.ingestion_run_repository import IngestionRunRepository
from mbs_catalog.schemas.jobs import (
    EmbedPayload,
    EnqueuedJob,
    EnqueueEmbedRequest,
    EnqueueIngestRequest,
    EnqueueReindexRequest,
    IngestionRunSummary,
    IngestPayload,
    JobStatus,
    PipelineJobs,
    PipelineRequest,
    QueueStats,
    ReindexPayload,
)
from mbs_catalog.services.jobs.job_queue_service import JobQueueService

router = APIRouter()


def get_job_queue_service() -> JobQueueService:
    """Dependency to build the job queue service."""
    return JobQueueService(async_session_maker)


async def get_ingestion_run_repository(
    db_session: Annotated[AsyncSession, Depends(get_async_session)],
) -> IngestionRunRepository:
    return IngestionRunRepository(db_session)


def _job_not_found(job_id: UUID) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")


@router.post(
    "/jobs/ingest",
    response_model=EnqueuedJob,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue an ingestion job",
    operation_id="enqueue_ingest_job",
)
async def enqueue_ingest_job(
    request: EnqueueIngestRequest,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> EnqueuedJob:
    payload = IngestPayload(**request.model_dump(include=set(IngestPayload.model_fields)))
    job_id = await queue.enqueue_ingest(payload, request.priority, request.parent_job_id)
    return EnqueuedJob(job_id=job_id)


@router.post(
    "/jobs/embed",
    response_model=EnqueuedJob,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue an embedding job",
    operation_id="enqueue_embed_job",
)
async def enqueue_embed_job(
    request: EnqueueEmbedRequest,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> EnqueuedJob:
    payload = EmbedPayload(**request.model_dump(include=set(EmbedPayload.model_fields)))
    job_id = await queue.enqueue_embed(payload, request.priority, request.parent_job_id)
    return EnqueuedJob(job_id=job_id)


@router.post(
    "/jobs/reindex",
    response_model=EnqueuedJob,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue a lexical reindex job",
    operation_id="enqueue_reindex_job",
)
async def enqueue_reindex_job(
    request: EnqueueReindexRequest,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> EnqueuedJob:
    payload = ReindexPayload(**request.model_dump(include=set(ReindexPayload.model_fields)))
    job_id = await queue.enqueue_reindex(payload, request.priority, request.parent_job_id)
    return EnqueuedJob(job_id=job_id)


@router.post(
    "/jobs/pipeline",
    response_model=PipelineJobs,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue ingest, embed and reindex as a chain",
    operation_id="enqueue_pipeline",
)
async def enqueue_pipeline(
    request: PipelineRequest,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> PipelineJobs:
    """Enqueue the full pipeline.

    The embed job waits for the ingest job and the reindex job waits for the
    embed job. A failed parent fails its dependants.
    """
    return await queue.enqueue_pipeline(request.file_path, request.file_name, request.force_reprocess)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatus,
    summary="Get job status",
    operation_id="get_job_status",
)
async def get_job_status(
    job_id: UUID,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> JobStatus:
    job = await queue.get_job_status(job_id)
    if job is None:
        raise _job_not_found(job_id)
    return job


@router.delete(
    "/jobs/{job_id}",
    response_model=JobStatus,
    summary="Cancel a job",
    operation_id="cancel_job",
)
async def cancel_job(
    job_id: UUID,
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> JobStatus:
    """Cancel a queued job, or ask an active job to stop at its next batch."""
    job = await queue.cancel_job(job_id)
    if job is None:
        raise _job_not_found(job_id)
    return job


@router.get(
    "/queue/stats",
    response_model=QueueStats,
    summary="Queue statistics",
    operation_id="get_queue_stats",
)
async def get_queue_stats(
    queue: Annotated[JobQueueService, Depends(get_job_queue_service)],
) -> QueueStats:
    return await queue.get_queue_stats()


@router.get(
    "/ingestion-runs",
    response_model=list[IngestionRunSummary],
    summary="Recent ingestion runs",
    operation_id="list_ingestion_runs",
)
async def list_ingestion_runs(
    repository: Annotated[IngestionRunRepository, Depends(get_ingestion_run_repository)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    run_status: Annotated[Optional[str], Query(alias="status")] = None,
) -> list[IngestionRunSummary]:
    runs = await repository.list_recent(limit=limit, status=run_status)
    return [IngestionRunSummary.model_validate(run) for run in runs]
