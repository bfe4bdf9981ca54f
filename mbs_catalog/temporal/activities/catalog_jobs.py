"""Temporal activities that run catalog jobs and record their outcome."""

from typing import Any, Awaitable, Callable
from uuid import UUID

from temporalio import activity
from temporalio.exceptions import ApplicationError

from mbs_catalog.core.config import settings
from mbs_catalog.core.database import async_session_maker
from mbs_catalog.core.embedding_client import get_embedding_client
from mbs_catalog.repositories.job_repository import JobRepository
from mbs_catalog.schemas.jobs import EmbedPayload, IngestPayload, JobState, ReindexPayload
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.services.indexing.embedding_service import EmbeddingService
from mbs_catalog.services.indexing.lexical_index_service import LexicalIndexService
from mbs_catalog.services.ingestion.ingestion_service import IngestionService
from mbs_catalog.temporal.constants import (
    EMBED_ACTIVITY,
    INGEST_ACTIVITY,
    MARK_JOB_FAILED_ACTIVITY,
    MARK_JOB_FINISHED_ACTIVITY,
    NON_RETRYABLE_ERROR_TYPES,
    REINDEX_ACTIVITY,
)
from mbs_catalog.utils.logging import get_logger

logger = get_logger(__name__)


async def _start_attempt(job_id: str) -> None:
    attempt = activity.info().attempt
    async with async_session_maker() as session:
        await JobRepository(session).record_attempt(UUID(job_id), attempt)
        await session.commit()
    logger.info(f"Job {job_id} attempt {attempt}")


def _checkpoint(job_id: str) -> Callable[[int], Awaitable[bool]]:
    """Progress callback: heartbeats, stores progress, and reports whether to continue."""

    async def checkpoint(progress: int) -> bool:
        activity.heartbeat(progress)
        async with async_session_maker() as session:
            cancel_requested = await JobRepository(session).update_progress(UUID(job_id), progress)
            await session.commit()
        return not cancel_requested

    return checkpoint


def _raise_on_failure(job_id: str, result: ProcessingResult) -> dict[str, Any]:
    """Turn a failed result into an ApplicationError so the retry policy applies."""
    if result.success:
        return result.to_dict()
    error_type = result.error_type or "ProcessingError"
    raise ApplicationError(
        result.error_message or f"Job {job_id} failed",
        {"items_processed": result.items_processed, "items_failed": result.items_failed},
        type=error_type,
        non_retryable=error_type in NON_RETRYABLE_ERROR_TYPES,
    )


@activity.defn(name=INGEST_ACTIVITY)
async def run_ingest_job_activity(job_id: str, payload: dict) -> dict:
    """Ingest an MBS XML file for a queued job."""
    await _start_attempt(job_id)
    data = IngestPayload.model_validate(payload)
    service = IngestionService(async_session_maker)
    result = await service.ingest(
        data.file_path,
        data.file_name,
        force_reprocess=data.force_reprocess,
        checkpoint=_checkpoint(job_id),
    )
    return _raise_on_failure(job_id, result)


@activity.defn(name=EMBED_ACTIVITY)
async def run_embed_job_activity(job_id: str, payload: dict) -> dict:
    """Generate embeddings for a queued job."""
    await _start_attempt(job_id)
    data = EmbedPayload.model_validate(payload)
    service = EmbeddingService(async_session_maker, get_embedding_client())
    result = await service.generate(
        item_ids=data.item_ids,
        batch_size=data.batch_size or settings.embedding.batch_size,
        checkpoint=_checkpoint(job_id),
    )
    return _raise_on_failure(job_id, result)


@activity.defn(name=REINDEX_ACTIVITY)
async def run_reindex_job_activity(job_id: str, payload: dict) -> dict:
    """Rebuild the lexical index for a queued job."""
    await _start_attempt(job_id)
    data = ReindexPayload.model_validate(payload)
    result = await LexicalIndexService(async_session_maker).reindex(item_ids=data.item_ids)
    return _raise_on_failure(job_id, result)


@activity.defn(name=MARK_JOB_FINISHED_ACTIVITY)
async def mark_job_finished_activity(job_id: str, state: str, result: dict) -> None:
    async with async_session_maker() as session:
        changed = await JobRepository(session).finish(UUID(job_id), JobState(state), result=result)
        await session.commit()
    if not changed:
        logger.warning(f"Job {job_id} was already terminal, {state} not recorded")


@activity.defn(name=MARK_JOB_FAILED_ACTIVITY)
async def mark_job_failed_activity(job_id: str, reason: str) -> None:
    async with async_session_maker() as session:
        await JobRepository(session).finish(UUID(job_id), JobState.FAILED, failure_reason=reason)
        await session.commit()
    logger.error(f"Job {job_id} failed: {reason}")


CATALOG_JOB_ACTIVITIES = [
    run_ingest_job_activity,
    run_embed_job_activity,
    run_reindex_job_activity,
    mark_job_finished_activity,
    mark_job_failed_activity,
]
