"""Per-kind job policies and dependency resolution."""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from mbs_catalog.database.models import CatalogJob
from mbs_catalog.schemas.jobs import JobKind, JobState


@dataclass(frozen=True)
class JobPolicy:
    """Retry, concurrency and retention policy for one job kind."""

    max_attempts: int
    initial_backoff_seconds: float
    backoff_coefficient: float = 2.0
    max_backoff_seconds: float = 60.0
    concurrency: int = 1
    start_to_close_timeout: timedelta = timedelta(minutes=30)
    heartbeat_timeout: timedelta = timedelta(minutes=5)
    completed_retention: timedelta = timedelta(hours=24)
    failed_retention: timedelta = timedelta(days=7)


JOB_POLICIES: dict[JobKind, JobPolicy] = {
    JobKind.INGEST: JobPolicy(
        max_attempts=3,
        initial_backoff_seconds=2.0,
        start_to_close_timeout=timedelta(hours=1),
    ),
    JobKind.EMBED: JobPolicy(
        max_attempts=2,
        initial_backoff_seconds=5.0,
        start_to_close_timeout=timedelta(hours=2),
    ),
    JobKind.REINDEX: JobPolicy(
        max_attempts=2,
        initial_backoff_seconds=1.0,
        start_to_close_timeout=timedelta(minutes=15),
    ),
}

# Ingestion preempts later pipeline stages
PIPELINE_PRIORITIES: dict[JobKind, int] = {
    JobKind.INGEST: 10,
    JobKind.EMBED: 5,
    JobKind.REINDEX: 1,
}


class DependencyStatus(str, Enum):
    READY = "ready"
    WAITING = "waiting"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class DependencyResolution:
    status: DependencyStatus
    reason: Optional[str] = None


def resolve_dependency(job: CatalogJob, parent: Optional[CatalogJob]) -> DependencyResolution:
    """Decide whether a queued job may start given its parent's state.

    A job without a parent, or whose parent completed, is ready. A parent that
    failed, was cancelled or no longer exists blocks the job permanently.
    """
    if job.parent_job_id is None:
        return DependencyResolution(DependencyStatus.READY)
    if parent is None:
        return DependencyResolution(
            DependencyStatus.BLOCKED, f"Parent job {job.parent_job_id} not found"
        )
    if parent.state == JobState.COMPLETED.value:
        return DependencyResolution(DependencyStatus.READY)
    if parent.state in (JobState.FAILED.value, JobState.CANCELLED.value):
        return DependencyResolution(
            DependencyStatus.BLOCKED, f"Parent job {parent.id} {parent.state}"
        )
    return DependencyResolution(DependencyStatus.WAITING)


def workflow_id_for(job_id) -> str:
    return f"catalog-job-{job_id}"
