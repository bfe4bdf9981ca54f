"""Job orchestration and ingestion audit schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobKind(str, Enum):
    INGEST = "ingest"
    EMBED = "embed"
    REINDEX = "reindex"


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class IngestPayload(BaseModel):
    file_path: str
    file_name: str
    force_reprocess: bool = False

    @field_validator("file_path", "file_name")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value


class EmbedPayload(BaseModel):
    item_ids: Optional[list[int]] = None
    batch_size: Optional[int] = None


class ReindexPayload(BaseModel):
    item_ids: Optional[list[int]] = None


class EnqueueOptions(BaseModel):
    priority: int = 0
    parent_job_id: Optional[UUID] = None


class EnqueueIngestRequest(IngestPayload, EnqueueOptions):
    pass


class EnqueueEmbedRequest(EmbedPayload, EnqueueOptions):
    pass


class EnqueueReindexRequest(ReindexPayload, EnqueueOptions):
    pass


class PipelineRequest(IngestPayload):
    pass


class EnqueuedJob(BaseModel):
    job_id: UUID


class PipelineJobs(BaseModel):
    ingest_job_id: UUID
    embed_job_id: UUID
    reindex_job_id: UUID


class JobStatus(BaseModel):
    """Status view of a persisted job."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    kind: str
    state: str
    priority: int
    progress: int
    parent_job_id: Optional[UUID] = None
    attempts_made: int = 0
    max_attempts: int = 1
    cancel_requested: bool = False
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    result: Optional[dict[str, Any]] = None


class QueueStats(BaseModel):
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0
    by_kind: dict[str, dict[str, int]] = Field(default_factory=dict)


class IngestionRunSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    file_hash: str
    file_size: int
    status: str
    items_processed: int
    items_inserted: int
    items_updated: int
    items_failed: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    processor_version: str
