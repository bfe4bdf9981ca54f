"""SQLAlchemy models for all database tables."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
)
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR, UUID
from sqlalchemy.orm import Mapped, mapped_column

from mbs_catalog.core.config import settings
from mbs_catalog.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CatalogItem(Base):
    """One billing schedule entry, keyed by its external item number."""

    __tablename__ = "mbs_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    short_description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String, nullable=True)
    group_name: Mapped[str | None] = mapped_column(String, nullable=True)
    sub_group: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_type: Mapped[str | None] = mapped_column(String(10), nullable=True)  # G | S | AD | upstream code
    service_type: Mapped[str | None] = mapped_column(String, nullable=True)

    schedule_fee: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    benefit_75: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    benefit_85: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    benefit_100: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    has_anaesthetic: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    anaesthetic_basic_units: Mapped[int | None] = mapped_column(Integer, nullable=True)
    derived_fee_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    tsv: Mapped[Any | None] = mapped_column(TSVECTOR, nullable=True)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding.dimensions), nullable=True
    )
    raw_xml_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    embedded_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    lexical_indexed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=_utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    __table_args__ = (
        Index("ix_mbs_items_tsv", "tsv", postgresql_using="gin"),
        Index(
            "ix_mbs_items_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index("ix_mbs_items_provider_type", "provider_type"),
        Index("ix_mbs_items_category", "category"),
        Index("ix_mbs_items_is_active", "is_active"),
        Index("ix_mbs_items_schedule_fee", "schedule_fee"),
        {"comment": "Canonical MBS catalog; tsv and embedding are derived columns"},
    )


class IngestionRun(Base):
    """Audit record for one ingestion attempt of a specific file content hash."""

    __tablename__ = "mbs_ingestion_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    file_name: Mapped[str] = mapped_column(String, nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default="processing"
    )  # processing | completed | failed
    items_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_inserted: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    items_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    processor_version: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        Index("ix_mbs_ingestion_runs_status_started", "status", "started_at"),
    )


class CatalogJob(Base):
    """Persisted background job with an optional parent dependency."""

    __tablename__ = "catalog_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    kind: Mapped[str] = mapped_column(String, nullable=False)  # ingest | embed | reindex
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state: Mapped[str] = mapped_column(
        String, nullable=False, default="queued"
    )  # queued | active | completed | failed | cancelled
    # No foreign key: a parent may be purged or never have existed.
    parent_job_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )

    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    initial_backoff_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    backoff_coefficient: Mapped[float] = mapped_column(Float, nullable=False, default=2.0)
    max_backoff_seconds: Mapped[float] = mapped_column(Float, nullable=False, default=60.0)
    attempts_made: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    temporal_workflow_id: Mapped[str | None] = mapped_column(String, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_catalog_jobs_state_priority", "state", "priority", "created_at"),
        {"comment": "Job queue backend with parent to child dependencies"},
    )
