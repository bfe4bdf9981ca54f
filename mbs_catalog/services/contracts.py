"""Result contracts shared by the background processing services."""

from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class ProcessingResult:
    """Outcome of an ingestion, embedding or reindex run.

    The processing services never raise from their public entry points; a
    fatal failure is reported with ``success=False`` and the error fields set.

    Attributes:
        success: Whether the run finished without a fatal error
        items_processed: Items examined (succeeded + failed)
        items_inserted: New catalog rows created
        items_updated: Existing rows updated (or vectors/index entries written)
        items_failed: Items that could not be transformed or persisted
        processing_time_ms: Wall-clock duration of the run
        embedding_time_ms: Time spent in the embedding provider (embed runs only)
        skipped: True when an identical file was already ingested
        cancelled: True when a cancellation checkpoint stopped the run
        run_id: Ingestion run identifier, when one was recorded
        error_message: Human readable failure message
        error_type: Exception class name of the fatal failure
        error_details: Extra failure context (traceback, batch errors)
    """

    success: bool
    items_processed: int = 0
    items_inserted: int = 0
    items_updated: int = 0
    items_failed: int = 0
    processing_time_ms: int = 0
    embedding_time_ms: Optional[int] = None
    skipped: bool = False
    cancelled: bool = False
    run_id: Optional[str] = None
    error_message: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict[str, Any]] = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation used for job results."""
        data = asdict(self)
        if data["embedding_time_ms"] is None:
            data.pop("embedding_time_ms")
        return data
