from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mbs_catalog.database.models import IngestionRun
from mbs_catalog.repositories.base_repository import BaseRepository


class IngestionRunRepository(BaseRepository[IngestionRun]):
    """Ingestion audit records keyed by file content hash.

    Every write here commits immediately so the run record survives a
    failure in the batches that follow.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, IngestionRun)

    async def find_completed_by_hash(self, file_hash: str) -> Optional[IngestionRun]:
        """Latest completed run for a content hash, if any."""
        result = await self.session.execute(
            select(IngestionRun)
            .where(IngestionRun.file_hash == file_hash, IngestionRun.status == "completed")
            .order_by(IngestionRun.completed_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_run(
        self,
        file_name: str,
        file_hash: str,
        file_size: int,
        processor_version: str,
    ) -> IngestionRun:
        return await self.create(
            file_name=file_name,
            file_hash=file_hash,
            file_size=file_size,
            status="processing",
            processor_version=processor_version,
            started_at=datetime.now(timezone.utc),
        )

    async def complete_run(
        self,
        run_id: UUID,
        processed: int,
        inserted: int,
        updated: int,
        failed: int,
        processing_time_ms: int,
    ) -> None:
        await self._finalize(
            run_id,
            status="completed",
            items_processed=processed,
            items_inserted=inserted,
            items_updated=updated,
            items_failed=failed,
            processing_time_ms=processing_time_ms,
        )

    async def fail_run(
        self,
        run_id: UUID,
        error_message: str,
        error_details: Optional[dict[str, Any]],
        processing_time_ms: int,
    ) -> None:
        await self._finalize(
            run_id,
            status="failed",
            error_message=error_message,
            error_details=error_details,
            processing_time_ms=processing_time_ms,
        )

    async def _finalize(self, run_id: UUID, **values: Any) -> None:
        try:
            await self.session.execute(
                update(IngestionRun)
                .where(IngestionRun.id == run_id, IngestionRun.status == "processing")
                .values(completed_at=datetime.now(timezone.utc), **values)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error finalizing ingestion run {run_id}: {str(e)}",
                exc_info=True
            )
            raise

    async def list_recent(self, limit: int = 20, status: Optional[str] = None) -> list[IngestionRun]:
        stmt = select(IngestionRun).order_by(IngestionRun.started_at.desc()).limit(limit)
        if status:
            stmt = stmt.where(IngestionRun.status == status)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
