"""MBS XML ingestion service.

Pipeline for one file:

1. Size check and content hash (SHA-256)
2. Idempotency short-circuit on a completed run with the same hash
3. Defensive parse and item collection discovery
4. Run record creation
5. Per-item transformation and batched upserts, one transaction per batch
6. Run finalization
"""

import asyncio
import hashlib
import time
import traceback
from datetime import date
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mbs_catalog.core.config import settings
from mbs_catalog.core.exceptions import (
    BatchError,
    FileTooLargeError,
    InputError,
    ItemTransformError,
    PersistenceError,
)
from mbs_catalog.repositories.catalog_item_repository import CatalogItemRepository
from mbs_catalog.repositories.ingestion_run_repository import IngestionRunRepository
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.services.ingestion.item_transformer import transform_item
from mbs_catalog.services.ingestion.xml_parser import DEFAULT_SHAPES, XmlShape, extract_items, parse_catalog_xml
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)

Checkpoint = Callable[[int], Awaitable[bool]]


class IngestionService:
    """Imports an MBS XML file into the catalog.

    ``ingest`` never raises: every failure is returned as a
    ``ProcessingResult`` with ``success=False`` after being recorded on the
    ingestion run (when one was created).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog_repository_factory: Callable[[AsyncSession], CatalogItemRepository] = CatalogItemRepository,
        run_repository_factory: Callable[[AsyncSession], IngestionRunRepository] = IngestionRunRepository,
        max_file_size_bytes: Optional[int] = None,
        batch_size: Optional[int] = None,
        processor_version: Optional[str] = None,
        shapes: tuple[XmlShape, ...] = DEFAULT_SHAPES,
        clock: Callable[[], date] = date.today,
    ):
        self.session_factory = session_factory
        self.catalog_repository_factory = catalog_repository_factory
        self.run_repository_factory = run_repository_factory
        self.max_file_size_bytes = max_file_size_bytes or settings.ingestion.max_file_size_bytes
        self.batch_size = batch_size or settings.ingestion.batch_size
        self.processor_version = processor_version or settings.ingestion.processor_version
        self.shapes = shapes
        self.clock = clock

    async def ingest(
        self,
        file_path: str,
        file_name: str,
        force_reprocess: bool = False,
        checkpoint: Optional[Checkpoint] = None,
    ) -> ProcessingResult:
        """Ingest one XML file.

        Args:
            file_path: Path to the XML file on local storage
            file_name: Display name recorded on the run
            force_reprocess: Re-import even if this content was already ingested
            checkpoint: Awaited after each batch with the progress percentage;
                returning False stops the run at that batch boundary

        Returns:
            ProcessingResult with item counts, or the failure details
        """
        started = time.monotonic()
        run_id = None

        LOGGER.info(
            f"Starting ingestion of {file_name}",
            extra={"file_path": file_path, "force_reprocess": force_reprocess},
        )

        try:
            data = await self._read_file(Path(file_path))
            file_hash = hashlib.sha256(data).hexdigest()

            if not force_reprocess:
                previous = await self._find_previous_run(file_hash)
                if previous is not None:
                    LOGGER.info(
                        f"File {file_name} already ingested, returning previous run counts",
                        extra={"file_hash": file_hash, "run_id": str(previous.id)},
                    )
                    return ProcessingResult(
                        success=True,
                        items_processed=previous.items_processed,
                        items_inserted=previous.items_inserted,
                        items_updated=previous.items_updated,
                        items_failed=previous.items_failed,
                        processing_time_ms=_elapsed_ms(started),
                        skipped=True,
                        run_id=str(previous.id),
                    )

            root = await asyncio.to_thread(parse_catalog_xml, data)

            async with self.session_factory() as session:
                run = await self.run_repository_factory(session).create_run(
                    file_name=file_name,
                    file_hash=file_hash,
                    file_size=len(data),
                    processor_version=self.processor_version,
                )
                run_id = run.id

            _, records = extract_items(root, self.shapes)
            del root

            counts = await self._process_records(records, checkpoint)
            duration_ms = _elapsed_ms(started)

            async with self.session_factory() as session:
                runs = self.run_repository_factory(session)
                if counts["cancelled"]:
                    await runs.fail_run(
                        run_id,
                        error_message=f"Cancelled after {counts['processed']} of {len(records)} items",
                        error_details={"cancelled": True, **_count_details(counts)},
                        processing_time_ms=duration_ms,
                    )
                else:
                    await runs.complete_run(
                        run_id,
                        processed=counts["processed"],
                        inserted=counts["inserted"],
                        updated=counts["updated"],
                        failed=counts["failed"],
                        processing_time_ms=duration_ms,
                    )

            LOGGER.info(
                f"Ingestion of {file_name} finished: {counts['processed']} processed, "
                f"{counts['inserted']} inserted, {counts['updated']} updated, {counts['failed']} failed",
                extra={"run_id": str(run_id), "duration_ms": duration_ms, "cancelled": counts["cancelled"]},
            )

            return ProcessingResult(
                success=True,
                items_processed=counts["processed"],
                items_inserted=counts["inserted"],
                items_updated=counts["updated"],
                items_failed=counts["failed"],
                processing_time_ms=duration_ms,
                cancelled=counts["cancelled"],
                run_id=str(run_id),
                error_details={"batch_errors": counts["batch_errors"]} if counts["batch_errors"] else None,
            )

        except Exception as e:
            duration_ms = _elapsed_ms(started)
            details = {
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
            }
            if isinstance(e, InputError):
                LOGGER.warning(f"Ingestion of {file_name} rejected: {e}", extra={"file_path": file_path})
            else:
                LOGGER.error(f"Ingestion of {file_name} failed: {e}", exc_info=True, extra={"file_path": file_path})
            if run_id is not None:
                await self._record_failure(run_id, str(e), details, duration_ms)

            return ProcessingResult(
                success=False,
                processing_time_ms=duration_ms,
                run_id=str(run_id) if run_id is not None else None,
                error_message=str(e),
                error_type=type(e).__name__,
                error_details=details,
            )

    async def _read_file(self, path: Path) -> bytes:
        try:
            size = path.stat().st_size
        except FileNotFoundError as e:
            raise InputError(f"File not found: {path}", original_error=e) from e
        if not path.is_file():
            raise InputError(f"Not a regular file: {path}")
        if size > self.max_file_size_bytes:
            raise FileTooLargeError(
                f"File size {size} bytes exceeds maximum of {self.max_file_size_bytes} bytes"
            )
        return await asyncio.to_thread(path.read_bytes)

    async def _find_previous_run(self, file_hash: str):
        async with self.session_factory() as session:
            return await self.run_repository_factory(session).find_completed_by_hash(file_hash)

    async def _process_records(
        self,
        records: list[dict[str, str]],
        checkpoint: Optional[Checkpoint],
    ) -> dict[str, Any]:
        counts: dict[str, Any] = {
            "processed": 0,
            "inserted": 0,
            "updated": 0,
            "failed": 0,
            "cancelled": False,
            "batch_errors": [],
        }
        today = self.clock()
        total_batches = max(1, -(-len(records) // self.batch_size))

        for batch_index, start in enumerate(range(0, len(records), self.batch_size)):
            batch = records[start:start + self.batch_size]
            rows = []
            for record in batch:
                try:
                    rows.append(transform_item(record, today))
                except ItemTransformError as e:
                    counts["failed"] += 1
                    LOGGER.warning(
                        f"Skipping item: {e}",
                        extra={"batch_index": batch_index, "item_num": record.get("ItemNum")},
                    )
            counts["processed"] += len(batch)

            try:
                inserted, updated = await self._upsert_batch(batch_index, rows)
                counts["inserted"] += inserted
                counts["updated"] += updated
            except BatchError as e:
                counts["failed"] += e.item_count
                counts["batch_errors"].append({"batch_index": batch_index, "error": str(e)})

            if checkpoint is not None:
                progress = int(100 * (batch_index + 1) / total_batches)
                if not await checkpoint(progress):
                    LOGGER.info(
                        f"Ingestion cancelled after batch {batch_index + 1}/{total_batches}",
                        extra={"batch_index": batch_index},
                    )
                    counts["cancelled"] = True
                    break

        return counts

    async def _upsert_batch(self, batch_index: int, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """Upsert one batch in a single transaction.

        Raises:
            BatchError: The batch was rolled back; every row in it counts as failed
            PersistenceError: The store is unreachable; fatal to the run
        """
        if not rows:
            return 0, 0

        inserted = updated = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repository = self.catalog_repository_factory(session)
                    for row in rows:
                        if await repository.upsert_item(row):
                            inserted += 1
                        else:
                            updated += 1
        except (OperationalError, InterfaceError, OSError) as e:
            raise PersistenceError(f"Catalog store unavailable during batch {batch_index}: {e}", original_error=e) from e
        except Exception as e:
            LOGGER.error(
                f"Batch {batch_index} rolled back: {e}",
                exc_info=True,
                extra={"batch_index": batch_index, "batch_size": len(rows)},
            )
            raise BatchError(str(e), batch_index=batch_index, item_count=len(rows), original_error=e) from e

        return inserted, updated

    async def _record_failure(
        self,
        run_id: Any,
        message: str,
        details: dict[str, Any],
        duration_ms: int,
    ) -> None:
        try:
            async with self.session_factory() as session:
                await self.run_repository_factory(session).fail_run(
                    run_id,
                    error_message=message,
                    error_details=details,
                    processing_time_ms=duration_ms,
                )
        except Exception:
            LOGGER.error(
                f"Could not record failure on ingestion run {run_id}",
                exc_info=True,
            )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _count_details(counts: dict[str, Any]) -> dict[str, int]:
    return {key: counts[key] for key in ("processed", "inserted", "updated", "failed")}
