"""Lexical index maintenance for the catalog ``tsv`` column."""

import time
import traceback
from typing import Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mbs_catalog.repositories.catalog_item_repository import CatalogItemRepository
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


class LexicalIndexService:
    """Recomputes the weighted full-text vector from canonical fields.

    The update reads committed columns only and is idempotent, so it can run
    while an ingestion is in progress.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog_repository_factory: Callable[[AsyncSession], CatalogItemRepository] = CatalogItemRepository,
    ):
        self.session_factory = session_factory
        self.catalog_repository_factory = catalog_repository_factory

    async def reindex(self, item_ids: Optional[Sequence[int]] = None) -> ProcessingResult:
        """Rebuild the lexical index for the given item ids, or for every item."""
        started = time.monotonic()
        ids = sorted(set(item_ids)) if item_ids is not None else None
        requested = 0
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repository = self.catalog_repository_factory(session)
                    requested = await repository.count_items(ids)
                    updated = await repository.recompute_lexical_index(ids)

            duration_ms = int((time.monotonic() - started) * 1000)
            LOGGER.info(
                f"Lexical index rebuilt for {updated} items",
                extra={"duration_ms": duration_ms, "explicit_ids": ids is not None},
            )
            return ProcessingResult(
                success=True,
                items_processed=updated,
                items_updated=updated,
                processing_time_ms=duration_ms,
            )
        except Exception as e:
            LOGGER.error(f"Lexical reindex failed: {e}", exc_info=True)
            return ProcessingResult(
                success=False,
                items_processed=requested,
                items_failed=requested,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                error_message=str(e),
                error_type=type(e).__name__,
                error_details={"traceback": traceback.format_exc()},
            )
