"""Embedding generation for catalog items.

Items are selected in keyset pages (``id > last_id``), embedded one batch per
provider call with retry/backoff, and persisted per batch so that progress
survives a crash mid-run.
"""

import asyncio
import time
import traceback
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mbs_catalog.core.config import settings
from mbs_catalog.core.embedding_client import EmbeddingClient, is_transient_error
from mbs_catalog.core.exceptions import ConfigurationError, InputError
from mbs_catalog.database.models import CatalogItem
from mbs_catalog.repositories.catalog_item_repository import CatalogItemRepository
from mbs_catalog.services.contracts import ProcessingResult
from mbs_catalog.utils.logging import get_logger
from mbs_catalog.utils.retry import RetryPolicy, retry_async

LOGGER = get_logger(__name__)

Checkpoint = Callable[[int], Awaitable[bool]]


def build_embedding_text(item: CatalogItem) -> str:
    """Embedding input built from the item's stable identifying fields."""
    parts = [
        f"MBS Item {item.item_number}:",
        item.description,
        item.category,
        item.group_name,
        item.service_type,
    ]
    return " ".join(part for part in parts if part)


class EmbeddingService:
    """Generates and stores vectors for catalog items."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_client: Optional[EmbeddingClient],
        catalog_repository_factory: Callable[[AsyncSession], CatalogItemRepository] = CatalogItemRepository,
        retry_policy: Optional[RetryPolicy] = None,
        inter_batch_delay_seconds: Optional[float] = None,
        max_batch_size: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        config = settings.embedding
        self.session_factory = session_factory
        self.embedding_client = embedding_client
        self.catalog_repository_factory = catalog_repository_factory
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.max_attempts,
            initial_backoff=config.initial_backoff_seconds,
            max_backoff=config.max_backoff_seconds,
        )
        self.inter_batch_delay_seconds = (
            config.inter_batch_delay_seconds if inter_batch_delay_seconds is None else inter_batch_delay_seconds
        )
        self.max_batch_size = max_batch_size or config.max_batch_size
        self.sleep = sleep

    async def generate(
        self,
        item_ids: Optional[Sequence[int]] = None,
        batch_size: int = 50,
        checkpoint: Optional[Checkpoint] = None,
    ) -> ProcessingResult:
        """Embed the given items, or every item missing a vector.

        Args:
            item_ids: Catalog primary keys to (re-)embed; None selects un-embedded items
            batch_size: Items per provider call
            checkpoint: Awaited after each batch with a progress percentage;
                returning False stops at that batch boundary

        Returns:
            ProcessingResult where ``items_updated`` counts vectors written. With
            no provider configured the run is skipped: it succeeds and every
            target counts as failed.
        """
        started = time.monotonic()
        embedding_seconds = 0.0
        processed = failed = 0

        try:
            if not 1 <= batch_size <= self.max_batch_size:
                raise InputError(f"batch_size must be between 1 and {self.max_batch_size}, got {batch_size}")

            ids = sorted(set(item_ids)) if item_ids is not None else None
            total = await self._count_targets(ids)

            if self.embedding_client is None:
                LOGGER.warning(
                    f"No embedding provider configured, skipping embeddings for {total} items",
                    extra={"explicit_ids": ids is not None},
                )
                return ProcessingResult(
                    success=True,
                    items_processed=total,
                    items_failed=total,
                    processing_time_ms=_elapsed_ms(started),
                    skipped=True,
                )

            LOGGER.info(
                f"Starting embedding generation for up to {total} items",
                extra={"batch_size": batch_size, "explicit_ids": ids is not None},
            )

            last_id = 0
            batch_index = 0
            cancelled = False
            while True:
                async with self.session_factory() as session:
                    items = await self.catalog_repository_factory(session).fetch_embedding_targets(
                        after_id=last_id, limit=batch_size, item_ids=ids
                    )
                if not items:
                    break
                last_id = items[-1].id

                if batch_index > 0 and self.inter_batch_delay_seconds > 0:
                    await self.sleep(self.inter_batch_delay_seconds)

                batch_started = time.monotonic()
                written = await self._embed_batch(batch_index, items)
                embedding_seconds += time.monotonic() - batch_started

                processed += written
                failed += len(items) - written
                batch_index += 1

                if checkpoint is not None:
                    done = processed + failed
                    progress = min(100, int(100 * done / total)) if total else 100
                    if not await checkpoint(progress):
                        LOGGER.info(f"Embedding generation cancelled after {done} items")
                        cancelled = True
                        break

            duration_ms = _elapsed_ms(started)
            LOGGER.info(
                f"Embedding generation finished: {processed} embedded, {failed} failed",
                extra={"duration_ms": duration_ms, "batches": batch_index},
            )
            return ProcessingResult(
                success=True,
                items_processed=processed + failed,
                items_updated=processed,
                items_failed=failed,
                processing_time_ms=duration_ms,
                embedding_time_ms=int(embedding_seconds * 1000),
                cancelled=cancelled,
            )

        except Exception as e:
            LOGGER.error(f"Embedding generation failed: {e}", exc_info=True)
            return ProcessingResult(
                success=False,
                items_processed=processed + failed,
                items_updated=processed,
                items_failed=failed,
                processing_time_ms=_elapsed_ms(started),
                embedding_time_ms=int(embedding_seconds * 1000),
                error_message=str(e),
                error_type=type(e).__name__,
                error_details={"traceback": traceback.format_exc()},
            )

    async def _count_targets(self, ids: Optional[list[int]]) -> int:
        async with self.session_factory() as session:
            repository = self.catalog_repository_factory(session)
            if ids is not None:
                return await repository.count_items(ids)
            return await repository.count(CatalogItem.embedding.is_(None))

    async def _embed_batch(self, batch_index: int, items: list[CatalogItem]) -> int:
        """Embed and persist one batch. Returns the number of vectors written.

        Provider errors are retried per the retry policy; after exhaustion the
        whole batch counts as failed. Store errors propagate.
        """
        texts = [build_embedding_text(item) for item in items]
        try:
            vectors = await retry_async(
                lambda: self.embedding_client.embed(texts),
                self.retry_policy,
                should_retry=is_transient_error,
                sleep=self.sleep,
                operation=f"embedding batch {batch_index}",
            )
        except ConfigurationError:
            raise
        except Exception as e:
            LOGGER.error(
                f"Embedding batch {batch_index} failed after retries: {e}",
                extra={"batch_index": batch_index, "batch_size": len(items)},
            )
            return 0

        async with self.session_factory() as session:
            repository = self.catalog_repository_factory(session)
            written = await repository.save_embeddings(
                {item.id: vector for item, vector in zip(items, vectors)}
            )
            await session.commit()
        return written


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
