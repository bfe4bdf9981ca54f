"""Catalog store: lexical and vector queries over the MBS item table."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import Text, cast, func, literal_column, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from mbs_catalog.database.models import CatalogItem, IngestionRun
from mbs_catalog.repositories.base_repository import BaseRepository
from mbs_catalog.schemas.catalog import ProviderType, SearchFilters, SortOrder
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)

TEXT_SEARCH_CONFIG = literal_column("'english'::regconfig")

# ts_rank normalization 32 maps rank into [0, 1) as rank / (rank + 1)
TS_RANK_NORMALIZATION = 32


@dataclass
class CatalogHit:
    """A catalog row with the score produced by one retrieval path."""

    item: CatalogItem
    score: float


def build_filter_conditions(filters: Optional[SearchFilters]) -> list[ColumnElement[bool]]:
    """Translate the fixed filter set into SQL predicates.

    Shared by lexical and semantic search so both paths see the same rows.
    """
    filters = filters or SearchFilters()
    conditions: list[ColumnElement[bool]] = []

    provider_type = filters.provider_type
    if provider_type and provider_type != ProviderType.ALL.value:
        conditions.append(CatalogItem.provider_type == provider_type)
    if filters.category:
        conditions.append(CatalogItem.category == filters.category)
    if not filters.include_inactive:
        conditions.append(CatalogItem.is_active.is_(True))
    if filters.min_fee is not None:
        conditions.append(CatalogItem.schedule_fee >= filters.min_fee)
    if filters.max_fee is not None:
        conditions.append(CatalogItem.schedule_fee <= filters.max_fee)

    return conditions


def lexical_document() -> ColumnElement[Any]:
    """Weighted tsvector expression over the canonical text fields.

    A: item number and short description, B: description,
    C: category/group hierarchy, D: provider and service type.
    """
    def weighted(weight: str, *columns) -> ColumnElement[Any]:
        text_value = func.concat_ws(" ", *columns)
        return func.setweight(func.to_tsvector(TEXT_SEARCH_CONFIG, text_value), weight)

    return (
        weighted("A", cast(CatalogItem.item_number, Text), CatalogItem.short_description)
        .op("||")(weighted("B", CatalogItem.description))
        .op("||")(
            weighted(
                "C",
                CatalogItem.category,
                CatalogItem.sub_category,
                CatalogItem.group_name,
                CatalogItem.sub_group,
            )
        )
        .op("||")(weighted("D", CatalogItem.provider_type, CatalogItem.service_type))
    )


def _lexical_order(sort_by: SortOrder, rank: ColumnElement[Any]) -> list[ColumnElement[Any]]:
    if sort_by == SortOrder.FEE_ASC:
        return [CatalogItem.schedule_fee.asc().nulls_last(), CatalogItem.item_number.asc()]
    if sort_by == SortOrder.FEE_DESC:
        return [CatalogItem.schedule_fee.desc().nulls_last(), CatalogItem.item_number.asc()]
    if sort_by == SortOrder.ITEM_NUMBER:
        return [CatalogItem.item_number.asc()]
    return [rank.desc(), CatalogItem.item_number.asc()]


class CatalogItemRepository(BaseRepository[CatalogItem]):
    """Repository for catalog items.

    Read side serves search; write side is used only by the ingestion,
    embedding and lexical index stages.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, CatalogItem)

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

    async def lexical_search(
        self,
        query: str,
        filters: Optional[SearchFilters],
        limit: int,
        offset: int = 0,
        sort_by: SortOrder = SortOrder.RELEVANCE,
    ) -> tuple[list[CatalogHit], int]:
        """Full-text search against the precomputed ``tsv`` column.

        Returns:
            Page of hits scored by ``ts_rank`` and the total match count
        """
        ts_query = func.plainto_tsquery(TEXT_SEARCH_CONFIG, query)
        rank = func.ts_rank(CatalogItem.tsv, ts_query, TS_RANK_NORMALIZATION).label("rank")
        conditions = [CatalogItem.tsv.op("@@")(ts_query), *build_filter_conditions(filters)]

        stmt = (
            select(CatalogItem, rank)
            .where(*conditions)
            .order_by(*_lexical_order(sort_by, rank))
            .limit(limit)
            .offset(offset)
        )
        try:
            result = await self.session.execute(stmt)
            hits = [CatalogHit(item=row[0], score=float(row[1] or 0.0)) for row in result.all()]
            total = await self.count(*conditions)
        except SQLAlchemyError as e:
            self.logger.error(f"Lexical search failed: {str(e)}", exc_info=True)
            raise
        return hits, total

    async def semantic_search(
        self,
        embedding: Sequence[float],
        filters: Optional[SearchFilters],
        limit: int,
        offset: int = 0,
    ) -> tuple[list[CatalogHit], int]:
        """Nearest-neighbour search over embedded rows.

        Items without a vector are excluded. Similarity is ``1 - cosine distance``.
        """
        distance = CatalogItem.embedding.cosine_distance(list(embedding))
        similarity = (1 - distance).label("similarity")
        conditions = [CatalogItem.embedding.is_not(None), *build_filter_conditions(filters)]

        stmt = (
            select(CatalogItem, similarity)
            .where(*conditions)
            .order_by(distance.asc(), CatalogItem.item_number.asc())
            .limit(limit)
            .offset(offset)
        )
        try:
            result = await self.session.execute(stmt)
            hits = [CatalogHit(item=row[0], score=float(row[1])) for row in result.all()]
            total = await self.count(*conditions)
        except SQLAlchemyError as e:
            self.logger.error(f"Semantic search failed: {str(e)}", exc_info=True)
            raise
        return hits, total

    async def find_related_by_item_number(
        self,
        item_number: int,
        filters: Optional[SearchFilters],
        limit: int,
    ) -> list[CatalogItem]:
        """Items whose number contains ``item_number`` as a digit substring."""
        number_text = cast(CatalogItem.item_number, Text)
        stmt = (
            select(CatalogItem)
            .where(
                CatalogItem.item_number != item_number,
                number_text.contains(str(item_number)),
                *build_filter_conditions(filters),
            )
            .order_by(func.length(number_text).asc(), CatalogItem.item_number.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    async def get_by_item_number(self, item_number: int) -> Optional[CatalogItem]:
        result = await self.session.execute(
            select(CatalogItem).where(CatalogItem.item_number == item_number)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, ids: Sequence[int]) -> list[CatalogItem]:
        if not ids:
            return []
        result = await self.session.execute(
            select(CatalogItem)
            .where(CatalogItem.id.in_(list(ids)))
            .order_by(CatalogItem.item_number.asc())
        )
        return list(result.scalars().all())

    async def health_stats(self) -> dict[str, Any]:
        """Catalog counts and the completion time of the latest ingestion."""
        try:
            counts = await self.session.execute(
                select(
                    func.count(),
                    func.count().filter(CatalogItem.is_active.is_(True)),
                    func.count().filter(CatalogItem.embedding.is_not(None)),
                ).select_from(CatalogItem)
            )
            total, active, embedded = counts.one()
            last_updated = await self.session.scalar(
                select(func.max(IngestionRun.completed_at)).where(IngestionRun.status == "completed")
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error computing catalog health stats: {str(e)}", exc_info=True)
            raise

        return {
            "total_items": total or 0,
            "active_items": active or 0,
            "items_with_embeddings": embedded or 0,
            "last_updated": last_updated,
        }

    # ------------------------------------------------------------------ #
    # Write side
    # ------------------------------------------------------------------ #

    async def upsert_item(self, values: dict[str, Any]) -> bool:
        """Insert or update one item keyed by item number.

        Does not commit; callers run batches inside their own transaction.

        Returns:
            True if a new row was inserted, False if an existing row was updated
        """
        stmt = pg_insert(CatalogItem).values(**values)
        update_columns = {
            key: stmt.excluded[key] for key in values if key != "item_number"
        }
        update_columns["last_updated"] = func.now()
        stmt = stmt.on_conflict_do_update(
            index_elements=[CatalogItem.item_number],
            set_=update_columns,
        ).returning(literal_column("(xmax = 0)").label("inserted"))

        result = await self.session.execute(stmt)
        return bool(result.scalar_one())

    async def fetch_embedding_targets(
        self,
        after_id: int,
        limit: int,
        item_ids: Optional[Sequence[int]] = None,
    ) -> list[CatalogItem]:
        """Next keyset page of items to embed.

        Explicit ``item_ids`` are re-embedded even when they already hold a
        vector; otherwise only items missing a vector are selected.
        """
        stmt = select(CatalogItem).where(CatalogItem.id > after_id)
        if item_ids is not None:
            stmt = stmt.where(CatalogItem.id.in_(list(item_ids)))
        else:
            stmt = stmt.where(CatalogItem.embedding.is_(None))
        stmt = stmt.order_by(CatalogItem.id.asc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save_embeddings(self, vectors: dict[int, list[float]]) -> int:
        """Persist vectors by primary key. Does not commit."""
        if not vectors:
            return 0
        embedded_at = datetime.now(timezone.utc)
        await self.session.execute(
            update(CatalogItem),
            [
                {"id": item_id, "embedding": vector, "embedded_at": embedded_at}
                for item_id, vector in vectors.items()
            ],
        )
        return len(vectors)

    async def recompute_lexical_index(self, item_ids: Optional[Sequence[int]] = None) -> int:
        """Rebuild ``tsv`` from canonical fields. Does not commit.

        Returns:
            Number of rows updated
        """
        stmt = update(CatalogItem).values(
            tsv=lexical_document(),
            lexical_indexed_at=func.now(),
        )
        if item_ids is not None:
            stmt = stmt.where(CatalogItem.id.in_(list(item_ids)))
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        return result.rowcount or 0

    async def count_items(self, item_ids: Optional[Sequence[int]] = None) -> int:
        if item_ids is None:
            return await self.count()
        return await self.count(CatalogItem.id.in_(list(item_ids)))
