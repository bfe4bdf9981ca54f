"""Unit tests for catalog store SQL construction."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from mbs_catalog.repositories.catalog_item_repository import (
    CatalogItemRepository,
    build_filter_conditions,
    lexical_document,
)
from mbs_catalog.schemas.catalog import SearchFilters


def _sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


class TestBuildFilterConditions:

    def test_default_filters_only_active(self):
        conditions = build_filter_conditions(None)

        assert len(conditions) == 1
        assert "mbs_items.is_active IS true" in _sql(conditions[0])

    def test_all_filters(self):
        conditions = build_filter_conditions(
            SearchFilters(provider_type="S", category="3", include_inactive=True, min_fee=10.0, max_fee=100.0)
        )

        sql = [_sql(c) for c in conditions]
        assert sql == [
            "mbs_items.provider_type = %(provider_type_1)s",
            "mbs_items.category = %(category_1)s",
            "mbs_items.schedule_fee >= %(schedule_fee_1)s",
            "mbs_items.schedule_fee <= %(schedule_fee_2)s",
        ]

    def test_provider_all_disables_filter(self):
        conditions = build_filter_conditions(SearchFilters(provider_type="ALL", include_inactive=True))

        assert conditions == []


def test_lexical_document_weights_fields():
    sql = _sql(lexical_document())

    assert sql.count("setweight(to_tsvector('english'::regconfig") == 4
    assert "mbs_items.description" in sql
    assert "mbs_items.service_type" in sql


class TestCatalogItemRepository:
    """Tests for statements issued through the session."""

    def setup_method(self):
        self.session = MagicMock()
        self.session.execute = AsyncMock()
        self.repository = CatalogItemRepository(self.session)

    async def test_upsert_reports_insert(self):
        self.session.execute.return_value = MagicMock(scalar_one=MagicMock(return_value=True))

        inserted = await self.repository.upsert_item({"item_number": 23, "description": "Level B"})

        assert inserted is True
        sql = _sql(self.session.execute.await_args.args[0])
        assert "ON CONFLICT (item_number) DO UPDATE" in sql
        assert "(xmax = 0)" in sql

    async def test_save_embeddings_bulk_updates_by_primary_key(self):
        written = await self.repository.save_embeddings({1: [0.1], 2: [0.2]})

        assert written == 2
        params = self.session.execute.await_args.args[1]
        assert [p["id"] for p in params] == [1, 2]
        assert all(p["embedded_at"] is not None for p in params)

    async def test_save_embeddings_empty(self):
        assert await self.repository.save_embeddings({}) == 0
        self.session.execute.assert_not_awaited()

    async def test_fetch_embedding_targets_default_selects_missing_vectors(self):
        self.session.execute.return_value = MagicMock(scalars=MagicMock(return_value=MagicMock(all=lambda: [])))

        await self.repository.fetch_embedding_targets(after_id=10, limit=50)

        sql = _sql(self.session.execute.await_args.args[0])
        assert "mbs_items.embedding IS NULL" in sql
        assert "ORDER BY mbs_items.id ASC" in sql

    @pytest.mark.parametrize("item_ids, expect_where", [(None, False), ([3, 1], True)])
    async def test_recompute_lexical_index_scope(self, item_ids, expect_where):
        self.session.execute.return_value = MagicMock(rowcount=2)

        updated = await self.repository.recompute_lexical_index(item_ids)

        assert updated == 2
        sql = _sql(self.session.execute.await_args.args[0])
        assert sql.startswith("UPDATE mbs_items SET tsv=")
        assert ("WHERE mbs_items.id IN" in sql) is expect_where
