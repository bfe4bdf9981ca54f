"""Unit tests for LexicalIndexService."""

from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import OperationalError

from mbs_catalog.services.indexing.lexical_index_service import LexicalIndexService


class TestLexicalIndexService:
    """Tests for lexical index rebuilds."""

    def setup_method(self):
        self.repo = MagicMock()
        self.repo.count_items = AsyncMock(return_value=2)
        self.repo.recompute_lexical_index = AsyncMock(return_value=2)

    async def test_reindex_given_ids(self, session_factory):
        service = LexicalIndexService(session_factory, catalog_repository_factory=lambda session: self.repo)

        result = await service.reindex([7, 3, 7])

        assert result.success is True
        assert result.items_processed == 2
        assert result.items_updated == 2
        self.repo.recompute_lexical_index.assert_awaited_once_with([3, 7])

    async def test_reindex_all(self, session_factory):
        service = LexicalIndexService(session_factory, catalog_repository_factory=lambda session: self.repo)

        await service.reindex()

        self.repo.count_items.assert_awaited_once_with(None)
        self.repo.recompute_lexical_index.assert_awaited_once_with(None)

    async def test_unknown_ids_are_ignored(self, session_factory):
        self.repo.count_items.return_value = 0
        self.repo.recompute_lexical_index.return_value = 0
        service = LexicalIndexService(session_factory, catalog_repository_factory=lambda session: self.repo)

        result = await service.reindex([999])

        assert result.success is True
        assert result.items_updated == 0

    async def test_store_failure_marks_all_requested_failed(self, session_factory):
        self.repo.recompute_lexical_index.side_effect = OperationalError("UPDATE", {}, Exception("gone"))
        service = LexicalIndexService(session_factory, catalog_repository_factory=lambda session: self.repo)

        result = await service.reindex([1, 2])

        assert result.success is False
        assert result.items_failed == 2
        assert result.error_type == "OperationalError"
