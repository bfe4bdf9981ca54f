"""Unit tests for HybridSearchService."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mbs_catalog.core.exceptions import APIClientError, InputError, UnsupportedSearchTypeError
from mbs_catalog.repositories.catalog_item_repository import CatalogHit
from mbs_catalog.schemas.catalog import SearchFilters, SearchRequest
from mbs_catalog.services.search.hybrid_search_service import (
    HybridSearchService,
    item_number_similarity,
    matches_filters,
    text_relevance,
)
from mbs_catalog.services.search.result_merger import HybridWeights


class TestHybridSearchService:
    """Tests for search orchestration and degradation."""

    @pytest.fixture
    def items(self, item_factory):
        return {n: item_factory(n) for n in (23, 36, 44, 2300)}

    @pytest.fixture
    def catalog_repo(self, items):
        repo = MagicMock()
        repo.lexical_search = AsyncMock(
            return_value=([CatalogHit(items[23], 0.5), CatalogHit(items[36], 0.4)], 2)
        )
        repo.semantic_search = AsyncMock(
            return_value=([CatalogHit(items[23], 0.9), CatalogHit(items[44], 0.8)], 2)
        )
        repo.get_by_item_number = AsyncMock(return_value=items[23])
        repo.find_related_by_item_number = AsyncMock(return_value=[items[2300]])
        repo.health_stats = AsyncMock(
            return_value={"total_items": 4, "active_items": 4, "items_with_embeddings": 2, "last_updated": None}
        )
        return repo

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.embed = AsyncMock(return_value=[[0.1, 0.2, 0.3]])
        return client

    def _service(self, session_factory, client, catalog_repo):
        return HybridSearchService(
            session_factory,
            client,
            weights=HybridWeights(),
            catalog_repository_factory=lambda session: catalog_repo,
            max_limit=100,
            candidate_multiplier=3,
            max_query_length=500,
        )

    # ------------------------------------------------------------------ #
    # search
    # ------------------------------------------------------------------ #

    async def test_empty_query_returns_empty_response(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="   "))

        assert response.results == []
        assert response.total == 0
        catalog_repo.lexical_search.assert_not_awaited()

    async def test_text_search(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="consultation", search_type="text", limit=1))

        assert [r.item_number for r in response.results] == [23, 36]
        assert response.total == 2
        assert response.has_more is True
        assert all(r.search_type == "text" for r in response.results)
        client.embed.assert_not_awaited()

    async def test_hybrid_merges_and_paginates(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        first = await service.search(SearchRequest(query="consultation", limit=2))
        second = await service.search(SearchRequest(query="consultation", limit=2, offset=2))

        assert [r.item_number for r in first.results] == [23, 44]
        assert [r.item_number for r in second.results] == [36]
        assert first.total == 3
        assert first.has_more is True
        assert second.has_more is False
        assert first.results[0].search_type == "hybrid"
        assert catalog_repo.lexical_search.await_args.kwargs["limit"] == 6
        assert catalog_repo.lexical_search.await_args.kwargs["offset"] == 0

    async def test_semantic_without_provider_runs_text(self, session_factory, catalog_repo):
        service = self._service(session_factory, None, catalog_repo)

        response = await service.search(SearchRequest(query="consultation", search_type="semantic"))

        assert response.results[0].search_type == "text"
        catalog_repo.semantic_search.assert_not_awaited()

    async def test_semantic_failure_falls_back_to_text(self, session_factory, client, catalog_repo):
        client.embed.side_effect = APIClientError("provider down", status_code=503)
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="consultation", search_type="semantic"))

        assert [r.item_number for r in response.results] == [23, 36]
        assert response.results[0].search_type == "text"

    async def test_hybrid_uses_lexical_hits_when_semantic_fails(self, session_factory, client, catalog_repo):
        client.embed.side_effect = APIClientError("provider down", status_code=503)
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="consultation"))

        assert [r.item_number for r in response.results] == [23, 36]
        assert response.results[0].relevance_score == pytest.approx(0.5 * 0.6)

    async def test_hybrid_uses_semantic_hits_when_lexical_fails(self, session_factory, client, catalog_repo):
        catalog_repo.lexical_search.side_effect = RuntimeError("bad tsquery")
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="consultation"))

        assert [r.item_number for r in response.results] == [23, 44]

    async def test_text_failure_propagates(self, session_factory, client, catalog_repo):
        catalog_repo.lexical_search.side_effect = RuntimeError("database down")
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(RuntimeError):
            await service.search(SearchRequest(query="consultation", search_type="text"))

    @pytest.mark.parametrize("limit, offset", [(0, 0), (101, 0), (10, -1)])
    async def test_invalid_page(self, session_factory, client, catalog_repo, limit, offset):
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(InputError):
            await service.search(SearchRequest(query="consultation", limit=limit, offset=offset))

    async def test_over_limit_query_rejected_before_search(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(InputError):
            await service.search(SearchRequest(query="consultation " * 2000, search_type="text"))

        catalog_repo.lexical_search.assert_not_awaited()
        client.embed.assert_not_awaited()

    async def test_query_at_length_limit_accepted(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        response = await service.search(SearchRequest(query="a" * 500, search_type="text"))

        assert response.total == 2

    @pytest.mark.parametrize("filters", [SearchFilters(min_fee=-1.0), SearchFilters(max_fee=-0.5)])
    async def test_negative_fee_bound_rejected(self, session_factory, client, catalog_repo, filters):
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(InputError):
            await service.search(SearchRequest(query="consultation", filters=filters))

        catalog_repo.lexical_search.assert_not_awaited()

    async def test_smart_search_rejects_over_limit_query(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(InputError):
            await service.smart_search(SearchRequest(query="9" * 501))

        catalog_repo.get_by_item_number.assert_not_awaited()

    async def test_unsupported_search_type(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        with pytest.raises(UnsupportedSearchTypeError):
            await service.search(SearchRequest(query="consultation", search_type="fuzzy"))

    # ------------------------------------------------------------------ #
    # smart_search and lookups
    # ------------------------------------------------------------------ #

    async def test_smart_search_exact_number(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        response = await service.smart_search(SearchRequest(query="23"))

        assert [r.item_number for r in response.exact_matches] == [23]
        assert response.exact_matches[0].search_type == "exact"
        assert response.exact_matches[0].relevance_score == 1.0
        assert [r.item_number for r in response.related_matches] == [2300]
        assert response.related_matches[0].relevance_score == 0.9
        assert response.intent.intent == "exact_item_number"
        assert response.suggestions == []

    async def test_smart_search_exact_respects_filters(self, session_factory, client, catalog_repo, items):
        items[23].provider_type = "S"
        service = self._service(session_factory, client, catalog_repo)

        response = await service.smart_search(
            SearchRequest(query="23", filters=SearchFilters(provider_type="G"))
        )

        assert response.exact_matches == []

    async def test_smart_search_number_with_text(self, session_factory, client, catalog_repo, items):
        items[23].description = "Professional attendance consultation level B"
        service = self._service(session_factory, client, catalog_repo)

        response = await service.smart_search(SearchRequest(query="item 23 consultation"))

        assert [r.item_number for r in response.exact_matches] == [23]
        assert 23 not in [r.item_number for r in response.related_matches]

    async def test_smart_search_no_results_offers_suggestions(self, session_factory, client, catalog_repo):
        catalog_repo.get_by_item_number.return_value = None
        catalog_repo.find_related_by_item_number.return_value = []
        service = self._service(session_factory, client, catalog_repo)

        response = await service.smart_search(SearchRequest(query="99999"))

        assert response.exact_matches == []
        assert response.suggestions == ["item 99999", "items starting with 9999"]

    async def test_get_item_not_found(self, session_factory, client, catalog_repo):
        catalog_repo.get_by_item_number.return_value = None
        service = self._service(session_factory, client, catalog_repo)

        assert await service.get_item(424242) is None

    async def test_health_stats(self, session_factory, client, catalog_repo):
        service = self._service(session_factory, client, catalog_repo)

        stats = await service.get_health_stats()

        assert stats.total_items == 4
        assert stats.items_with_embeddings == 2


class TestScoringHelpers:

    @pytest.mark.parametrize(
        "target, candidate, expected",
        [(23, 2301, 0.9), (23, 1023, 0.6), (23, 1234, 0.6), (23, 456, 0.1)],
    )
    def test_item_number_similarity(self, target, candidate, expected):
        assert item_number_similarity(target, candidate) == expected

    def test_text_relevance_ignores_short_words(self):
        assert text_relevance("Professional attendance", "attendance of GP") == pytest.approx(1 / 3)
        assert text_relevance(None, "anything") == 0.0

    def test_matches_filters(self, item_factory):
        item = item_factory(23, is_active=False)

        assert matches_filters(item, SearchFilters()) is False
        assert matches_filters(item, SearchFilters(include_inactive=True)) is True
        assert matches_filters(item, SearchFilters(include_inactive=True, max_fee=10.0)) is False
        assert matches_filters(item, SearchFilters(include_inactive=True, provider_type="ALL")) is True
