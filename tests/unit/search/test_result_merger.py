"""Unit tests for ResultMergerService."""

import pytest

from mbs_catalog.repositories.catalog_item_repository import CatalogHit
from mbs_catalog.services.search.result_merger import HybridWeights, ResultMergerService


class TestResultMergerService:
    """Tests for hybrid merge scoring and ordering."""

    def setup_method(self):
        self.merger = ResultMergerService(HybridWeights())

    def test_scores_by_retrieval_path(self, item_factory):
        both, lexical_only, semantic_only = item_factory(23), item_factory(36), item_factory(44)

        merged = self.merger.merge(
            [CatalogHit(both, 0.5), CatalogHit(lexical_only, 0.5)],
            [CatalogHit(both, 0.5), CatalogHit(semantic_only, 0.5)],
        )

        scores = {hit.item.item_number: hit.score for hit in merged}
        assert scores[23] == pytest.approx(0.5 * 0.4 + 0.5 * 0.6 + 0.2)
        assert scores[36] == pytest.approx(0.5 * 0.6)
        assert scores[44] == pytest.approx(0.5 * 0.8)
        assert [hit.item.item_number for hit in merged] == [23, 44, 36]
        assert [hit.source for hit in merged] == ["both", "semantic", "lexical"]

    def test_each_item_appears_once(self, item_factory):
        item = item_factory(23)

        merged = self.merger.merge(
            [CatalogHit(item, 0.9), CatalogHit(item, 0.1)],
            [CatalogHit(item, 0.7), CatalogHit(item, 0.2)],
        )

        assert len(merged) == 1
        assert merged[0].lexical_rank == 0.9
        assert merged[0].similarity == 0.7

    def test_ties_break_on_item_number(self, item_factory):
        hits = [CatalogHit(item_factory(n), 0.3) for n in (110, 23, 36)]

        merged = self.merger.merge(hits, [])

        assert [hit.item.item_number for hit in merged] == [23, 36, 110]

    def test_custom_weights(self, item_factory):
        merger = ResultMergerService(HybridWeights(lexical_only=1.0, agreement_bonus=0.0))

        merged = merger.merge([CatalogHit(item_factory(23), 0.25)], [])

        assert merged[0].score == pytest.approx(0.25)

    def test_empty_inputs(self):
        assert self.merger.merge([], []) == []
