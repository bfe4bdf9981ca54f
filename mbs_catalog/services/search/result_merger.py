from dataclasses import dataclass
from typing import Optional

from mbs_catalog.core.config import SearchSettings, settings
from mbs_catalog.database.models import CatalogItem
from mbs_catalog.repositories.catalog_item_repository import CatalogHit
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class HybridWeights:
    """Scoring weights for merging lexical rank and semantic similarity."""

    lexical_only: float = 0.6
    semantic_only: float = 0.8
    combined_lexical: float = 0.4
    combined_semantic: float = 0.6
    agreement_bonus: float = 0.2

    @classmethod
    def from_settings(cls, config: Optional[SearchSettings] = None) -> "HybridWeights":
        config = config or settings.search
        return cls(
            lexical_only=config.lexical_only_weight,
            semantic_only=config.semantic_only_weight,
            combined_lexical=config.combined_lexical_weight,
            combined_semantic=config.combined_semantic_weight,
            agreement_bonus=config.agreement_bonus,
        )

    def score(self, lexical_rank: Optional[float], similarity: Optional[float]) -> float:
        if lexical_rank is not None and similarity is not None:
            return (
                lexical_rank * self.combined_lexical
                + similarity * self.combined_semantic
                + self.agreement_bonus
            )
        if similarity is not None:
            return similarity * self.semantic_only
        return (lexical_rank or 0.0) * self.lexical_only


@dataclass
class MergedHit:
    item: CatalogItem
    score: float
    lexical_rank: Optional[float] = None
    similarity: Optional[float] = None

    @property
    def source(self) -> str:
        if self.lexical_rank is not None and self.similarity is not None:
            return "both"
        return "lexical" if self.lexical_rank is not None else "semantic"


class ResultMergerService:
    """
    Merges lexical and semantic hits into one ranked list.

    Responsibilities:
    1. Deduplicate hits by catalog item id.
    2. Score each item by which retrieval paths found it.
    3. Sort by combined score, item number ascending on ties.
    """

    def __init__(self, weights: Optional[HybridWeights] = None):
        self.weights = weights or HybridWeights.from_settings()

    def merge(
        self,
        lexical_hits: list[CatalogHit],
        semantic_hits: list[CatalogHit],
    ) -> list[MergedHit]:
        merged: dict[int, MergedHit] = {}

        for hit in lexical_hits:
            if hit.item.id in merged:
                continue
            merged[hit.item.id] = MergedHit(item=hit.item, score=0.0, lexical_rank=hit.score)

        for hit in semantic_hits:
            existing = merged.get(hit.item.id)
            if existing is None:
                merged[hit.item.id] = MergedHit(item=hit.item, score=0.0, similarity=hit.score)
            elif existing.similarity is None:
                existing.similarity = hit.score

        results = list(merged.values())
        for result in results:
            result.score = self.weights.score(result.lexical_rank, result.similarity)

        results.sort(key=lambda r: (-r.score, r.item.item_number))

        LOGGER.debug(
            f"Merged {len(lexical_hits)} lexical and {len(semantic_hits)} semantic hits into {len(results)}",
            extra={"both": sum(1 for r in results if r.source == "both")},
        )
        return results
