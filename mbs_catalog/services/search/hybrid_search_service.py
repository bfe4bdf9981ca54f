"""Hybrid catalog search.

Combines PostgreSQL full-text ranking with pgvector similarity. Degrades to
lexical-only search whenever the semantic path is unavailable or fails.
"""

import asyncio
import time
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mbs_catalog.core.config import settings
from mbs_catalog.core.embedding_client import EmbeddingClient
from mbs_catalog.core.exceptions import InputError, UnsupportedSearchTypeError
from mbs_catalog.database.models import CatalogItem
from mbs_catalog.repositories.catalog_item_repository import CatalogHit, CatalogItemRepository
from mbs_catalog.schemas.catalog import (
    CatalogItemDetail,
    CatalogItemSummary,
    HealthStats,
    ProviderType,
    QueryIntentModel,
    SearchFilters,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    SearchType,
    SmartSearchResponse,
    SortOrder,
)
from mbs_catalog.services.search.constants import (
    CONTAINS_MATCH_SCORE,
    EXACT_MATCH_SCORE,
    MIN_RELEVANT_WORD_LENGTH,
    PREFIX_MATCH_SCORE,
    SMART_SEARCH_EXACT_TYPE,
    TEXT_RELEVANCE_THRESHOLD,
    UNRELATED_NUMBER_SCORE,
)
from mbs_catalog.services.search.query_parser import (
    ParsedQuery,
    QueryIntent,
    describe_intent,
    generate_search_suggestions,
    parse_search_query,
    should_search_exact_item,
)
from mbs_catalog.services.search.result_merger import HybridWeights, ResultMergerService
from mbs_catalog.utils.logging import get_logger

LOGGER = get_logger(__name__)


def item_number_similarity(target: int, candidate: int) -> float:
    target_text, candidate_text = str(target), str(candidate)
    if candidate_text.startswith(target_text):
        return PREFIX_MATCH_SCORE
    if target_text in candidate_text:
        return CONTAINS_MATCH_SCORE
    return UNRELATED_NUMBER_SCORE


def text_relevance(description: Optional[str], query: Optional[str]) -> float:
    """Share of query words found in the description."""
    if not description or not query:
        return 0.0
    description = description.lower()
    words = query.lower().split()
    if not words:
        return 0.0
    matches = sum(
        1 for word in words if len(word) >= MIN_RELEVANT_WORD_LENGTH and word in description
    )
    return matches / len(words)


def matches_filters(item: CatalogItem, filters: SearchFilters) -> bool:
    """In-memory counterpart of ``build_filter_conditions`` for single lookups."""
    if filters.provider_type and filters.provider_type != ProviderType.ALL.value:
        if item.provider_type != filters.provider_type:
            return False
    if filters.category and item.category != filters.category:
        return False
    if not filters.include_inactive and not item.is_active:
        return False
    fee = float(item.schedule_fee) if item.schedule_fee is not None else None
    if filters.min_fee is not None and (fee is None or fee < filters.min_fee):
        return False
    if filters.max_fee is not None and (fee is None or fee > filters.max_fee):
        return False
    return True


def to_result(item: CatalogItem, score: float, search_type: str) -> SearchResultItem:
    summary = CatalogItemSummary.model_validate(item)
    return SearchResultItem(**summary.model_dump(), relevance_score=score, search_type=search_type)


class HybridSearchService:
    """Catalog search over lexical, semantic and hybrid retrieval paths."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedding_client: Optional[EmbeddingClient],
        weights: Optional[HybridWeights] = None,
        catalog_repository_factory: Callable[[AsyncSession], CatalogItemRepository] = CatalogItemRepository,
        max_limit: Optional[int] = None,
        candidate_multiplier: Optional[int] = None,
        max_query_length: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.embedding_client = embedding_client
        self.merger = ResultMergerService(weights)
        self.catalog_repository_factory = catalog_repository_factory
        self.max_limit = max_limit or settings.search.max_limit
        self.candidate_multiplier = candidate_multiplier or settings.search.candidate_multiplier
        self.max_query_length = max_query_length or settings.search.max_query_length

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Run a catalog search.

        Raises:
            InputError: query longer than max_query_length, negative fee bound,
                limit outside 1..max_limit or negative offset
            UnsupportedSearchTypeError: unknown search type
        """
        started = time.monotonic()
        self._validate_request(request)
        query = (request.query or "").strip()
        if not query:
            return SearchResponse(processing_time_ms=_elapsed_ms(started))

        self._validate_page(request.limit, request.offset)
        search_type = self._resolve_search_type(request.search_type)
        filters = request.filters or SearchFilters()

        effective_type = search_type
        if search_type != SearchType.TEXT and self.embedding_client is None:
            LOGGER.info(f"No embedding provider configured, running {search_type.value} search as text")
            effective_type = SearchType.TEXT

        try:
            results, total = await self._run(effective_type, query, filters, request)
        except Exception as e:
            if effective_type == SearchType.TEXT:
                LOGGER.error(f"Text search failed: {e}", exc_info=True)
                raise
            LOGGER.warning(
                f"{effective_type.value} search failed, falling back to text search: {e}",
                extra={"query": query},
            )
            effective_type = SearchType.TEXT
            results, total = await self._run(effective_type, query, filters, request)

        elapsed = _elapsed_ms(started)
        LOGGER.info(
            f"Search returned {len(results)} of {total} results in {elapsed}ms",
            extra={"search_type": effective_type.value, "requested_type": search_type.value},
        )
        return SearchResponse(
            results=results,
            total=total,
            has_more=request.offset + request.limit < total,
            processing_time_ms=elapsed,
        )

    async def smart_search(self, request: SearchRequest) -> SmartSearchResponse:
        """Search that keeps exact item-number matches apart from fuzzy matches."""
        started = time.monotonic()
        self._validate_request(request)
        parsed = parse_search_query(request.query)
        intent = _intent_model(parsed)
        if not (request.query or "").strip():
            return SmartSearchResponse(intent=intent, processing_time_ms=_elapsed_ms(started))

        self._validate_page(request.limit, request.offset)
        filters = request.filters or SearchFilters()
        exact_matches: list[SearchResultItem] = []
        related_matches: list[SearchResultItem] = []

        if parsed.intent == QueryIntent.EXACT_ITEM_NUMBER:
            exact = await self._exact_item(parsed.item_number, filters)
            if exact is not None:
                exact_matches.append(to_result(exact, EXACT_MATCH_SCORE, SMART_SEARCH_EXACT_TYPE))
            related_matches = await self._related_by_number(
                parsed.item_number, filters, max(request.limit - len(exact_matches), 1)
            )
            total = len(exact_matches) + len(related_matches)
            has_more = False

        elif parsed.intent == QueryIntent.ITEM_NUMBER_WITH_TEXT:
            if should_search_exact_item(parsed) or parsed.text_query is None:
                exact = await self._exact_item(parsed.item_number, filters)
                if exact is not None and (
                    parsed.text_query is None
                    or text_relevance(exact.description, parsed.text_query) > TEXT_RELEVANCE_THRESHOLD
                ):
                    exact_matches.append(to_result(exact, EXACT_MATCH_SCORE, SMART_SEARCH_EXACT_TYPE))

            text_query = parsed.text_query or str(parsed.item_number)
            response = await self.search(
                request.model_copy(update={
                    "query": text_query,
                    "limit": max(request.limit - len(exact_matches), 1),
                })
            )
            exact_ids = {match.id for match in exact_matches}
            related_matches = [r for r in response.results if r.id not in exact_ids]
            total = len(exact_matches) + response.total
            has_more = response.has_more

        else:
            response = await self.search(request)
            related_matches = response.results
            total = response.total
            has_more = response.has_more

        return SmartSearchResponse(
            exact_matches=exact_matches,
            related_matches=related_matches,
            total=total,
            has_more=has_more,
            processing_time_ms=_elapsed_ms(started),
            intent=intent,
            suggestions=generate_search_suggestions(parsed) if not exact_matches and not related_matches else [],
        )

    async def get_item(self, item_number: int) -> Optional[CatalogItemDetail]:
        async with self.session_factory() as session:
            item = await self.catalog_repository_factory(session).get_by_item_number(item_number)
        if item is None:
            return None
        return CatalogItemDetail.model_validate(item)

    async def get_health_stats(self) -> HealthStats:
        async with self.session_factory() as session:
            stats = await self.catalog_repository_factory(session).health_stats()
        return HealthStats(**stats)

    # ------------------------------------------------------------------ #
    # Retrieval paths
    # ------------------------------------------------------------------ #

    async def _run(
        self,
        search_type: SearchType,
        query: str,
        filters: SearchFilters,
        request: SearchRequest,
    ) -> tuple[list[SearchResultItem], int]:
        if search_type == SearchType.TEXT:
            hits, total = await self._lexical_hits(query, filters, request.limit, request.offset, request.sort_by)
        elif search_type == SearchType.SEMANTIC:
            hits, total = await self._semantic_hits(query, filters, request.limit, request.offset)
        else:
            return await self._hybrid(query, filters, request.limit, request.offset)

        return [to_result(hit.item, hit.score, search_type.value) for hit in hits], total

    async def _lexical_hits(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
        offset: int,
        sort_by: SortOrder = SortOrder.RELEVANCE,
    ) -> tuple[list[CatalogHit], int]:
        async with self.session_factory() as session:
            return await self.catalog_repository_factory(session).lexical_search(
                query, filters, limit=limit, offset=offset, sort_by=sort_by
            )

    async def _semantic_hits(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
        offset: int,
    ) -> tuple[list[CatalogHit], int]:
        vectors = await self.embedding_client.embed([query])
        async with self.session_factory() as session:
            return await self.catalog_repository_factory(session).semantic_search(
                vectors[0], filters, limit=limit, offset=offset
            )

    async def _hybrid(
        self,
        query: str,
        filters: SearchFilters,
        limit: int,
        offset: int,
    ) -> tuple[list[SearchResultItem], int]:
        """Merge lexical and semantic candidates, then paginate the merged list.

        Both paths fetch ``min(limit * multiplier, max_limit)`` candidates from
        offset 0 regardless of the caller's offset.
        """
        candidate_limit = min(max(limit, 1) * self.candidate_multiplier, self.max_limit)

        lexical, semantic = await asyncio.gather(
            self._lexical_hits(query, filters, candidate_limit, 0),
            self._semantic_hits(query, filters, candidate_limit, 0),
            return_exceptions=True,
        )

        if isinstance(lexical, BaseException) and isinstance(semantic, BaseException):
            LOGGER.error("Both hybrid sub-searches failed", extra={"lexical_error": str(lexical), "semantic_error": str(semantic)})
            raise lexical
        if isinstance(lexical, BaseException):
            LOGGER.warning(f"Lexical sub-search failed, using semantic results only: {lexical}")
            lexical = ([], 0)
        if isinstance(semantic, BaseException):
            LOGGER.warning(f"Semantic sub-search failed, using lexical results only: {semantic}")
            semantic = ([], 0)

        merged = self.merger.merge(lexical[0], semantic[0])
        page = merged[offset:offset + limit]
        results = [to_result(hit.item, hit.score, SearchType.HYBRID.value) for hit in page]
        return results, len(merged)

    async def _exact_item(self, item_number: int, filters: SearchFilters) -> Optional[CatalogItem]:
        async with self.session_factory() as session:
            item = await self.catalog_repository_factory(session).get_by_item_number(item_number)
        if item is None or not matches_filters(item, filters):
            return None
        return item

    async def _related_by_number(
        self,
        item_number: int,
        filters: SearchFilters,
        limit: int,
    ) -> list[SearchResultItem]:
        async with self.session_factory() as session:
            items = await self.catalog_repository_factory(session).find_related_by_item_number(
                item_number, filters, limit
            )
        results = [
            to_result(item, item_number_similarity(item_number, item.item_number), SearchType.TEXT.value)
            for item in items
        ]
        results.sort(key=lambda r: (-r.relevance_score, r.item_number))
        return results

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #

    def _validate_request(self, request: SearchRequest) -> None:
        if request.query and len(request.query) > self.max_query_length:
            raise InputError(
                f"query must be at most {self.max_query_length} characters, got {len(request.query)}"
            )
        filters = request.filters
        if filters is None:
            return
        for name in ("min_fee", "max_fee"):
            value = getattr(filters, name)
            if value is not None and value < 0:
                raise InputError(f"{name} must not be negative, got {value}")

    def _validate_page(self, limit: int, offset: int) -> None:
        if limit < 1 or limit > self.max_limit:
            raise InputError(f"limit must be between 1 and {self.max_limit}, got {limit}")
        if offset < 0:
            raise InputError(f"offset must not be negative, got {offset}")

    @staticmethod
    def _resolve_search_type(value) -> SearchType:
        try:
            return SearchType(value)
        except ValueError as e:
            raise UnsupportedSearchTypeError(f"Unsupported search type: {value!r}", original_error=e) from e


def _intent_model(parsed: ParsedQuery) -> QueryIntentModel:
    return QueryIntentModel(
        intent=parsed.intent.value,
        item_number=parsed.item_number,
        text_query=parsed.text_query,
        original_query=parsed.original_query,
        confidence=parsed.confidence,
        description=describe_intent(parsed),
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
