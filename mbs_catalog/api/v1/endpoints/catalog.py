"""Catalog search and lookup endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from mbs_catalog.core.database import async_session_maker
from mbs_catalog.core.embedding_client import get_embedding_client
from mbs_catalog.schemas.catalog import (
    CatalogItemDetail,
    HealthStats,
    SearchRequest,
    SearchResponse,
    SmartSearchResponse,
)
from mbs_catalog.services.search.hybrid_search_service import HybridSearchService

router = APIRouter()


def get_search_service() -> HybridSearchService:
    """Dependency to build the search service."""
    return HybridSearchService(async_session_maker, get_embedding_client())


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Search the catalog",
    operation_id="search_catalog",
)
async def search_catalog(
    request: SearchRequest,
    search_service: Annotated[HybridSearchService, Depends(get_search_service)],
) -> SearchResponse:
    """Run a text, semantic or hybrid search.

    Semantic and hybrid searches fall back to text search when the embedding
    provider is unavailable; ``search_type`` on each result reports what ran.
    """
    return await search_service.search(request)


@router.post(
    "/smart-search",
    response_model=SmartSearchResponse,
    summary="Intent-aware search",
    operation_id="smart_search_catalog",
)
async def smart_search_catalog(
    request: SearchRequest,
    search_service: Annotated[HybridSearchService, Depends(get_search_service)],
) -> SmartSearchResponse:
    """Search that separates exact item-number matches from related matches."""
    return await search_service.smart_search(request)


@router.get(
    "/items/{item_number}",
    response_model=CatalogItemDetail,
    summary="Get a catalog item",
    operation_id="get_catalog_item",
)
async def get_catalog_item(
    item_number: Annotated[int, Path(gt=0)],
    search_service: Annotated[HybridSearchService, Depends(get_search_service)],
) -> CatalogItemDetail:
    item = await search_service.get_item(item_number)
    if item is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Item {item_number} not found",
        )
    return item


@router.get(
    "/health",
    response_model=HealthStats,
    summary="Catalog statistics",
    operation_id="get_catalog_health",
)
async def get_catalog_health(
    search_service: Annotated[HybridSearchService, Depends(get_search_service)],
) -> HealthStats:
    return await search_service.get_health_stats()
