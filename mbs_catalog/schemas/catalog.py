"""Catalog search schema definitions.

Request/response models shared by the hybrid search service and the public
catalog API.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchType(str, Enum):
    TEXT = "text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class ProviderType(str, Enum):
    GENERAL_PRACTITIONER = "G"
    SPECIALIST = "S"
    DENTAL = "AD"
    ALL = "ALL"


class SortOrder(str, Enum):
    RELEVANCE = "relevance"
    FEE_ASC = "fee_asc"
    FEE_DESC = "fee_desc"
    ITEM_NUMBER = "item_number"


class SearchFilters(BaseModel):
    """Fixed filter set applied identically to lexical and semantic search."""

    provider_type: Optional[str] = Field(
        default=None, description="G, S, AD or another upstream code; ALL disables the filter"
    )
    category: Optional[str] = None
    include_inactive: bool = False
    min_fee: Optional[float] = Field(default=None, description="Inclusive lower bound on schedule fee")
    max_fee: Optional[float] = Field(default=None, description="Inclusive upper bound on schedule fee")


class SearchRequest(BaseModel):
    """Search request.

    ``limit``/``offset`` bounds and ``search_type`` are checked by the search
    service so that programmatic callers get the same errors as HTTP callers.
    """

    query: str = ""
    search_type: str = SearchType.HYBRID.value
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = 20
    offset: int = 0
    sort_by: SortOrder = SortOrder.RELEVANCE


class CatalogItemSummary(BaseModel):
    """Canonical catalog fields exposed to search callers."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    item_number: int
    description: str
    short_description: Optional[str] = None
    category: Optional[str] = None
    sub_category: Optional[str] = None
    group_name: Optional[str] = None
    sub_group: Optional[str] = None
    provider_type: Optional[str] = None
    service_type: Optional[str] = None
    schedule_fee: Optional[float] = None
    benefit_75: Optional[float] = None
    benefit_85: Optional[float] = None
    benefit_100: Optional[float] = None
    has_anaesthetic: bool = False
    anaesthetic_basic_units: Optional[int] = None
    derived_fee_description: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: bool = True


class CatalogItemDetail(CatalogItemSummary):
    """Full item view for single-item lookup."""

    raw_xml_data: Optional[dict[str, Any]] = None
    embedded_at: Optional[datetime] = None
    lexical_indexed_at: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SearchResultItem(CatalogItemSummary):
    relevance_score: float
    search_type: str


class SearchResponse(BaseModel):
    results: list[SearchResultItem] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
    processing_time_ms: int = 0


class QueryIntentModel(BaseModel):
    """Serializable view of a parsed query."""

    intent: str
    item_number: Optional[int] = None
    text_query: Optional[str] = None
    original_query: str
    confidence: float
    description: str


class SmartSearchResponse(BaseModel):
    """Exact item matches kept apart from fuzzy matches."""

    exact_matches: list[SearchResultItem] = Field(default_factory=list)
    related_matches: list[SearchResultItem] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False
    processing_time_ms: int = 0
    intent: Optional[QueryIntentModel] = None
    suggestions: list[str] = Field(default_factory=list)


class HealthStats(BaseModel):
    total_items: int
    active_items: int
    items_with_embeddings: int
    last_updated: Optional[datetime] = None
