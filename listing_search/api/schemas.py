"""HTTP response models"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from listing_search.models import SearchPage, SearchResultRow


class ListingResult(BaseModel):
    """One listing in a search response"""
    id: str
    title: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    category_id: str
    location_id: Optional[int] = None
    location_name: Optional[str] = None
    created_at: datetime
    image_count: int = 0
    distance: Optional[float] = None

    @classmethod
    def from_row(cls, row: SearchResultRow) -> 'ListingResult':
        return cls(**row.to_dict())


class SearchResponse(BaseModel):
    """Search results with pagination metadata"""
    results: List[ListingResult]
    total_count: int
    offset: int
    limit: int
    has_more: bool
    current_page: int
    total_pages: int
    cached: bool = False

    @classmethod
    def from_page(cls, page: SearchPage) -> 'SearchResponse':
        """
        Build the response body for a page of results.

        Args:
            page: Page returned by the orchestrator

        Returns:
            SearchResponse with cached=False
        """
        return cls(
            results=[ListingResult.from_row(row) for row in page.results],
            total_count=page.total_count,
            offset=page.offset,
            limit=page.limit,
            has_more=page.has_more,
            current_page=page.current_page,
            total_pages=page.total_pages,
        )


class HealthResponse(BaseModel):
    status: str
    version: str
