"""
Marketplace listing search routes.
"""

import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from listing_search.error_handling import InvalidCriteria, SearchUnavailable
from listing_search.models import DEFAULT_LIMIT, SearchCriteria, SortMode
from listing_search.orchestrator import SearchOrchestrator, UNAVAILABLE_MESSAGE
from ..cache import SearchResultCache
from ..dependencies import get_orchestrator, get_search_cache
from ..schemas import SearchResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def parse_sort(sort: str) -> SortMode:
    """Map the sort query parameter to a SortMode"""
    try:
        return SortMode(sort.strip().lower())
    except ValueError:
        allowed = ", ".join(mode.value for mode in SortMode)
        raise InvalidCriteria(f"sort must be one of: {allowed}")


@router.get("/marketplace/search", response_model=SearchResponse)
async def search_listings(
    q: Optional[str] = Query(None, description="Free-text query over title and description"),
    category: Optional[str] = Query(None, description="Category id"),
    min_price: Optional[Decimal] = Query(None, description="Minimum price, inclusive"),
    max_price: Optional[Decimal] = Query(None, description="Maximum price, inclusive"),
    min_date: Optional[datetime] = Query(None, description="Earliest creation time, inclusive"),
    max_date: Optional[datetime] = Query(None, description="Latest creation time, inclusive"),
    location: Optional[int] = Query(None, description="Center location id for radius search"),
    radius: Optional[int] = Query(None, description="Radius: 5, 10, 25, 50, 100 or 250"),
    sort: str = Query("newest", description="newest, price_asc, price_desc or distance"),
    offset: int = Query(0, description="Pagination offset"),
    limit: int = Query(DEFAULT_LIMIT, description="Page size (capped at 100)"),
    orchestrator: SearchOrchestrator = Depends(get_orchestrator),
    cache: SearchResultCache = Depends(get_search_cache),
):
    """
    Search active marketplace listings.

    1. Validates the parameters (400 on invalid criteria)
    2. Checks the Redis result cache
    3. Runs search and count through the orchestrator
    4. Caches the page for later identical requests
    """
    start_time = time.time()

    max_limit = orchestrator.settings.window.max_page_size
    if limit > max_limit:
        logger.warning(f"Requested limit {limit} exceeds maximum, capping to {max_limit}")
        limit = max_limit

    try:
        criteria = SearchCriteria(
            query=q,
            category_id=category,
            min_price=min_price,
            max_price=max_price,
            min_date=min_date,
            max_date=max_date,
            location_id=location,
            radius=radius,
            sort_by=parse_sort(sort),
            offset=offset,
            limit=limit,
        )
        criteria.validate(max_limit)
    except InvalidCriteria as e:
        raise HTTPException(status_code=400, detail=str(e))

    cached_response = await cache.get(criteria)
    if cached_response:
        logger.info(f"Cache hit for search: q={q!r} offset={offset} limit={limit}")
        return cached_response

    try:
        page = await orchestrator.search_page(criteria)
    except InvalidCriteria as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SearchUnavailable as e:
        logger.error(f"Search unavailable: {e}")
        raise HTTPException(status_code=503, detail=UNAVAILABLE_MESSAGE)

    response = SearchResponse.from_page(page)
    await cache.set(criteria, response)

    logger.info(
        f"Search returned {len(response.results)} of {response.total_count} "
        f"in {(time.time() - start_time) * 1000:.1f}ms"
    )
    return response
