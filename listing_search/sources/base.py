"""
Shared contract for candidate sources.

The full-text index and the relational store both answer the same two
questions: which active listings match the criteria (in which order), and
how many there are. Both build their native queries from the CandidateFilter
and EFFECTIVE_SORT defined here, so filter predicates and sort order stay
identical whichever source serves the request.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol

from listing_search.models import ACTIVE_STATUS, SearchCriteria, SortMode


class SourceKind(str, Enum):
    """Which side of the primary/fallback pair a source is"""
    PRIMARY = "primary"
    FALLBACK = "fallback"


class SortField(str, Enum):
    """Listing fields a candidate source can sort on"""
    CREATED_AT = "created_at"
    PRICE = "price"


@dataclass(frozen=True)
class EffectiveSort:
    """Sort applied by a candidate source before any geo filtering.

    Both sources add listing id ascending as the final tie-breaker.
    """
    field: SortField
    descending: bool


# Requested sort -> sort applied in the index/relational phase. Distance is
# not known yet in that phase, so distance sort uses recency.
EFFECTIVE_SORT: Dict[SortMode, EffectiveSort] = {
    SortMode.NEWEST: EffectiveSort(SortField.CREATED_AT, descending=True),
    SortMode.PRICE_ASC: EffectiveSort(SortField.PRICE, descending=False),
    SortMode.PRICE_DESC: EffectiveSort(SortField.PRICE, descending=True),
    SortMode.DISTANCE: EffectiveSort(SortField.CREATED_AT, descending=True),
}


@dataclass(frozen=True)
class CandidateFilter:
    """Filter predicates shared by every candidate source.

    Attributes:
        status: Listing status to match (always "active")
        text: Stripped free-text query, None when not a text search
        category_id: Category equality filter
        min_price: Inclusive lower price bound
        max_price: Inclusive upper price bound
        min_date: Inclusive lower creation-date bound
        max_date: Inclusive upper creation-date bound
        sort: Effective sort for the phase
    """
    status: str
    text: Optional[str]
    category_id: Optional[str]
    min_price: Optional[Decimal]
    max_price: Optional[Decimal]
    min_date: Optional[datetime]
    max_date: Optional[datetime]
    sort: EffectiveSort

    @classmethod
    def from_criteria(cls, criteria: SearchCriteria) -> 'CandidateFilter':
        """Derive the shared filter from caller criteria.

        Args:
            criteria: Validated search criteria

        Returns:
            CandidateFilter for the index/relational phase
        """
        return cls(
            status=ACTIVE_STATUS,
            text=criteria.query.strip() if criteria.is_text_search() else None,
            category_id=criteria.category_id,
            min_price=criteria.min_price,
            max_price=criteria.max_price,
            min_date=criteria.min_date,
            max_date=criteria.max_date,
            sort=EFFECTIVE_SORT[criteria.sort_by],
        )

    @property
    def has_price_range(self) -> bool:
        return self.min_price is not None or self.max_price is not None

    @property
    def has_date_range(self) -> bool:
        return self.min_date is not None or self.max_date is not None


@dataclass(frozen=True)
class CandidateWindow:
    """Slice of the ranked candidate list to fetch from a source."""
    offset: int
    limit: int


def fetch_window(
    criteria: SearchCriteria,
    max_geo_window: int = 500,
    geo_window_multiplier: int = 10
) -> CandidateWindow:
    """
    Work out which candidates to fetch in the first phase.

    A geographic search widens the fetch and starts at offset 0, because the
    caller's offset can only be applied after the radius filter has removed
    an unknown share of the candidates.

    Args:
        criteria: Validated search criteria
        max_geo_window: Cap on the geographic window
        geo_window_multiplier: Window size as a multiple of the page size

    Returns:
        CandidateWindow to request from the candidate source
    """
    if criteria.is_geographic_search():
        return CandidateWindow(
            offset=0,
            limit=min(max_geo_window, criteria.limit * geo_window_multiplier)
        )
    return CandidateWindow(offset=criteria.offset, limit=criteria.limit)


class CandidateSource(Protocol):
    """A ranked source of candidate listing ids."""

    kind: SourceKind

    async def find_candidates(
        self,
        criteria: SearchCriteria,
        window_offset: int,
        window_limit: int
    ) -> List[str]:
        """Return matching active listing ids in effective-sort order."""
        ...

    async def count_candidates(self, criteria: SearchCriteria) -> int:
        """Return the number of matching active listings."""
        ...

    async def collect_candidate_ids(self, criteria: SearchCriteria) -> List[str]:
        """Return every matching active listing id, without a window."""
        ...


def rank_index(ids: List[str]) -> Dict[str, int]:
    """Map each id to its position in a ranked list."""
    return {listing_id: position for position, listing_id in enumerate(ids)}


def page_slice(items: List, offset: int, limit: int) -> List:
    """Slice [offset, offset + limit), empty when offset is past the end."""
    if offset >= len(items):
        return []
    return items[offset:offset + limit]

