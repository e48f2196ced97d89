"""
Data models for the listing search engine.

This module defines the read-only value types that flow through a search:
the caller's criteria, the listing projections read from the stores, and
the rows and pages handed back to the caller.
"""

import math
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from listing_search.error_handling.errors import InvalidCriteria


# Allowed radius values, in the configured distance unit
VALID_RADIUS_VALUES = (5, 10, 25, 50, 100, 250)

# Hard ceiling on page size
MAX_LIMIT = 100

DEFAULT_LIMIT = 25

# Description preview length in search result rows
DESCRIPTION_PREVIEW_LENGTH = 200

ACTIVE_STATUS = "active"


class SortMode(str, Enum):
    """Result ordering requested by the caller"""
    NEWEST = "newest"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    DISTANCE = "distance"


class DistanceUnit(str, Enum):
    """Unit for radius values and returned distances"""
    MILES = "miles"
    KILOMETERS = "kilometers"

    @property
    def meters(self) -> float:
        """Number of meters in one unit."""
        if self is DistanceUnit.KILOMETERS:
            return 1000.0
        return 1609.34


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC. Naive timestamps are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Map of listing id -> distance from the search center. A missing entry
# means the listing is outside the radius.
DistanceAnnotation = Dict[str, float]


@dataclass(frozen=True)
class SearchCriteria:
    """Caller search parameters.

    Attributes:
        query: Free-text query over title and description (optional)
        category_id: Category filter (optional)
        min_price: Minimum price, inclusive (optional)
        max_price: Maximum price, inclusive (optional)
        min_date: Earliest creation timestamp, inclusive (optional)
        max_date: Latest creation timestamp, inclusive (optional)
        location_id: Center location for radius search (optional)
        radius: Radius around the center, one of VALID_RADIUS_VALUES
        sort_by: Result ordering
        offset: Pagination offset (0-based)
        limit: Page size

    Both date bounds are stored in UTC. Naive timestamps are read as UTC.
    """
    query: Optional[str] = None
    category_id: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None
    location_id: Optional[int] = None
    radius: Optional[int] = None
    sort_by: SortMode = SortMode.NEWEST
    offset: int = 0
    limit: int = DEFAULT_LIMIT

    def __post_init__(self):
        object.__setattr__(self, "min_date", as_utc(self.min_date))
        object.__setattr__(self, "max_date", as_utc(self.max_date))

    def is_geographic_search(self) -> bool:
        """True when both a center location and a radius are given."""
        return self.location_id is not None and self.radius is not None

    def is_text_search(self) -> bool:
        """True when the query has non-whitespace content."""
        return self.query is not None and bool(self.query.strip())

    def has_filters(self) -> bool:
        """True when any category, price, date, or location filter is set."""
        return (
            self.category_id is not None
            or self.min_price is not None
            or self.max_price is not None
            or self.min_date is not None
            or self.max_date is not None
            or self.is_geographic_search()
        )

    def validate(self, max_limit: int = MAX_LIMIT) -> None:
        """Check the criteria and raise on the first problem found.

        Args:
            max_limit: Hard ceiling on the page size

        Raises:
            InvalidCriteria: If any parameter is out of range
        """
        if not isinstance(self.sort_by, SortMode):
            raise InvalidCriteria(
                "sort_by must be one of: newest, price_asc, price_desc, distance"
            )
        if self.offset < 0:
            raise InvalidCriteria("offset must be >= 0")
        if self.limit <= 0 or self.limit > max_limit:
            raise InvalidCriteria(f"limit must be 1-{max_limit}")
        if self.radius is not None and self.radius not in VALID_RADIUS_VALUES:
            allowed = ", ".join(str(r) for r in VALID_RADIUS_VALUES)
            raise InvalidCriteria(f"radius must be one of: {allowed}")
        if self.radius is not None and self.location_id is None:
            raise InvalidCriteria("location is required when radius is specified")
        for name, price in (("min_price", self.min_price), ("max_price", self.max_price)):
            if price is not None and price < 0:
                raise InvalidCriteria(f"{name} must be >= 0")
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise InvalidCriteria("min_price must be <= max_price")
        if (
            self.min_date is not None
            and self.max_date is not None
            and self.min_date > self.max_date
        ):
            raise InvalidCriteria("min_date must be <= max_date")
        if self.sort_by is SortMode.DISTANCE and not self.is_geographic_search():
            raise InvalidCriteria("distance sort requires location and radius")

    def cache_key_parts(self) -> List[str]:
        """Stable string form of every field, used to build cache keys."""
        query = self.query.strip() if self.is_text_search() else ""
        return [
            query,
            self.category_id or "",
            str(self.min_price) if self.min_price is not None else "",
            str(self.max_price) if self.max_price is not None else "",
            self.min_date.isoformat() if self.min_date else "",
            self.max_date.isoformat() if self.max_date else "",
            str(self.location_id) if self.location_id is not None else "",
            str(self.radius) if self.radius is not None else "",
            self.sort_by.value,
            str(self.offset),
            str(self.limit),
        ]


@dataclass(frozen=True)
class ListingCandidate:
    """Read-only projection of a marketplace listing."""
    id: str
    title: str
    description: Optional[str]
    category_id: str
    price: Optional[Decimal]
    created_at: datetime
    status: str
    location_id: Optional[int]

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS


@dataclass(frozen=True)
class GeoPoint:
    """A location reference record.

    Attributes:
        id: Location identifier (geo_cities.id)
        display_name: "City, ST" display string
        latitude: Latitude in degrees
        longitude: Longitude in degrees
    """
    id: int
    display_name: str
    latitude: float
    longitude: float


@dataclass(frozen=True)
class SearchResultRow:
    """Search result row returned to callers.

    Attributes:
        id: Listing identifier
        title: Listing title
        description: Description preview (truncated to 200 characters)
        price: Listing price, None for free listings
        category_id: Category identifier
        location_id: Location identifier, None if not set
        location_name: Resolved "City, ST", None if unknown
        created_at: Listing creation timestamp
        image_count: Number of images attached (0 if unknown)
        distance: Distance from the search center, geographic searches only
    """
    id: str
    title: str
    description: Optional[str]
    price: Optional[Decimal]
    category_id: str
    location_id: Optional[int]
    location_name: Optional[str]
    created_at: datetime
    image_count: int = 0
    distance: Optional[float] = None

    def __post_init__(self):
        if (
            self.description is not None
            and len(self.description) > DESCRIPTION_PREVIEW_LENGTH
        ):
            preview = self.description[:DESCRIPTION_PREVIEW_LENGTH] + "..."
            object.__setattr__(self, "description", preview)

    @classmethod
    def from_listing(
        cls,
        listing: ListingCandidate,
        location_name: Optional[str],
        distance: Optional[float],
        image_count: int
    ) -> 'SearchResultRow':
        """Build a row from a listing plus its resolved display metadata.

        Args:
            listing: Listing projection
            location_name: Resolved location display name, or None
            distance: Distance from the search center, or None
            image_count: Number of attached images

        Returns:
            SearchResultRow instance
        """
        return cls(
            id=listing.id,
            title=listing.title,
            description=listing.description,
            price=listing.price,
            category_id=listing.category_id,
            location_id=listing.location_id,
            location_name=location_name,
            created_at=listing.created_at,
            image_count=image_count,
            distance=distance,
        )

    def to_dict(self) -> dict:
        """Convert row to dictionary for JSON serialization.

        Returns:
            Dictionary with datetime in ISO format and price as a string
        """
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        if self.price is not None:
            data['price'] = str(self.price)
        return data


@dataclass(frozen=True)
class SearchPage:
    """One page of results with pagination metadata."""
    results: List[SearchResultRow]
    total_count: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        """True if there are more results beyond this page."""
        return (self.offset + self.limit) < self.total_count

    @property
    def current_page(self) -> int:
        """1-based page number."""
        if self.limit == 0:
            return 1
        return (self.offset // self.limit) + 1

    @property
    def total_pages(self) -> int:
        if self.limit == 0:
            return 0
        return math.ceil(self.total_count / self.limit)
