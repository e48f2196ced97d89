"""
Relational store adapter - fallback candidate source and authoritative reads.

Serves the same candidate contract as the full-text index using plain SQL
against PostgreSQL (text becomes a case-insensitive substring match), and
provides the PostGIS radius queries, listing hydration, and image counts
the rest of the engine needs.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import asyncpg

from listing_search.error_handling import StoreUnavailable
from listing_search.models import ListingCandidate, SearchCriteria
from .base import CandidateFilter, SourceKind


logger = logging.getLogger(__name__)


LISTING_COLUMNS = """
    l.id, l.title, l.description, l.category_id, l.price,
    l.created_at, l.status, l.geo_city_id
"""


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the query is matched literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlBuilder:
    """Accumulates WHERE clauses with numbered $n parameters."""

    def __init__(self, params: Optional[List[Any]] = None):
        self.clauses: List[str] = []
        self.params: List[Any] = list(params or [])

    def param(self, value: Any) -> str:
        """Register a parameter value and return its placeholder."""
        self.params.append(value)
        return f"${len(self.params)}"

    def where(self, clause: str) -> None:
        self.clauses.append(clause)

    def where_sql(self) -> str:
        if not self.clauses:
            return ""
        return "WHERE " + "\n  AND ".join(self.clauses)


class RelationalStore:
    """
    Store-backed candidate source.

    Applies the same predicates as the full-text index: active status,
    category equality, inclusive price and date ranges, and text over title
    and description. Every database failure is raised as StoreUnavailable.
    """

    kind = SourceKind.FALLBACK

    def __init__(self, pool: asyncpg.Pool, acquire_timeout_ms: int = 100):
        self.pool = pool
        self.acquire_timeout_ms = acquire_timeout_ms

    def apply_filter(self, sql: SqlBuilder, candidate_filter: CandidateFilter) -> None:
        """
        Add the shared filter predicates to a query.

        Args:
            sql: Builder to add clauses and parameters to
            candidate_filter: Shared filter predicates
        """
        sql.where(f"l.status = {sql.param(candidate_filter.status)}")

        if candidate_filter.text is not None:
            pattern = sql.param(f"%{escape_like(candidate_filter.text)}%")
            sql.where(f"(l.title ILIKE {pattern} OR l.description ILIKE {pattern})")

        if candidate_filter.category_id is not None:
            sql.where(f"l.category_id = {sql.param(candidate_filter.category_id)}")

        if candidate_filter.min_price is not None:
            sql.where(f"l.price >= {sql.param(candidate_filter.min_price)}")
        if candidate_filter.max_price is not None:
            sql.where(f"l.price <= {sql.param(candidate_filter.max_price)}")

        if candidate_filter.min_date is not None:
            sql.where(f"l.created_at >= {sql.param(candidate_filter.min_date)}")
        if candidate_filter.max_date is not None:
            sql.where(f"l.created_at <= {sql.param(candidate_filter.max_date)}")

    def build_order_by(self, candidate_filter: CandidateFilter) -> str:
        """ORDER BY for the effective sort, id ascending as tie-breaker."""
        sort = candidate_filter.sort
        direction = "DESC" if sort.descending else "ASC"
        return f"ORDER BY l.{sort.field.value} {direction} NULLS LAST, l.id ASC"

    def build_find_query(
        self,
        criteria: SearchCriteria,
        window_offset: int,
        window_limit: int
    ) -> Tuple[str, List[Any]]:
        """
        Build the candidate window query.

        Args:
            criteria: Validated search criteria
            window_offset: First candidate to return
            window_limit: Number of candidates to return

        Returns:
            Tuple of (SQL text, parameter list)
        """
        candidate_filter = CandidateFilter.from_criteria(criteria)
        sql = SqlBuilder()
        self.apply_filter(sql, candidate_filter)
        offset = sql.param(window_offset)
        limit = sql.param(window_limit)

        query = f"""
            SELECT l.id
            FROM marketplace_listings l
            {sql.where_sql()}
            {self.build_order_by(candidate_filter)}
            OFFSET {offset} LIMIT {limit}
        """
        return query, sql.params

    def build_count_query(self, criteria: SearchCriteria) -> Tuple[str, List[Any]]:
        candidate_filter = CandidateFilter.from_criteria(criteria)
        sql = SqlBuilder()
        self.apply_filter(sql, candidate_filter)
        query = f"""
            SELECT COUNT(*)
            FROM marketplace_listings l
            {sql.where_sql()}
        """
        return query, sql.params

    async def find_candidates(
        self,
        criteria: SearchCriteria,
        window_offset: int,
        window_limit: int
    ) -> List[str]:
        """
        Fetch one window of ranked candidate ids.

        Raises:
            StoreUnavailable: If the store cannot serve the request
        """
        query, params = self.build_find_query(criteria, window_offset, window_limit)
        rows = await self.fetch(query, *params)
        return [str(row["id"]) for row in rows]

    async def count_candidates(self, criteria: SearchCriteria) -> int:
        """
        Count all matching active listings.

        Raises:
            StoreUnavailable: If the store cannot serve the request
        """
        query, params = self.build_count_query(criteria)
        return int(await self.fetchval(query, *params) or 0)

    async def collect_candidate_ids(self, criteria: SearchCriteria) -> List[str]:
        """Fetch every matching candidate id in effective-sort order."""
        candidate_filter = CandidateFilter.from_criteria(criteria)
        sql = SqlBuilder()
        self.apply_filter(sql, candidate_filter)
        query = f"""
            SELECT l.id
            FROM marketplace_listings l
            {sql.where_sql()}
            {self.build_order_by(candidate_filter)}
        """
        rows = await self.fetch(query, *sql.params)
        return [str(row["id"]) for row in rows]

    async def count_within_radius(
        self,
        criteria: SearchCriteria,
        center_location_id: int,
        radius_meters: float
    ) -> int:
        """
        Count matching active listings within a radius, in a single query.

        Used for geographic counts when the full-text index is unavailable,
        so the count is never limited by the candidate window.

        Args:
            criteria: Validated search criteria
            center_location_id: Center location (geo_cities.id)
            radius_meters: Radius in meters

        Returns:
            Number of matching listings within the radius
        """
        candidate_filter = CandidateFilter.from_criteria(criteria)
        sql = SqlBuilder()
        self.apply_filter(sql, candidate_filter)
        sql.where(f"gc_center.id = {sql.param(center_location_id)}")
        sql.where(
            "ST_DWithin(gc_listing.location, gc_center.location, "
            f"{sql.param(radius_meters)})"
        )

        query = f"""
            SELECT COUNT(*)
            FROM marketplace_listings l
            JOIN geo_cities gc_listing ON gc_listing.id = l.geo_city_id
            CROSS JOIN geo_cities gc_center
            {sql.where_sql()}
        """
        return int(await self.fetchval(query, *sql.params) or 0)

    async def radius_distances(
        self,
        listing_ids: Sequence[str],
        center_location_id: int,
        radius_meters: float,
        meters_per_unit: float
    ) -> List[Tuple[str, float]]:
        """
        Filter listings to a radius and project their distance.

        ST_DWithin is inclusive, so a listing exactly on the boundary is kept.
        Listings without a location never join and are dropped.

        Args:
            listing_ids: Candidate listing ids
            center_location_id: Center location (geo_cities.id)
            radius_meters: Radius in meters
            meters_per_unit: Meters per distance unit for the projection

        Returns:
            (listing id, distance in units) pairs, nearest first
        """
        query = """
            SELECT l.id,
                   ST_Distance(gc_listing.location, gc_center.location) / $4 AS distance
            FROM marketplace_listings l
            JOIN geo_cities gc_listing ON gc_listing.id = l.geo_city_id
            CROSS JOIN geo_cities gc_center
            WHERE gc_center.id = $2
              AND l.id = ANY($1::uuid[])
              AND l.status = 'active'
              AND ST_DWithin(gc_listing.location, gc_center.location, $3)
            ORDER BY distance ASC, l.id ASC
        """
        rows = await self.fetch(
            query, list(listing_ids), center_location_id, radius_meters, meters_per_unit
        )
        return [(str(row["id"]), float(row["distance"])) for row in rows]

    async def radius_count(
        self,
        listing_ids: Sequence[str],
        center_location_id: int,
        radius_meters: float
    ) -> int:
        """Count the given listings that lie within the radius."""
        query = """
            SELECT COUNT(*)
            FROM marketplace_listings l
            JOIN geo_cities gc_listing ON gc_listing.id = l.geo_city_id
            CROSS JOIN geo_cities gc_center
            WHERE gc_center.id = $2
              AND l.id = ANY($1::uuid[])
              AND l.status = 'active'
              AND ST_DWithin(gc_listing.location, gc_center.location, $3)
        """
        value = await self.fetchval(
            query, list(listing_ids), center_location_id, radius_meters
        )
        return int(value or 0)

    async def listing_locations(self, listing_ids: Sequence[str]) -> Dict[str, Optional[int]]:
        """Map active listing ids to their location id (None when unset)."""
        query = """
            SELECT l.id, l.geo_city_id
            FROM marketplace_listings l
            WHERE l.id = ANY($1::uuid[])
              AND l.status = 'active'
        """
        rows = await self.fetch(query, list(listing_ids))
        return {str(row["id"]): row["geo_city_id"] for row in rows}

    async def load_listings(self, listing_ids: Sequence[str]) -> List[ListingCandidate]:
        """
        Load listing projections for a page of ids in one query.

        Args:
            listing_ids: Ordered listing ids

        Returns:
            Active listings in the same order as listing_ids; ids that are
            no longer active are dropped
        """
        if not listing_ids:
            return []

        query = f"""
            SELECT {LISTING_COLUMNS}
            FROM marketplace_listings l
            WHERE l.id = ANY($1::uuid[])
              AND l.status = 'active'
        """
        rows = await self.fetch(query, list(listing_ids))
        by_id = {str(row["id"]): self._to_listing(row) for row in rows}
        return [by_id[listing_id] for listing_id in listing_ids if listing_id in by_id]

    async def image_counts(self, listing_ids: Sequence[str]) -> Dict[str, int]:
        """Count original images per listing; listings without images are omitted."""
        query = """
            SELECT listing_id, COUNT(*) AS image_count
            FROM marketplace_listing_images
            WHERE listing_id = ANY($1::uuid[])
              AND variant = 'original'
            GROUP BY listing_id
        """
        rows = await self.fetch(query, list(listing_ids))
        return {str(row["listing_id"]): int(row["image_count"]) for row in rows}

    def _to_listing(self, row: Any) -> ListingCandidate:
        return ListingCandidate(
            id=str(row["id"]),
            title=row["title"],
            description=row["description"],
            category_id=str(row["category_id"]),
            price=row["price"],
            created_at=row["created_at"],
            status=row["status"],
            location_id=row["geo_city_id"],
        )

    async def fetch(self, query: str, *params) -> List[Any]:
        logger.debug(f"Store query: {' '.join(query.split())} | params: {params}")
        try:
            async with self.pool.acquire(timeout=self.acquire_timeout_ms / 1000.0) as conn:
                return await conn.fetch(query, *params)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable("Timed out acquiring a database connection", phase="store") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise StoreUnavailable(f"Store query failed: {e}", phase="store") from e

    async def fetchval(self, query: str, *params) -> Any:
        logger.debug(f"Store query: {' '.join(query.split())} | params: {params}")
        try:
            async with self.pool.acquire(timeout=self.acquire_timeout_ms / 1000.0) as conn:
                return await conn.fetchval(query, *params)
        except asyncio.TimeoutError as e:
            raise StoreUnavailable("Timed out acquiring a database connection", phase="store") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise StoreUnavailable(f"Store query failed: {e}", phase="store") from e
