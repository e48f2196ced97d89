"""
Search orchestrator - coordinates the index, radius, hydration, and
enrichment phases of a listing search.

The full-text index serves candidates when it is healthy. Any index failure
is recovered by running the same query against the relational store, so a
caller only ever sees rows, InvalidCriteria, or SearchUnavailable.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from opentelemetry import trace

from listing_search.config import SearchSettings
from listing_search.enrichment import ResultEnricher
from listing_search.error_handling import (
    AdapterUnavailable,
    IndexUnavailable,
    PhaseConfig,
    PhaseGuard,
    SearchUnavailable,
    StoreUnavailable,
)
from listing_search.geo import GeoRadiusFilter
from listing_search.metrics import SearchMetrics
from listing_search.models import (
    DistanceAnnotation,
    SearchCriteria,
    SearchPage,
    SearchResultRow,
    SortMode,
)
from listing_search.sources.base import (
    CandidateSource,
    SourceKind,
    fetch_window,
    page_slice,
)
from listing_search.sources.relational import RelationalStore


logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Search service temporarily unavailable"


class SearchOrchestrator:
    """
    Two-phase hybrid listing search with relational fallback.

    Attributes:
        primary: Full-text index candidate source
        fallback: Relational store, also used for hydration
        geo_filter: Radius filter for geographic searches
        enricher: Display metadata for result rows
        settings: Window, timeout, and page-size settings
        metrics: Prometheus instruments
        tracer: OpenTelemetry tracer for the marketplace.search and
            marketplace.count spans
    """

    def __init__(
        self,
        primary: CandidateSource,
        fallback: RelationalStore,
        geo_filter: GeoRadiusFilter,
        enricher: ResultEnricher,
        settings: Optional[SearchSettings] = None,
        metrics: Optional[SearchMetrics] = None,
        phase_guard: Optional[PhaseGuard] = None,
        tracer: Optional[trace.Tracer] = None
    ):
        self.primary = primary
        self.fallback = fallback
        self.geo_filter = geo_filter
        self.enricher = enricher
        self.settings = settings or SearchSettings()
        self.metrics = metrics or SearchMetrics()
        self.phase_guard = phase_guard or PhaseGuard()
        self.tracer = tracer or trace.get_tracer(__name__)

        timeouts = self.settings.timeouts
        self.index_phase = PhaseConfig(
            "index", timeouts.index_phase_ms, IndexUnavailable, recoverable=True
        )
        # Collecting every candidate id pages through the index several times
        self.index_scan_phase = PhaseConfig(
            "index_scan", timeouts.store_phase_ms, IndexUnavailable, recoverable=True
        )
        self.store_phase = PhaseConfig("store", timeouts.store_phase_ms, StoreUnavailable)
        self.geo_phase = PhaseConfig("geo", timeouts.geo_phase_ms, StoreUnavailable)

    async def search(self, criteria: SearchCriteria) -> List[SearchResultRow]:
        """
        Return one page of matching listings.

        Args:
            criteria: Search criteria

        Returns:
            At most criteria.limit rows. An empty list means no matches.

        Raises:
            InvalidCriteria: If the criteria fail validation
            SearchUnavailable: If the request cannot be served
        """
        with self.tracer.start_as_current_span("marketplace.search") as span:
            self._annotate(span, criteria)
            criteria.validate(self.settings.window.max_page_size)
            self.metrics.record_request(criteria, "search")

            with self.metrics.time("search"):
                rows = await self._within_budget(self._search(criteria))

        self.metrics.record_result_count(len(rows))
        logger.info(
            f"Search returned {len(rows)} rows "
            f"(offset={criteria.offset}, limit={criteria.limit}, "
            f"geographic={criteria.is_geographic_search()})"
        )
        return rows

    async def count(self, criteria: SearchCriteria) -> int:
        """
        Count every matching active listing, ignoring offset and limit.

        Args:
            criteria: Search criteria

        Returns:
            Total number of matches

        Raises:
            InvalidCriteria: If the criteria fail validation
            SearchUnavailable: If the request cannot be served
        """
        with self.tracer.start_as_current_span("marketplace.count") as span:
            self._annotate(span, criteria)
            criteria.validate(self.settings.window.max_page_size)
            self.metrics.record_request(criteria, "count")

            with self.metrics.time("count"):
                total = await self._within_budget(self._count(criteria))

        logger.info(f"Count returned {total}")
        return total

    async def search_page(self, criteria: SearchCriteria) -> SearchPage:
        """Run search and count for one page with pagination metadata."""
        rows = await self.search(criteria)
        total = await self.count(criteria)
        return SearchPage(
            results=rows,
            total_count=total,
            offset=criteria.offset,
            limit=criteria.limit,
        )

    async def _search(self, criteria: SearchCriteria) -> List[SearchResultRow]:
        window = fetch_window(
            criteria,
            max_geo_window=self.settings.window.max_geo_window,
            geo_window_multiplier=self.settings.window.geo_window_multiplier,
        )

        max_result_window = self.settings.index.max_result_window
        use_index = window.offset + window.limit <= max_result_window
        if not use_index:
            logger.debug(
                f"Window {window.offset}+{window.limit} is past the index result "
                f"window of {max_result_window}; reading candidates from the store"
            )

        candidate_ids, source = await self._from_candidate_source(
            "search", "find_candidates", criteria, window.offset, window.limit,
            use_index=use_index,
        )
        logger.debug(f"{source.value} source returned {len(candidate_ids)} candidates")

        distances: Optional[DistanceAnnotation] = None
        if criteria.is_geographic_search():
            if len(candidate_ids) >= window.limit:
                logger.debug(
                    f"Geographic window saturated at {window.limit} candidates; "
                    f"listings ranked past the window are not considered"
                )

            within = await self._required(
                self.geo_phase,
                self.geo_filter.filter,
                candidate_ids,
                criteria.location_id,
                criteria.radius,
            )
            distances = dict(within)

            if criteria.sort_by is SortMode.DISTANCE:
                ordered = [listing_id for listing_id, _ in within]
            else:
                ordered = [
                    listing_id for listing_id in dict.fromkeys(candidate_ids)
                    if listing_id in distances
                ]
            page_ids = page_slice(ordered, criteria.offset, criteria.limit)
        else:
            page_ids = candidate_ids[:criteria.limit]

        if not page_ids:
            return []

        listings = await self._required(
            self.store_phase, self.fallback.load_listings, page_ids
        )
        return await self.enricher.enrich(listings, distances)

    async def _count(self, criteria: SearchCriteria) -> int:
        if not criteria.is_geographic_search():
            total, _ = await self._from_candidate_source(
                "count", "count_candidates", criteria
            )
            return total

        try:
            candidate_ids = await self.phase_guard.run(
                self.index_scan_phase, self.primary.collect_candidate_ids, criteria
            )
        except AdapterUnavailable as e:
            self._degrade("count", e)
            if self.geo_filter.spatial_pushdown:
                return await self._required(
                    self.store_phase,
                    self.fallback.count_within_radius,
                    criteria,
                    criteria.location_id,
                    self.geo_filter.radius_meters(criteria.radius),
                )
            candidate_ids = await self._required(
                self.store_phase, self.fallback.collect_candidate_ids, criteria
            )

        return await self._required(
            self.store_phase,
            self.geo_filter.count,
            candidate_ids,
            criteria.location_id,
            criteria.radius,
        )

    async def _from_candidate_source(
        self,
        operation: str,
        method: str,
        *args,
        use_index: bool = True
    ) -> Tuple[Any, SourceKind]:
        """
        Call a candidate source method on the index, falling back to the store.

        Args:
            operation: Operation name for logs and metrics ("search"/"count")
            method: CandidateSource method name
            *args: Arguments for the method
            use_index: False to go straight to the store without counting a
                degradation

        Returns:
            Tuple of (method result, kind of the source that served it)

        Raises:
            SearchUnavailable: If the fallback fails too
        """
        if use_index:
            try:
                result = await self.phase_guard.run(
                    self.index_phase, getattr(self.primary, method), *args
                )
                return result, self.primary.kind
            except AdapterUnavailable as e:
                self._degrade(operation, e)

        result = await self._required(
            self.store_phase, getattr(self.fallback, method), *args
        )
        return result, self.fallback.kind

    async def _required(
        self,
        phase: PhaseConfig,
        operation: Callable[..., Awaitable[Any]],
        *args
    ) -> Any:
        """Run a phase that has no fallback; failures surface as SearchUnavailable."""
        try:
            return await self.phase_guard.run(phase, operation, *args)
        except AdapterUnavailable as e:
            logger.error(f"Search unavailable: {phase.name} phase failed: {e}")
            raise SearchUnavailable(UNAVAILABLE_MESSAGE) from e

    async def _within_budget(self, operation: Awaitable[Any]) -> Any:
        budget_ms = self.settings.timeouts.request_budget_ms
        if budget_ms <= 0:
            return await operation

        try:
            return await asyncio.wait_for(operation, timeout=budget_ms / 1000.0)
        except asyncio.TimeoutError as e:
            logger.error(f"Search unavailable: request budget of {budget_ms}ms exceeded")
            raise SearchUnavailable(UNAVAILABLE_MESSAGE) from e

    def _degrade(self, operation: str, error: Exception) -> None:
        logger.warning(
            f"Full-text index unavailable for {operation}, "
            f"using relational fallback: {error}"
        )
        self.metrics.record_degradation(operation)
        trace.get_current_span().set_attribute("fallback", "postgres")

    def _annotate(self, span: trace.Span, criteria: SearchCriteria) -> None:
        span.set_attribute("query", criteria.query or "")
        span.set_attribute("has_radius", criteria.is_geographic_search())
        span.set_attribute("category_id", criteria.category_id or "")
