"""
Result enrichment - display metadata for a page of listings.

Location names and image counts are resolved with one batched lookup each,
whatever the page size. A failed lookup degrades the affected field instead
of failing the search: rows come back with no location name or a zero image
count rather than being dropped.
"""

import asyncio
import logging
from typing import Awaitable, Dict, List, Optional, Sequence

from listing_search.error_handling import PartialEnrichmentFailure
from listing_search.geo.reference import GeoReference
from listing_search.models import DistanceAnnotation, ListingCandidate, SearchResultRow
from listing_search.sources.relational import RelationalStore


logger = logging.getLogger(__name__)


class ResultEnricher:
    """Turns listing projections into search result rows"""

    def __init__(
        self,
        geo_reference: GeoReference,
        store: RelationalStore,
        timeout_ms: int = 50
    ):
        self.geo_reference = geo_reference
        self.store = store
        self.timeout_ms = timeout_ms

    async def enrich(
        self,
        listings: Sequence[ListingCandidate],
        distances: Optional[DistanceAnnotation] = None
    ) -> List[SearchResultRow]:
        """
        Build result rows for a page of listings.

        Args:
            listings: Page of listings in final order
            distances: Distance annotation for geographic searches

        Returns:
            One row per listing, in the same order
        """
        if not listings:
            return []

        location_ids = sorted({
            listing.location_id for listing in listings
            if listing.location_id is not None
        })
        listing_ids = [listing.id for listing in listings]

        location_names, image_counts = await asyncio.gather(
            self._location_names(location_ids),
            self._image_counts(listing_ids),
        )

        distances = distances or {}
        rows = []
        for listing in listings:
            location_name = None
            if listing.location_id is not None:
                location_name = location_names.get(listing.location_id)

            rows.append(SearchResultRow.from_listing(
                listing,
                location_name=location_name,
                distance=distances.get(listing.id),
                image_count=image_counts.get(listing.id, 0),
            ))

        return rows

    async def _location_names(self, location_ids: List[int]) -> Dict[int, str]:
        if not location_ids:
            return {}

        try:
            points = await self._lookup(
                self.geo_reference.resolve_locations(location_ids), "location_name"
            )
        except PartialEnrichmentFailure as e:
            logger.warning(f"Location names unavailable for this page: {e}")
            return {}

        return {location_id: point.display_name for location_id, point in points.items()}

    async def _image_counts(self, listing_ids: List[str]) -> Dict[str, int]:
        try:
            return await self._lookup(self.store.image_counts(listing_ids), "image_count")
        except PartialEnrichmentFailure as e:
            logger.warning(f"Image counts unavailable for this page: {e}")
            return {}

    async def _lookup(self, lookup: Awaitable, field: str):
        """Run one enrichment lookup under the enrichment timeout."""
        timeout = self.timeout_ms / 1000.0 if self.timeout_ms > 0 else None
        try:
            return await asyncio.wait_for(lookup, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PartialEnrichmentFailure(
                f"{field} lookup timed out after {self.timeout_ms}ms", field=field
            ) from e
        except Exception as e:
            raise PartialEnrichmentFailure(
                f"{field} lookup failed: {type(e).__name__}: {e}", field=field
            ) from e
