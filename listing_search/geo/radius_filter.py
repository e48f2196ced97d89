"""
Geographic radius filter.

Narrows a ranked candidate list to the listings within a radius of a center
location, annotated with their distance and ordered nearest first.

Two strategies share one contract:

- Push-down (default): a single PostGIS query using ST_DWithin as the
  predicate and ST_Distance as the projection, both over the same unit
  conversion.
- In-process: for stores without PostGIS. Listing locations and reference
  coordinates are each fetched in one batched query and distances are
  computed with the haversine formula.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from listing_search.models import DistanceUnit
from listing_search.sources.base import rank_index
from listing_search.sources.relational import RelationalStore
from .distance import geodesic_distance, within_radius
from .reference import GeoReference


logger = logging.getLogger(__name__)


class GeoRadiusFilter:
    """
    Filters candidates by geodesic distance from a center location.

    Attributes:
        store: Relational store for spatial queries and listing locations
        geo_reference: Location lookups for the in-process strategy
        unit: Unit of the radius and the returned distances
        spatial_pushdown: Whether to compute distances in the database
    """

    def __init__(
        self,
        store: RelationalStore,
        geo_reference: GeoReference,
        unit: DistanceUnit = DistanceUnit.MILES,
        spatial_pushdown: bool = True
    ):
        self.store = store
        self.geo_reference = geo_reference
        self.unit = unit
        self.spatial_pushdown = spatial_pushdown

    def radius_meters(self, radius: float) -> float:
        """Convert a radius in the configured unit to meters."""
        return radius * self.unit.meters

    async def filter(
        self,
        candidate_ids: Sequence[str],
        center_location_id: int,
        radius: float
    ) -> List[Tuple[str, float]]:
        """
        Keep the candidates within the radius, nearest first.

        Candidates without a resolvable location are excluded. Equal
        distances keep their original candidate order.

        Args:
            candidate_ids: Ranked candidate listing ids
            center_location_id: Center location id
            radius: Radius in the configured unit (boundary included)

        Returns:
            (listing id, distance) pairs in ascending distance order
        """
        if not candidate_ids:
            return []

        ids = list(dict.fromkeys(candidate_ids))

        if self.spatial_pushdown:
            pairs = await self.store.radius_distances(
                ids,
                center_location_id,
                self.radius_meters(radius),
                self.unit.meters,
            )
        else:
            pairs = await self._distances_in_process(ids, center_location_id, radius)

        rank = rank_index(ids)
        unranked = len(rank)
        filtered = sorted(
            pairs,
            key=lambda pair: (pair[1], rank.get(pair[0], unranked))
        )

        logger.debug(
            f"Radius filter kept {len(filtered)} of {len(ids)} candidates "
            f"within {radius} {self.unit.value} of location {center_location_id}"
        )
        return filtered

    async def count(
        self,
        candidate_ids: Sequence[str],
        center_location_id: int,
        radius: float
    ) -> int:
        """
        Count the candidates within the radius.

        Args:
            candidate_ids: Candidate listing ids
            center_location_id: Center location id
            radius: Radius in the configured unit (boundary included)

        Returns:
            Number of candidates within the radius
        """
        if not candidate_ids:
            return 0

        ids = list(dict.fromkeys(candidate_ids))

        if self.spatial_pushdown:
            return await self.store.radius_count(
                ids, center_location_id, self.radius_meters(radius)
            )

        pairs = await self._distances_in_process(ids, center_location_id, radius)
        return len(pairs)

    async def _distances_in_process(
        self,
        ids: List[str],
        center_location_id: int,
        radius: float
    ) -> List[Tuple[str, float]]:
        locations: Dict[str, Optional[int]] = await self.store.listing_locations(ids)

        location_ids = {loc for loc in locations.values() if loc is not None}
        location_ids.add(center_location_id)
        points = await self.geo_reference.resolve_locations(location_ids)

        center = points.get(center_location_id)
        if center is None:
            logger.warning(f"Center location {center_location_id} not found")
            return []

        pairs: List[Tuple[str, float]] = []
        for listing_id in ids:
            location_id = locations.get(listing_id)
            if location_id is None:
                continue
            point = points.get(location_id)
            if point is None:
                continue

            distance = geodesic_distance(center, point, self.unit)
            if within_radius(distance, radius):
                pairs.append((listing_id, distance))

        return pairs
