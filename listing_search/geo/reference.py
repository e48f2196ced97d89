"""
Geo reference lookups.

Resolves location ids (geo_cities.id) to coordinates and a "City, ST"
display name, always in a single batched query.
"""

import logging
from typing import Dict, Iterable

from listing_search.models import GeoPoint
from listing_search.sources.relational import RelationalStore


logger = logging.getLogger(__name__)


class GeoReference:
    """Read-only lookup of location reference records"""

    def __init__(self, store: RelationalStore):
        self.store = store

    async def resolve_locations(self, location_ids: Iterable[int]) -> Dict[int, GeoPoint]:
        """
        Resolve location ids to GeoPoints in one query.

        Unknown ids are omitted from the result rather than raising.

        Args:
            location_ids: Location ids to resolve (duplicates are fine)

        Returns:
            Map of location id -> GeoPoint for every id that exists
        """
        ids = sorted({int(location_id) for location_id in location_ids})
        if not ids:
            return {}

        query = """
            SELECT gc.id,
                   CONCAT(gc.name, ', ', gs.state_code) AS display_name,
                   gc.latitude,
                   gc.longitude
            FROM geo_cities gc
            JOIN geo_states gs ON gs.id = gc.state_id
            WHERE gc.id = ANY($1::bigint[])
        """
        rows = await self.store.fetch(query, ids)

        points = {
            int(row["id"]): GeoPoint(
                id=int(row["id"]),
                display_name=row["display_name"],
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
            )
            for row in rows
        }

        missing = len(ids) - len(points)
        if missing:
            logger.debug(f"{missing} of {len(ids)} location ids not found")

        return points
