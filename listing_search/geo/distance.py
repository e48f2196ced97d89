"""Great-circle distance between location reference points."""

import math

from listing_search.models import DistanceUnit, GeoPoint


# Mean Earth radius (IUGG), meters
EARTH_RADIUS_METERS = 6371008.8

# Float tolerance when comparing a distance against the radius boundary
BOUNDARY_EPSILON = 1e-9


def haversine_meters(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """
    Haversine great-circle distance between two coordinates.

    Args:
        lat1: Latitude of the first point, degrees
        lon1: Longitude of the first point, degrees
        lat2: Latitude of the second point, degrees
        lon2: Longitude of the second point, degrees

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Clamp against rounding pushing a slightly above 1 for antipodal points
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


def geodesic_distance(
    origin: GeoPoint,
    target: GeoPoint,
    unit: DistanceUnit = DistanceUnit.MILES
) -> float:
    """Distance between two location points in the given unit."""
    meters = haversine_meters(
        origin.latitude, origin.longitude, target.latitude, target.longitude
    )
    return meters / unit.meters


def within_radius(distance: float, radius: float) -> bool:
    """Boundary-inclusive radius check."""
    return distance <= radius + BOUNDARY_EPSILON
