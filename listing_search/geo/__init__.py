"""Geospatial lookups and radius filtering"""

from .distance import geodesic_distance, haversine_meters, within_radius
from .radius_filter import GeoRadiusFilter
from .reference import GeoReference

__all__ = [
    "GeoRadiusFilter",
    "GeoReference",
    "geodesic_distance",
    "haversine_meters",
    "within_radius",
]
