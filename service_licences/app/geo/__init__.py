"""
Geographic helpers used by the data source adapters.
"""

from .geomath import (
    EARTH_RADIUS_METRES,
    METRES_PER_DEGREE_LATITUDE,
    BoundingBox,
    GeoPoint,
    bounding_box_for_radius,
    haversine_metres,
)

__all__ = [
    "EARTH_RADIUS_METRES",
    "METRES_PER_DEGREE_LATITUDE",
    "BoundingBox",
    "GeoPoint",
    "bounding_box_for_radius",
    "haversine_metres",
]
