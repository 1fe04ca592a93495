"""
Great-circle distance and radius-to-box approximation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict

EARTH_RADIUS_METRES = 6_371_000.0
METRES_PER_DEGREE_LATITUDE = 111_320.0

# Below this cosine the longitude span degenerates; the box covers every longitude.
_MIN_COS_LATITUDE = 1e-6


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 latitude/longitude pair in degrees."""

    lat: float
    lng: float


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle bounded by north/south latitude and east/west longitude edges."""

    north: float
    south: float
    east: float
    west: float

    def contains(self, point: GeoPoint) -> bool:
        return self.south <= point.lat <= self.north and self.west <= point.lng <= self.east

    def to_params(self) -> Dict[str, float]:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


def haversine_metres(a: GeoPoint, b: GeoPoint, *, radius_metres: float = EARTH_RADIUS_METRES) -> float:
    """Great-circle distance between two points in metres."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = phi2 - phi1
    dlambda = math.radians(b.lng - a.lng)

    h = math.sin(dphi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    h = min(1.0, max(0.0, h))
    return radius_metres * 2.0 * math.atan2(math.sqrt(h), math.sqrt(1.0 - h))


def bounding_box_for_radius(centre: GeoPoint, radius_metres: float) -> BoundingBox:
    """Flat-earth box enclosing a circle of ``radius_metres`` around ``centre``.

    One degree of latitude is taken as 111,320 m and longitude degrees are
    widened by 1/cos(latitude). Edges are clamped to valid coordinates, so
    circles crossing a pole or the antimeridian are under-covered.
    """
    lat_offset = radius_metres / METRES_PER_DEGREE_LATITUDE
    cos_lat = math.cos(math.radians(centre.lat))

    if cos_lat < _MIN_COS_LATITUDE:
        east, west = 180.0, -180.0
    else:
        lng_offset = lat_offset / cos_lat
        east = min(180.0, centre.lng + lng_offset)
        west = max(-180.0, centre.lng - lng_offset)

    return BoundingBox(
        north=min(90.0, centre.lat + lat_offset),
        south=max(-90.0, centre.lat - lat_offset),
        east=east,
        west=west,
    )
