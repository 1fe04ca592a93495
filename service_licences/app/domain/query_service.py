"""
QueryService: validate, look up the cache, fetch upstream on miss, project,
store, respond.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from service_licences.app.adapters.data_source import DataSourceAdapter
from service_licences.app.caching import CacheStore, build_key
from service_licences.app.geo import BoundingBox, GeoPoint
from service_licences.app.transformers import to_public_projections, to_staff_projections

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


_AREA_PATTERN = re.compile(r"[A-Z0-9 .,'&()/-]{1,100}")
_MAX_KEY_LENGTH = 512


class Audience(str, Enum):
    """Who the projected data is for."""
    PUBLIC = "public"
    STAFF = "staff"


@dataclass(frozen=True)
class QueryLimits:
    """Upper bounds enforced before any cache or upstream work."""

    max_radius_metres: float = 50_000
    max_public_limit: int = 2000
    max_nearby_limit: int = 500
    max_category_limit: int = 500
    max_staff_limit: int = 5000


@dataclass(frozen=True)
class QueryResult:
    """Projected, JSON-ready rows plus where they came from."""

    data: List[Dict[str, Any]]
    cache_hit: bool
    cache_key: str


class QueryService:
    """Orchestrates one query against one data source adapter."""

    def __init__(
        self,
        adapter: DataSourceAdapter,
        cache_store: CacheStore,
        *,
        limits: Optional[QueryLimits] = None,
        ttl_seconds: int = 3600,
        staff_ttl_seconds: int = 900,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.adapter = adapter
        self.cache_store = cache_store
        self.limits = limits or QueryLimits()
        self.ttl_seconds = ttl_seconds
        self.staff_ttl_seconds = staff_ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("licences.query_service")

    async def businesses_in_box(
        self,
        box: BoundingBox,
        limit: int,
        *,
        audience: Audience = Audience.PUBLIC,
    ) -> QueryResult:
        box = self._validate_box(box)
        if audience is Audience.STAFF:
            limit = self._validate_limit(limit, self.limits.max_staff_limit)
            operation, ttl, project = "staff-bbox", self.staff_ttl_seconds, to_staff_projections
        else:
            limit = self._validate_limit(limit, self.limits.max_public_limit)
            operation, ttl, project = "bbox", self.ttl_seconds, to_public_projections

        async def fetch() -> List[Dict[str, Any]]:
            records = await self.adapter.fetch_by_bounding_box(box, limit)
            return [projection.model_dump(mode="json") for projection in project(records)]

        return await self._cache_aside(operation, {**box.to_params(), "limit": limit}, fetch, ttl)

    async def businesses_near(self, centre: GeoPoint, radius_metres: float, limit: int) -> QueryResult:
        centre = self._validate_point(centre)
        radius_metres = self._validate_radius(radius_metres)
        limit = self._validate_limit(limit, self.limits.max_nearby_limit)

        async def fetch() -> List[Dict[str, Any]]:
            records = await self.adapter.fetch_by_radius(centre, radius_metres, limit)
            return [projection.model_dump(mode="json") for projection in to_public_projections(records)]

        params = {"lat": centre.lat, "lng": centre.lng, "radius": radius_metres, "limit": limit}
        return await self._cache_aside("nearby", params, fetch, self.ttl_seconds)

    async def category_summary(self, area: Optional[str], limit: int) -> QueryResult:
        area = self._validate_area(area)
        limit = self._validate_limit(limit, self.limits.max_category_limit)

        async def fetch() -> List[Dict[str, Any]]:
            summaries = await self.adapter.fetch_categories(area, limit)
            return [summary.to_dict() for summary in summaries]

        return await self._cache_aside("categories", {"area": area, "limit": limit}, fetch, self.ttl_seconds)

    async def invalidate(self, key: str) -> None:
        if not key or len(key) > _MAX_KEY_LENGTH:
            raise ValidationError("Invalid cache key", details={"field": "key"})
        await self.cache_store.invalidate(key)

    async def _cache_aside(
        self,
        operation: str,
        params: Dict[str, Any],
        fetch: Callable[[], Awaitable[List[Dict[str, Any]]]],
        ttl_seconds: int,
    ) -> QueryResult:
        key = build_key(self.adapter.source_id, operation, params)

        cached = await self.cache_store.get(key)
        if isinstance(cached, list):
            self._record_lookup(operation, hit=True)
            return QueryResult(data=cached, cache_hit=True, cache_key=key)

        self._record_lookup(operation, hit=False)
        data = await fetch()
        await self.cache_store.set(key, data, ttl_seconds)

        self.logger.info(
            "Upstream query served",
            source=self.adapter.source_id,
            operation=operation,
            rows=len(data),
        )
        return QueryResult(data=data, cache_hit=False, cache_key=key)

    def _record_lookup(self, operation: str, hit: bool) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(operation, hit)

    def _validate_box(self, box: BoundingBox) -> BoundingBox:
        north = _coordinate("north", box.north, -90.0, 90.0)
        south = _coordinate("south", box.south, -90.0, 90.0)
        east = _coordinate("east", box.east, -180.0, 180.0)
        west = _coordinate("west", box.west, -180.0, 180.0)

        if south > north:
            raise ValidationError(
                "south must not exceed north",
                details={"field": "south", "constraint": "south <= north"},
            )
        if west > east:
            raise ValidationError(
                "west must not exceed east",
                details={"field": "west", "constraint": "west <= east"},
            )
        return BoundingBox(north=north, south=south, east=east, west=west)

    def _validate_point(self, point: GeoPoint) -> GeoPoint:
        return GeoPoint(
            lat=_coordinate("lat", point.lat, -90.0, 90.0),
            lng=_coordinate("lng", point.lng, -180.0, 180.0),
        )

    def _validate_radius(self, radius_metres: float) -> float:
        radius = _finite("radius", radius_metres)
        if radius <= 0 or radius > self.limits.max_radius_metres:
            raise ValidationError(
                f"radius must be greater than 0 and at most {self.limits.max_radius_metres:g} metres",
                details={"field": "radius", "constraint": f"0 < radius <= {self.limits.max_radius_metres:g}"},
            )
        return radius

    @staticmethod
    def _validate_limit(limit: int, maximum: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > maximum:
            raise ValidationError(
                f"limit must be an integer between 1 and {maximum}",
                details={"field": "limit", "constraint": f"1 <= limit <= {maximum}"},
            )
        return limit

    @staticmethod
    def _validate_area(area: Optional[str]) -> Optional[str]:
        if area is None:
            return None
        area = area.strip().upper()
        if not area:
            return None
        if not _AREA_PATTERN.fullmatch(area):
            raise ValidationError(
                "area contains unsupported characters or is too long",
                details={"field": "area", "constraint": "1-100 letters, digits, spaces or .,'&()/-"},
            )
        return area


def _finite(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    return float(value)


def _coordinate(field: str, value: Any, minimum: float, maximum: float) -> float:
    number = _finite(field, value)
    if number < minimum or number > maximum:
        raise ValidationError(
            f"{field} must be between {minimum:g} and {maximum:g}",
            details={"field": field, "constraint": f"{minimum:g} <= {field} <= {maximum:g}"},
        )
    return number
