"""
Business licence map service: a caching, privacy-filtering proxy in front of
the municipal business licence open-data portal.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Path, Query, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceSettings
from shared.retry import RetryConfig
from service_licences.app.adapters import CalgaryBusinessLicenceAdapter, DataSourceAdapter
from service_licences.app.caching import CacheStore
from service_licences.app.domain import (
    Audience,
    Identity,
    IdentityVerifier,
    JWTIdentityVerifier,
    QueryLimits,
    QueryResult,
    QueryService,
)
from service_licences.app.geo import BoundingBox, GeoPoint
from service_licences.app.ratelimit import FixedWindowRateLimiter, RateLimitGuard


class LicenceMapService(BaseService):
    """Licence map service implementation."""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        *,
        adapter: Optional[DataSourceAdapter] = None,
        cache_store: Optional[CacheStore] = None,
        identity_verifier: Optional[IdentityVerifier] = None,
    ):
        super().__init__(settings)
        self.adapter = adapter or CalgaryBusinessLicenceAdapter(
            self.settings.socrata_base_url,
            self.settings.socrata_app_token,
            timeout=self.settings.upstream_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=self.settings.upstream_max_attempts,
                base_delay=self.settings.upstream_backoff_base_seconds,
                max_delay=5.0,
            ),
            metrics=self.metrics,
        )
        self.identity_verifier = identity_verifier or JWTIdentityVerifier(
            self.settings.jwt_secret,
            algorithms=[self.settings.jwt_algorithm],
            audience=self.settings.jwt_audience,
            issuer=self.settings.jwt_issuer,
            required_roles=self.settings.staff_roles,
        )
        self.rate_limiter = FixedWindowRateLimiter(
            limit=self.settings.rate_limit_requests,
            window_seconds=self.settings.rate_limit_window_seconds,
        )
        self.rate_limit_guard = RateLimitGuard(
            self.rate_limiter,
            metrics=self.metrics,
            trust_forwarded_for=self.settings.trust_forwarded_for,
        )

        self._injected_cache_store = cache_store
        self.cache_store: Optional[CacheStore] = None
        self.query_service: Optional[QueryService] = None

        self.app.state.licence_service = self
        self._setup_licence_routes()
        self._setup_staff_routes()

    async def startup(self) -> None:
        self.cache_store = self._injected_cache_store or await CacheStore.create(
            self.settings.redis_url,
            ephemeral=self.settings.is_ephemeral,
            connect_timeout=self.settings.redis_connect_timeout_seconds,
            default_ttl=self.settings.cache_ttl_seconds,
        )
        self.metrics.set_cache_backend(self.cache_store.is_durable_backend)
        self.rate_limiter.store = self.cache_store

        self.query_service = QueryService(
            self.adapter,
            self.cache_store,
            limits=QueryLimits(
                max_radius_metres=self.settings.max_radius_metres,
                max_public_limit=self.settings.max_public_limit,
                max_nearby_limit=self.settings.max_nearby_limit,
                max_category_limit=self.settings.max_category_limit,
                max_staff_limit=self.settings.max_staff_limit,
            ),
            ttl_seconds=self.settings.cache_ttl_seconds,
            staff_ttl_seconds=self.settings.staff_cache_ttl_seconds,
            metrics=self.metrics,
        )
        self.logger.info(
            "Licence map service started",
            cache_backend=self.cache_store.backend_name,
            durable=self.cache_store.is_durable_backend,
            source=self.adapter.source_id,
        )

    async def shutdown(self) -> None:
        if self.cache_store is not None:
            await self.cache_store.close()
        await self.adapter.close()
        self.logger.info("Licence map service stopped")

    def _queries(self) -> QueryService:
        if self.query_service is None:
            raise RuntimeError("Licence map service has not been started")
        return self.query_service

    def _setup_licence_routes(self):
        """Set up public routes."""
        settings = self.settings

        @self.app.get("/api/health/cache")
        async def cache_health():
            """Report which cache backend was selected at startup."""
            store = self.cache_store
            if store is None:
                status, backend, durable, breaker = "starting", None, False, None
            else:
                status = "ok" if store.is_ready else "degraded"
                backend, durable = store.backend_name, store.is_durable_backend
                breaker = store.breaker_state()
            return {
                "status": status,
                "backend": backend,
                "durable": durable,
                "circuit_breaker": breaker,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.get("/api/v1/businesses")
        async def businesses_in_box(
            request: Request,
            north: float = Query(..., ge=-90, le=90),
            south: float = Query(..., ge=-90, le=90),
            east: float = Query(..., ge=-180, le=180),
            west: float = Query(..., ge=-180, le=180),
            limit: int = Query(settings.default_public_limit, gt=0, le=settings.max_public_limit),
        ):
            """Public businesses inside a bounding box."""
            await self.rate_limit_guard.check_request(request)
            box = BoundingBox(north=north, south=south, east=east, west=west)
            result = await self._queries().businesses_in_box(box, limit)
            return _respond(result)

        @self.app.get("/api/v1/businesses/nearby")
        async def businesses_nearby(
            request: Request,
            lat: float = Query(..., ge=-90, le=90),
            lng: float = Query(..., ge=-180, le=180),
            radius: float = Query(settings.default_radius_metres, gt=0, le=settings.max_radius_metres),
            limit: int = Query(settings.default_public_limit, gt=0, le=settings.max_nearby_limit),
        ):
            """Public businesses within ``radius`` metres of a point."""
            await self.rate_limit_guard.check_request(request)
            result = await self._queries().businesses_near(GeoPoint(lat=lat, lng=lng), radius, limit)
            return _respond(result)

        @self.app.get("/api/v1/businesses/categories")
        async def business_categories(
            request: Request,
            area: Optional[str] = Query(None, max_length=100),
            limit: int = Query(settings.default_category_limit, gt=0, le=settings.max_category_limit),
        ):
            """Licence type counts, optionally restricted to one community."""
            await self.rate_limit_guard.check_request(request)
            result = await self._queries().category_summary(area, limit)
            return _respond(result)

    def _setup_staff_routes(self):
        """Set up staff-only routes."""
        settings = self.settings

        async def require_staff(request: Request) -> Identity:
            return await self.identity_verifier.verify(request)

        @self.app.get("/api/v1/staff/businesses")
        async def staff_businesses_in_box(
            north: float = Query(..., ge=-90, le=90),
            south: float = Query(..., ge=-90, le=90),
            east: float = Query(..., ge=-180, le=180),
            west: float = Query(..., ge=-180, le=180),
            limit: int = Query(settings.default_staff_limit, gt=0, le=settings.max_staff_limit),
            identity: Identity = Depends(require_staff),
        ):
            """Full staff projection inside a bounding box."""
            box = BoundingBox(north=north, south=south, east=east, west=west)
            result = await self._queries().businesses_in_box(box, limit, audience=Audience.STAFF)
            self.logger.info("Staff query served", subject=identity.subject, rows=len(result.data))
            return _respond(result)

        @self.app.delete("/api/v1/staff/cache/{key:path}", status_code=204)
        async def invalidate_cache_entry(
            key: str = Path(..., min_length=1, max_length=512),
            identity: Identity = Depends(require_staff),
        ):
            """Drop one cache entry."""
            await self._queries().invalidate(key)
            self.logger.info("Cache entry invalidated", key=key, subject=identity.subject)
            return Response(status_code=204)


def _respond(result: QueryResult) -> JSONResponse:
    return JSONResponse(content=result.data, headers={"X-Cache": "HIT" if result.cache_hit else "MISS"})


def create_app(settings: Optional[ServiceSettings] = None, **dependencies) -> FastAPI:
    """Build the ASGI app. Keyword dependencies override the production collaborators."""
    return LicenceMapService(settings, **dependencies).app


if __name__ == "__main__":
    LicenceMapService().run()
