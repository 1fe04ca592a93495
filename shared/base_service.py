"""
Base service class for the business licence map services.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.config import ServiceSettings, get_settings
from shared.errors import ErrorResponse, LicenceMapError
from shared.logging import clear_context, configure_logging, get_logger, get_request_id, set_request_id
from shared.metrics import get_metrics_collector


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, settings: Optional[ServiceSettings] = None):
        self.settings = settings or get_settings()
        self.service_name = self.settings.service_name
        configure_logging(self.service_name, self.settings.log_level)

        self.logger = get_logger(self.service_name)
        self.metrics = get_metrics_collector(self.service_name)
        self._start_time = time.time()

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_common_routes()
        self._setup_error_handlers()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.startup()
            try:
                yield
            finally:
                await self.shutdown()

        is_local = self.settings.env == "local"
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description="Business licence open-data proxy",
            version="1.0.0",
            docs_url="/docs" if is_local else None,
            redoc_url="/redoc" if is_local else None,
            lifespan=lifespan,
        )

    async def startup(self) -> None:
        """Acquire long-lived resources. Override in subclasses."""

    async def shutdown(self) -> None:
        """Release long-lived resources. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        )

        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()

            try:
                response = await call_next(request)
                duration = time.time() - start_time
                response.headers["X-Request-ID"] = request_id

                route = request.scope.get("route")
                endpoint = getattr(route, "path", request.url.path)
                self.metrics.record_http_request(
                    method=request.method,
                    endpoint=endpoint,
                    status_code=response.status_code,
                    duration=duration
                )

                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )
                return response
            finally:
                clear_context()

    def _setup_common_routes(self):
        """Set up common routes."""

        @self.app.get("/api/health")
        async def health_check():
            """Liveness endpoint."""
            return {
                "service": self.service_name,
                "status": "ok",
                "uptime_seconds": round(self._get_uptime(), 3),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    def _setup_error_handlers(self):
        """Map domain errors onto HTTP responses."""

        @self.app.exception_handler(LicenceMapError)
        async def licence_map_exception_handler(request: Request, exc: LicenceMapError):
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log("Request failed", code=exc.code, message=exc.message, path=request.url.path)
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump(),
                headers=exc.headers,
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            errors = [
                {
                    "loc": [str(part) for part in error.get("loc", ())],
                    "msg": error.get("msg"),
                    "type": error.get("type"),
                }
                for error in exc.errors()
            ]
            return JSONResponse(
                status_code=400,
                content=ErrorResponse(
                    request_id=get_request_id(),
                    code="VALIDATION_ERROR",
                    message="Invalid query parameters",
                    details={"errors": errors},
                ).model_dump(),
            )

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
            message = "Not found" if exc.status_code == 404 else str(exc.detail)
            return JSONResponse(
                status_code=exc.status_code,
                content=ErrorResponse(request_id=get_request_id(), code=code, message=message).model_dump(),
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    request_id=get_request_id(),
                    code="INTERNAL_ERROR",
                    message="Internal server error",
                ).model_dump(),
            )

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower()
        )
