"""
Base service class for gateway applications.
"""

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from typing import Any, Callable, Optional, Sequence
import time

from shared.config import BaseConfig
from shared.logging import configure_logging, get_logger, request_id_var, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.errors import AccessLayerException, AuthenticationError


class BaseService:
    """Base service class with common functionality.

    Subclasses add their routes in ``_setup_routes``. ``guards`` become
    application-level dependencies and therefore run before every route.
    """

    def __init__(self, service_name: str, config: BaseConfig,
                 metrics: Optional[MetricsCollector] = None,
                 guards: Sequence[Callable[..., Any]] = ()):
        self.service_name = service_name
        self.config = config
        self.logger = get_logger(service_name)
        self.metrics = metrics or get_metrics_collector(service_name)

        # Configure logging
        configure_logging(service_name, self.config.log_level)

        # Create FastAPI app
        self.app = self._create_app(guards)

        # Set up middleware
        self._setup_middleware()

        # Set up error handlers and routes
        self._setup_error_handlers()
        self._setup_routes()

    def _create_app(self, guards: Sequence[Callable[..., Any]]) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name} service",
            version="1.0.0",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            dependencies=[Depends(guard) for guard in guards],
        )

    def _setup_middleware(self):
        """Set up middleware."""

        # Request timing middleware
        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            token = request_id_var.set(None)
            set_request_id(request.headers.get("X-Request-ID"))
            start_time = time.time()

            try:
                # Process request
                response = await call_next(request)

                # Calculate duration
                duration = time.time() - start_time

                route = request.scope.get("route")
                route_path = getattr(route, "path", request.url.path)

                # Record metrics
                self.metrics.record_http_request(
                    route=f"{request.method} {route_path}",
                    status_code=response.status_code,
                )

                # Log request
                self.logger.info(
                    "HTTP request",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    duration_ms=round(duration * 1000, 2)
                )

                return response
            finally:
                request_id_var.reset(token)

    def _setup_error_handlers(self):
        """Render gateway errors as structured responses."""

        @self.app.exception_handler(AccessLayerException)
        async def access_layer_exception_handler(request: Request, exc: AccessLayerException):
            """Handle AccessLayerException."""
            headers = None
            if isinstance(exc, AuthenticationError):
                headers = {"WWW-Authenticate": "Bearer"}
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response().model_dump(),
                headers=headers,
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    def _setup_routes(self):
        """Set up routes. Override in subclasses."""
