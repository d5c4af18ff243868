"""
Base service class for Blog API services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Set
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_request_id, set_request_route, clear_context
from shared.metrics import get_metrics_collector
from shared.errors import BlogAPIException


class BaseService:
    """Base service class with common functionality."""

    # Dependencies whose failure makes the service unhealthy
    critical_dependencies: Set[str] = set()

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Blog API - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"] if self.config.env == "local" else self.config.cors_origins,
            allow_credentials=self.config.env != "local",
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization"],
        )

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            set_request_route(request.method, request.url.path)

            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time

            self.metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id
            )

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=500,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "timestamp": _utcnow(),
                        "error": "Health check failed"
                    }
                )

            degraded = any(
                dependencies.get(name) != "healthy"
                for name in self.critical_dependencies
            )
            status = "degraded" if degraded else "ok"
            self.metrics.record_health_check(status)

            return JSONResponse(
                status_code=503 if degraded else 200,
                content={
                    "service": self.service_name,
                    "status": status,
                    "timestamp": _utcnow(),
                    "uptime_seconds": self._get_uptime(),
                    "environment": self.config.env,
                    "dependencies": dependencies,
                    "version": "1.0.0",
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.render(),
                media_type=CONTENT_TYPE_LATEST
            )

        @self.app.exception_handler(BlogAPIException)
        async def blog_api_exception_handler(request: Request, exc: BlogAPIException):
            """Handle BlogAPIException."""
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                path=request.url.path
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_dict()
            )

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            """Translate request parsing failures into the error envelope."""
            details = [
                ".".join(str(part) for part in error.get("loc", ())) + ": " + error.get("msg", "")
                for error in exc.errors()
            ]
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Validation failed",
                    "message": "Please check your input data",
                    "details": details
                }
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("unhandled_exception")
            return JSONResponse(
                status_code=500,
                content={
                    "error": "Internal server error",
                    "message": "Something went wrong"
                }
            )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check service dependencies. Override in subclasses."""
        return {}

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()
