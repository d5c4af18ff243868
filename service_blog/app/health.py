"""
Health, readiness and liveness checks.

The document store is critical; the cache is optional and never degrades
the reported status.
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from shared.logging import get_logger
from service_blog.app.caching.redis_client import RedisCacheClient
from service_blog.app.persistence.base import DocumentStore


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthChecker:
    """Collects dependency status for the health endpoints."""

    def __init__(self, store: DocumentStore, cache: RedisCacheClient, cache_enabled: bool = True,
                 version: str = "1.0.0", environment: str = "local"):
        self.store = store
        self.cache = cache
        self.cache_enabled = cache_enabled
        self.version = version
        self.environment = environment
        self.logger = get_logger("blog.health")
        self._start_time = time.time()

    def uptime(self) -> float:
        return round(time.time() - self._start_time, 3)

    async def check_database(self) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            healthy = await self.store.ping()
        except Exception as e:
            self.logger.error("Database health check failed", error=str(e))
            return {"status": "unhealthy", "connected": False, "error": str(e)}

        if not healthy:
            return {"status": "disconnected", "connected": False}
        return {
            "status": "healthy",
            "connected": True,
            "response_time_ms": round((time.perf_counter() - start) * 1000, 2)
        }

    async def check_cache(self) -> Dict[str, Any]:
        if not self.cache_enabled:
            return {"status": "disabled", "connected": False}

        latency: Optional[float] = None
        if self.cache.is_ready():
            latency = await self.cache.ping()

        state = self.cache.get_state()
        if latency is not None:
            status = "healthy"
        elif state["circuit_breaker"]["is_open"]:
            status = "circuit-breaker-open"
        else:
            status = "disconnected"

        result = {"status": status, "response_time_ms": latency}
        result.update(state)
        return result

    async def dependency_status(self) -> Dict[str, str]:
        """Flat status map used by the basic health endpoint."""
        database = await self.check_database()
        cache = await self.check_cache()
        return {
            "api": "healthy",
            "database": database["status"],
            "redis": cache["status"]
        }

    async def detailed(self) -> Dict[str, Any]:
        database = await self.check_database()
        cache = await self.check_cache()
        return {
            "status": "ok" if database["status"] == "healthy" else "degraded",
            "timestamp": _utcnow(),
            "uptime_seconds": self.uptime(),
            "environment": self.environment,
            "services": {
                "api": {"status": "healthy", "version": self.version},
                "database": database,
                "redis": cache
            }
        }

    async def readiness(self) -> Dict[str, Any]:
        database = await self.check_database()
        ready = database["status"] == "healthy"
        return {
            "ready": ready,
            "timestamp": _utcnow(),
            "services": {
                "api": True,
                "database": ready,
                "redis": self.cache_enabled and self.cache.is_ready()
            }
        }

    def liveness(self) -> Dict[str, Any]:
        return {"alive": True, "timestamp": _utcnow(), "uptime_seconds": self.uptime()}


def create_health_router(checker: HealthChecker) -> APIRouter:
    """Routes for detailed, readiness and liveness checks."""
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/detailed")
    async def detailed_health():
        report = await checker.detailed()
        return JSONResponse(status_code=200 if report["status"] == "ok" else 503, content=report)

    @router.get("/ready")
    async def readiness():
        report = await checker.readiness()
        return JSONResponse(status_code=200 if report["ready"] else 503, content=report)

    @router.get("/live")
    async def liveness():
        return checker.liveness()

    return router
