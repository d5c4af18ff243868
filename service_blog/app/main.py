"""
Blog API service.
"""

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends

from shared.base_service import BaseService
from shared.config import ServiceConfig
from service_blog.app.caching.middleware import CacheAwareRoute, PendingCacheWrites
from service_blog.app.caching.presets import build_presets
from service_blog.app.caching.redis_client import RedisCacheClient
from service_blog.app.caching.session_cache import SessionCache
from service_blog.app.domain.auth import Authenticator, TokenService
from service_blog.app.domain.blogs import BlogService
from service_blog.app.domain.models import (
    BlogCreateRequest,
    BlogDeletedResponse,
    BlogResponse,
    BlogUpdateRequest,
    LoginRequest,
    LoginResponse,
    UserCreateRequest,
    UserProfile,
    UserResponse,
)
from service_blog.app.domain.users import UserService
from service_blog.app.health import HealthChecker, create_health_router
from service_blog.app.persistence import DocumentStore, create_document_store


class BlogAPIService(BaseService):
    """Blog API service implementation."""

    critical_dependencies = {"database"}

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 store: Optional[DocumentStore] = None,
                 cache: Optional[RedisCacheClient] = None):
        super().__init__("blog", 3003, config)

        self.cache = cache or RedisCacheClient(
            self.config.redis_url,
            default_ttl=self.config.cache_default_ttl,
            connect_timeout=self.config.cache_connect_timeout,
            failure_threshold=self.config.cache_breaker_threshold,
            recovery_timeout=self.config.cache_breaker_cooldown_seconds,
            max_retries=self.config.cache_max_reconnect_attempts,
            retry_base_delay=self.config.cache_reconnect_base_delay,
            retry_max_delay=self.config.cache_reconnect_max_delay
        )
        self.store = store or create_document_store(self.config)
        self.pending_writes = PendingCacheWrites()

        self.sessions = SessionCache(self.cache)
        self.tokens = TokenService(self.config.secret_key, self.config.token_ttl_seconds)
        self.users = UserService(self.store, self.sessions, self.tokens)
        self.blogs = BlogService(self.store, self.users)
        self.authenticator = Authenticator(self.tokens, self.users)

        self.presets = build_presets(
            self.cache,
            self.pending_writes,
            metrics=self.metrics,
            enabled=self.config.cache_enabled
        )
        self.health = HealthChecker(
            self.store,
            self.cache,
            cache_enabled=self.config.cache_enabled,
            environment=self.config.env
        )

        self._setup_blog_routes()

    def _setup_blog_routes(self):
        """Set up blog, user and login routes."""
        router = APIRouter(prefix="/api", route_class=CacheAwareRoute)
        presets = self.presets
        current_user = self.authenticator

        @router.get("/ping")
        async def ping():
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "environment": self.config.env
            }

        @router.get("/blogs", response_model=List[BlogResponse])
        @presets.blog_list.cached
        async def list_blogs():
            return await self.blogs.list_blogs()

        @router.get("/blogs/{blog_id}", response_model=BlogResponse)
        @presets.blog_detail.cached
        async def get_blog(blog_id: str):
            return await self.blogs.get_blog(blog_id)

        @router.post("/blogs", response_model=BlogResponse, status_code=201)
        @presets.invalidate_all_blogs.invalidates
        @presets.invalidate_users.invalidates
        async def create_blog(payload: BlogCreateRequest, caller: UserProfile = Depends(current_user)):
            return await self.blogs.create_blog(payload, caller)

        @router.put("/blogs/{blog_id}", response_model=BlogResponse)
        @presets.invalidate_updated_blog.invalidates
        @presets.invalidate_users.invalidates
        async def update_blog(blog_id: str, payload: BlogUpdateRequest,
                              caller: UserProfile = Depends(current_user)):
            return await self.blogs.update_blog(blog_id, payload, caller)

        @router.delete("/blogs/{blog_id}", response_model=BlogDeletedResponse)
        @presets.invalidate_all_blogs.invalidates
        @presets.invalidate_users.invalidates
        async def delete_blog(blog_id: str, caller: UserProfile = Depends(current_user)):
            return await self.blogs.delete_blog(blog_id, caller)

        @router.get("/users", response_model=List[UserResponse])
        @presets.user_list.cached
        async def list_users():
            return await self.users.list_users()

        @router.post("/users", response_model=UserResponse, status_code=201)
        @presets.invalidate_users.invalidates
        async def create_user(payload: UserCreateRequest):
            return await self.users.create_user(payload)

        @router.post("/login", response_model=LoginResponse)
        async def login(payload: LoginRequest):
            return await self.users.login(payload)

        self.app.include_router(router)
        self.app.include_router(create_health_router(self.health))

    async def _check_dependencies(self):
        """Check blog service dependencies."""
        return await self.health.dependency_status()

    async def start(self):
        """Start blog service components."""
        await self.store.start()

        if self.config.cache_enabled:
            if await self.cache.connect():
                self.logger.info("Response caching enabled", redis_url=self.config.redis_url)
            else:
                self.logger.warning("Cache store unavailable, serving uncached until it recovers")
        else:
            self.logger.info("Response caching disabled")

        self.logger.info("Blog service started")

    async def stop(self):
        """Stop blog service components."""
        await self.pending_writes.flush()
        await self.cache.disconnect()
        await self.store.stop()

        self.logger.info("Blog service stopped")


def create_app():
    """Create blog service application."""
    service = BlogAPIService()
    return service.app


if __name__ == "__main__":
    service = BlogAPIService()
    service.run()
