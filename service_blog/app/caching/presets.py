"""
Cache policies used by the blog and user routes.
"""

from dataclasses import dataclass
from typing import List, Optional

from fastapi import Request, Response

from shared.metrics import MetricsCollector
from service_blog.app.caching.middleware import (
    CacheInvalidator,
    PendingCacheWrites,
    ReadThroughCache,
    prefixed_cache_key,
)
from service_blog.app.caching.redis_client import RedisCacheClient

# TTLs in seconds
BLOG_LIST_TTL = 300
BLOG_DETAIL_TTL = 900
USER_LIST_TTL = 600

# Every blog-derived namespace, including ones populated by other deployments
ALL_BLOG_PATTERNS = ("blogs:*", "blog:*", "user-blogs:*", "popular-blogs:*")
USER_LIST_PATTERNS = ("users:*",)


def single_blog_patterns(blog_id: str) -> List[str]:
    """Patterns covering one blog's detail entries and every list view."""
    return [f"blog:*{blog_id}*", "blogs:*"]


def _updated_blog_patterns(request: Request, response: Response) -> List[str]:
    return single_blog_patterns(request.path_params["blog_id"])


@dataclass
class CachePresets:
    """Read-through policies and invalidators shared by the routers."""
    blog_list: ReadThroughCache
    blog_detail: ReadThroughCache
    user_list: ReadThroughCache
    invalidate_all_blogs: CacheInvalidator
    invalidate_updated_blog: CacheInvalidator
    invalidate_users: CacheInvalidator


def build_presets(client: RedisCacheClient,
                  pending: PendingCacheWrites,
                  metrics: Optional[MetricsCollector] = None,
                  enabled: bool = True) -> CachePresets:
    """Build the route cache policies around one client and write tracker."""
    def read_through(prefix: str, ttl: int) -> ReadThroughCache:
        return ReadThroughCache(
            client,
            key_builder=prefixed_cache_key(prefix),
            ttl=ttl,
            skip_cache=not enabled,
            pending=pending,
            metrics=metrics,
            name=prefix
        )

    def invalidator(patterns) -> CacheInvalidator:
        return CacheInvalidator(client, patterns, pending=pending, metrics=metrics)

    return CachePresets(
        blog_list=read_through("blogs", BLOG_LIST_TTL),
        blog_detail=read_through("blog", BLOG_DETAIL_TTL),
        user_list=read_through("users", USER_LIST_TTL),
        invalidate_all_blogs=invalidator(list(ALL_BLOG_PATTERNS)),
        invalidate_updated_blog=invalidator(_updated_blog_patterns),
        invalidate_users=invalidator(list(USER_LIST_PATTERNS)),
    )
