"""
Per-route cache middleware.

``ReadThroughCache`` serves GET responses from the cache store and populates
it after successful misses; ``CacheInvalidator`` clears key patterns after
successful mutations. Both are attached to endpoints with a decorator and run
inside ``CacheAwareRoute``, so they see the real request and the rendered
response. Cache work never changes a response status or body and never raises
into the request.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, List, Optional, Sequence, Set, Tuple, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from service_blog.app.caching.redis_client import RedisCacheClient

CallNext = Callable[[Request], Awaitable[Response]]
KeyBuilder = Callable[[Request], str]
PatternFunction = Callable[[Request, Response], Union[str, Sequence[str]]]

CACHE_STATUS_HEADER = "X-Cache"
CACHE_KEY_HEADER = "X-Cache-Key"

_ENDPOINT_ATTR = "__cache_middleware__"

logger = get_logger("blog.cache.middleware")


def _full_path(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def default_cache_key(request: Request) -> str:
    """``api:{METHOD}:{path}[?query]``."""
    return f"api:{request.method}:{_full_path(request)}"


def prefixed_cache_key(prefix: str) -> KeyBuilder:
    """Key builder producing ``{prefix}:{path}[?query]``."""
    def build(request: Request) -> str:
        return f"{prefix}:{_full_path(request)}"
    return build


def _is_success(response: Response) -> bool:
    return 200 <= response.status_code < 300


class PendingCacheWrites:
    """Tracks fire-and-forget cache tasks so they can be awaited on demand."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Background cache task failed", error=str(error))

    async def flush(self):
        """Wait for every in-flight write, including ones spawned while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)


@dataclass(frozen=True)
class StaticPatterns:
    """Patterns fixed at configuration time."""
    patterns: Tuple[str, ...]

    def resolve(self, request: Request, response: Response) -> List[str]:
        return list(self.patterns)


@dataclass(frozen=True)
class DynamicPatterns:
    """Patterns computed from the finished request and response."""
    build: PatternFunction

    def resolve(self, request: Request, response: Response) -> List[str]:
        result = self.build(request, response)
        if isinstance(result, str):
            return [result]
        return list(result)


PatternSource = Union[StaticPatterns, DynamicPatterns]


def patterns_from(source: Union[str, Sequence[str], PatternFunction, PatternSource]) -> PatternSource:
    """Normalize a string, a list of strings or a callable into a pattern source."""
    if isinstance(source, (StaticPatterns, DynamicPatterns)):
        return source
    if isinstance(source, str):
        return StaticPatterns((source,))
    if callable(source):
        return DynamicPatterns(source)
    if isinstance(source, (list, tuple)):
        if not all(isinstance(pattern, str) for pattern in source):
            raise TypeError("Invalidation patterns must be strings")
        return StaticPatterns(tuple(source))
    raise TypeError(f"Unsupported invalidation pattern source: {type(source).__name__}")


class RouteMiddleware:
    """Base for middleware attached to individual endpoints."""

    def _attach(self, endpoint: Callable) -> Callable:
        chain = endpoint.__dict__.setdefault(_ENDPOINT_ATTR, [])
        # Decorators apply bottom-up; the outermost one must run first.
        chain.insert(0, self)
        return endpoint

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        raise NotImplementedError


class ReadThroughCache(RouteMiddleware):
    """Read-through response cache for GET endpoints."""

    def __init__(self,
                 client: RedisCacheClient,
                 *,
                 key_builder: KeyBuilder = default_cache_key,
                 ttl: int = 300,
                 skip_cache: bool = False,
                 pending: Optional[PendingCacheWrites] = None,
                 metrics: Optional[MetricsCollector] = None,
                 name: str = "default"):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.client = client
        self.key_builder = key_builder
        self.ttl = ttl
        self.skip_cache = skip_cache
        self.pending = pending if pending is not None else PendingCacheWrites()
        self.metrics = metrics
        self.name = name

    def cached(self, endpoint: Callable) -> Callable:
        """Decorator enabling this cache policy on an endpoint."""
        return self._attach(endpoint)

    def _record(self, status: str):
        if self.metrics is not None:
            self.metrics.record_cache_lookup(self.name, status)

    def _annotate(self, response: Response, status: str, key: str) -> Response:
        response.headers[CACHE_STATUS_HEADER] = status
        response.headers[CACHE_KEY_HEADER] = key
        if _is_success(response):
            response.headers["Cache-Control"] = f"public, max-age={self.ttl}"
        else:
            response.headers["Cache-Control"] = "no-store"
        return response

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        if request.method != "GET" or self.skip_cache:
            return await call_next(request)

        key = None
        try:
            key = self.key_builder(request)
            cached = await self.client.get(key)
        except Exception as e:
            logger.error("Cache lookup failed, serving uncached", key=key, path=request.url.path, error=str(e))
            self._record("ERROR")
            response = await call_next(request)
            if key is None:
                return response
            return self._annotate(response, "ERROR", key)

        if cached is not None:
            self._record("HIT")
            return self._annotate(JSONResponse(content=cached), "HIT", key)

        self._record("MISS")
        response = await call_next(request)
        if _is_success(response):
            self._schedule_store(key, response)
        return self._annotate(response, "MISS", key)

    def _schedule_store(self, key: str, response: Response):
        content_type = response.headers.get("content-type", "")
        body = getattr(response, "body", None)
        if not body or not content_type.startswith("application/json"):
            logger.debug("Response not cacheable", key=key, content_type=content_type)
            return

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Response body is not valid JSON, not caching", key=key)
            return

        self.pending.spawn(self.client.set(key, payload, self.ttl))


class CacheInvalidator(RouteMiddleware):
    """Clears cache key patterns after a successful mutation."""

    def __init__(self,
                 client: RedisCacheClient,
                 patterns: Union[str, Sequence[str], PatternFunction, PatternSource],
                 *,
                 pending: Optional[PendingCacheWrites] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.source = patterns_from(patterns)
        self.pending = pending if pending is not None else PendingCacheWrites()
        self.metrics = metrics

    def invalidates(self, endpoint: Callable) -> Callable:
        """Decorator enabling invalidation on an endpoint."""
        return self._attach(endpoint)

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await call_next(request)
        if not _is_success(response):
            logger.debug(
                "Skipping cache invalidation for unsuccessful response",
                path=request.url.path,
                status_code=response.status_code
            )
            return response

        try:
            patterns = self.source.resolve(request, response)
        except Exception as e:
            logger.error("Failed to resolve invalidation patterns", path=request.url.path, error=str(e))
            self._record("error")
            return response

        if patterns:
            self.pending.spawn(self._clear(patterns))
        return response

    def _record(self, outcome: str):
        if self.metrics is not None:
            self.metrics.record_invalidation(outcome)

    async def _clear(self, patterns: List[str]):
        results = await asyncio.gather(
            *(self.client.clear_pattern(pattern) for pattern in patterns),
            return_exceptions=True
        )
        failures = []
        cleared = 0
        for pattern, result in zip(patterns, results):
            if isinstance(result, BaseException):
                failures.append(f"{pattern}: {result}")
            elif not result.ok:
                failures.append(f"{pattern}: cache store unavailable")
            else:
                cleared += result.count

        if failures:
            logger.warning(
                "Cache invalidation partially failed",
                failed=len(failures),
                total=len(patterns),
                errors=failures
            )
            self._record("partial_failure")
            return

        logger.debug("Cache invalidated", patterns=patterns, cleared=cleared)
        self._record("success")


class CacheAwareRoute(APIRoute):
    """APIRoute that runs the cache middleware tagged on its endpoint."""

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        handler = super().get_route_handler()
        for middleware in reversed(getattr(self.endpoint, _ENDPOINT_ATTR, [])):
            handler = _bind(middleware, handler)
        return handler


def _bind(middleware: RouteMiddleware, call_next: CallNext) -> Callable[[Request], Coroutine[Any, Any, Response]]:
    async def route_handler(request: Request) -> Response:
        return await middleware.dispatch(request, call_next)
    return route_handler
