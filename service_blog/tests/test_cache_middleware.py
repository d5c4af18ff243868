"""
Unit tests for the read-through and invalidation middleware.
"""

import json
from collections import Counter

import httpx
import pytest
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.requests import Request as StarletteRequest
from unittest.mock import AsyncMock, patch
from redis.exceptions import RedisError

from shared.metrics import MetricsCollector
from shared.test_helpers import FakeRedis
from service_blog.app.caching.middleware import (
    CacheAwareRoute,
    CacheInvalidator,
    DynamicPatterns,
    PendingCacheWrites,
    ReadThroughCache,
    StaticPatterns,
    default_cache_key,
    patterns_from,
    prefixed_cache_key,
)
from service_blog.app.caching.redis_client import PatternClearResult, RedisCacheClient

FROM_URL = "service_blog.app.caching.redis_client.redis.from_url"

ITEMS = [{"id": 1, "name": "first", "tags": ["a"]}, {"id": 2, "name": "second", "tags": []}]


def make_request(path: str, query: bytes = b"", method: str = "GET") -> StarletteRequest:
    return StarletteRequest({
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": query,
        "headers": []
    })


def build_app(cache: RedisCacheClient, pending: PendingCacheWrites, calls: Counter,
              metrics: MetricsCollector) -> FastAPI:
    app = FastAPI()
    router = APIRouter(route_class=CacheAwareRoute)

    items_cache = ReadThroughCache(
        cache, key_builder=prefixed_cache_key("items"), ttl=120, pending=pending, metrics=metrics, name="items"
    )
    default_cache = ReadThroughCache(cache, pending=pending)
    skipped_cache = ReadThroughCache(cache, skip_cache=True, pending=pending)
    invalidate_items = CacheInvalidator(cache, ["items:*"], pending=pending, metrics=metrics)
    invalidate_one = CacheInvalidator(
        cache, lambda request, response: f"items:*{request.path_params['item_id']}*", pending=pending
    )

    @router.get("/items")
    @items_cache.cached
    async def list_items():
        calls["list"] += 1
        return ITEMS

    @router.get("/items/{item_id}")
    @items_cache.cached
    async def get_item(item_id: int):
        calls["get"] += 1
        return {"id": item_id}

    @router.get("/missing")
    @items_cache.cached
    async def missing():
        calls["missing"] += 1
        return JSONResponse(status_code=404, content={"error": "Not found", "message": "nothing here"})

    @router.get("/moved")
    @items_cache.cached
    async def moved():
        calls["moved"] += 1
        return JSONResponse(status_code=301, content={"location": "/items"}, headers={"Location": "/items"})

    @router.get("/text")
    @items_cache.cached
    async def text():
        calls["text"] += 1
        return PlainTextResponse("plain")

    @router.get("/teapot")
    @items_cache.cached
    async def teapot():
        calls["teapot"] += 1
        raise HTTPException(status_code=418, detail="short and stout")

    @router.get("/default")
    @default_cache.cached
    async def default_keyed():
        calls["default"] += 1
        return {"ok": True}

    @router.get("/skipped")
    @skipped_cache.cached
    async def skipped():
        calls["skipped"] += 1
        return {"ok": True}

    @router.api_route("/both", methods=["GET", "POST"])
    @items_cache.cached
    async def both(request: Request):
        calls[request.method] += 1
        return {"method": request.method}

    @router.post("/items", status_code=201)
    @invalidate_items.invalidates
    async def create_item(valid: bool = True):
        calls["create"] += 1
        if not valid:
            return JSONResponse(status_code=400, content={"error": "Validation failed", "message": "bad"})
        return {"created": True}

    @router.post("/items/fail")
    @invalidate_items.invalidates
    async def create_failing():
        raise HTTPException(status_code=409, detail="conflict")

    @router.delete("/items/{item_id}")
    @invalidate_one.invalidates
    @invalidate_items.invalidates
    async def delete_item(item_id: str):
        calls["delete"] += 1
        return {"deleted": item_id}

    app.include_router(router)
    return app


class TestCacheMiddleware:
    """HTTP-level tests of the cache middleware."""

    @pytest.fixture
    def fake_redis(self):
        return FakeRedis()

    @pytest.fixture
    def cache(self, fake_redis):
        with patch(FROM_URL, return_value=fake_redis):
            yield RedisCacheClient("redis://localhost:6379/15", max_retries=0)

    @pytest.fixture
    def pending(self):
        return PendingCacheWrites()

    @pytest.fixture
    def calls(self):
        return Counter()

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("blog-test")

    @pytest.fixture
    def app(self, cache, pending, calls, metrics):
        return build_app(cache, pending, calls, metrics)

    def http(self, app):
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    @pytest.mark.asyncio
    async def test_miss_populates_then_hit_skips_handler(self, app, cache, fake_redis, pending, calls):
        await cache.connect()
        async with self.http(app) as client:
            first = await client.get("/items")
            await pending.flush()
            second = await client.get("/items")

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert first.headers["X-Cache-Key"] == "items:/items"
        assert first.headers["Cache-Control"] == "public, max-age=120"
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["Cache-Control"] == "public, max-age=120"
        assert second.json() == first.json() == ITEMS
        assert calls["list"] == 1
        assert await fake_redis.ttl("items:/items") == 120

    @pytest.mark.asyncio
    async def test_seeded_entry_is_served_without_handler(self, app, cache, fake_redis, calls):
        await cache.connect()
        fake_redis.seed("items:/items/7", json.dumps({"id": 7, "cached": True}), ttl=60)

        async with self.http(app) as client:
            response = await client.get("/items/7")

        assert response.status_code == 200
        assert response.json() == {"id": 7, "cached": True}
        assert response.headers["X-Cache"] == "HIT"
        assert calls["get"] == 0

    @pytest.mark.asyncio
    async def test_query_string_is_part_of_key(self, app, cache, pending, fake_redis):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.get("/items?page=2")
            await pending.flush()

        assert response.headers["X-Cache-Key"] == "items:/items?page=2"
        assert fake_redis.raw("items:/items?page=2") is not None
        assert fake_redis.raw("items:/items") is None

    @pytest.mark.asyncio
    async def test_default_key_uses_method_and_path(self, app, cache):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.get("/default?x=1")

        assert response.headers["X-Cache-Key"] == "api:GET:/default?x=1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path,status", [("/missing", 404), ("/moved", 301)])
    async def test_non_success_responses_are_not_cached(self, app, cache, pending, fake_redis, calls, path, status):
        await cache.connect()
        async with self.http(app) as client:
            first = await client.get(path, follow_redirects=False)
            await pending.flush()
            second = await client.get(path, follow_redirects=False)

        assert first.status_code == second.status_code == status
        assert first.headers["X-Cache"] == second.headers["X-Cache"] == "MISS"
        assert first.headers["Cache-Control"] == "no-store"
        assert "setex" not in fake_redis.commands
        assert calls[path.strip("/")] == 2

    @pytest.mark.asyncio
    async def test_non_json_responses_are_not_cached(self, app, cache, pending, fake_redis):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.get("/text")
            await pending.flush()

        assert response.text == "plain"
        assert "setex" not in fake_redis.commands

    @pytest.mark.asyncio
    async def test_handler_errors_pass_through(self, app, cache, pending, fake_redis):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.get("/teapot")
            await pending.flush()

        assert response.status_code == 418
        assert response.json() == {"detail": "short and stout"}
        assert "X-Cache" not in response.headers
        assert "setex" not in fake_redis.commands

    @pytest.mark.asyncio
    async def test_skip_cache_bypasses_store(self, app, cache, fake_redis, calls):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.get("/skipped")

        assert response.status_code == 200
        assert "X-Cache" not in response.headers
        assert fake_redis.commands == ["ping"]
        assert calls["skipped"] == 1

    @pytest.mark.asyncio
    async def test_non_get_requests_bypass_cache(self, app, cache, pending, fake_redis, calls):
        await cache.connect()
        async with self.http(app) as client:
            response = await client.post("/both")
            await pending.flush()

        assert response.json() == {"method": "POST"}
        assert "X-Cache" not in response.headers
        assert fake_redis.commands == ["ping"]
        assert calls["POST"] == 1

    @pytest.mark.asyncio
    async def test_lookup_error_serves_fresh_and_skips_write(self, app, cache, pending, fake_redis, calls):
        await cache.connect()
        with patch.object(cache, "get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = RuntimeError("lookup exploded")
            async with self.http(app) as client:
                response = await client.get("/items")
                await pending.flush()

        assert response.status_code == 200
        assert response.json() == ITEMS
        assert response.headers["X-Cache"] == "ERROR"
        assert response.headers["X-Cache-Key"] == "items:/items"
        assert calls["list"] == 1
        assert "setex" not in fake_redis.commands

    @pytest.mark.asyncio
    async def test_unreachable_store_degrades_to_passthrough(self, app, pending, calls):
        async with self.http(app) as client:
            first = await client.get("/items")
            await pending.flush()
            second = await client.get("/items")

        assert first.status_code == second.status_code == 200
        assert first.headers["X-Cache"] == second.headers["X-Cache"] == "MISS"
        assert calls["list"] == 2

    @pytest.mark.asyncio
    async def test_successful_mutation_clears_patterns(self, app, cache, pending, fake_redis):
        await cache.connect()
        fake_redis.seed("items:/items", "[]")
        fake_redis.seed("items:/items/1", "{}")
        fake_redis.seed("other:/kept", "{}")

        async with self.http(app) as client:
            response = await client.post("/items")
            await pending.flush()

        assert response.status_code == 201
        assert fake_redis.raw("items:/items") is None
        assert fake_redis.raw("items:/items/1") is None
        assert fake_redis.raw("other:/kept") == "{}"

    @pytest.mark.asyncio
    async def test_rejected_mutation_keeps_entries(self, app, cache, pending, fake_redis, calls):
        await cache.connect()
        fake_redis.seed("items:/items", "[]")

        async with self.http(app) as client:
            rejected = await client.post("/items?valid=false")
            failed = await client.post("/items/fail")
            await pending.flush()

        assert rejected.status_code == 400
        assert failed.status_code == 409
        assert calls["create"] == 1
        assert fake_redis.raw("items:/items") == "[]"
        assert "keys" not in fake_redis.commands

    @pytest.mark.asyncio
    async def test_dynamic_patterns_use_request(self, app, cache, pending, fake_redis):
        await cache.connect()
        fake_redis.seed("items:/items/42", "{}")
        fake_redis.seed("items:/items/7", "{}")

        with patch.object(cache, "clear_pattern", wraps=cache.clear_pattern) as clear:
            async with self.http(app) as client:
                response = await client.delete("/items/42")
                await pending.flush()

        assert response.status_code == 200
        cleared = sorted(call.args[0] for call in clear.call_args_list)
        assert cleared == ["items:*", "items:*42*"]
        assert fake_redis.raw("items:/items/42") is None

    @pytest.mark.asyncio
    async def test_partial_invalidation_failure_is_counted(self, cache, pending, metrics):
        await cache.connect()
        invalidator = CacheInvalidator(cache, ["a:*", "b:*"], pending=pending, metrics=metrics)

        with patch.object(cache, "clear_pattern", new_callable=AsyncMock) as clear:
            clear.side_effect = [RuntimeError("enumeration failed"), PatternClearResult(count=3, ok=True)]
            await invalidator._clear(["a:*", "b:*"])

        assert clear.await_count == 2
        assert metrics.registry.get_sample_value(
            "cache_invalidations_total", {"outcome": "partial_failure"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_store_outage_during_invalidation_is_a_failure(self, cache, pending, metrics, fake_redis):
        await cache.connect()
        fake_redis.seed("a:1", "{}")
        fake_redis.fail_with = RedisError("READONLY")
        invalidator = CacheInvalidator(cache, ["a:*", "b:*"], pending=pending, metrics=metrics)

        with patch("service_blog.app.caching.middleware.logger") as log:
            await invalidator._clear(["a:*", "b:*"])

        assert metrics.registry.get_sample_value(
            "cache_invalidations_total", {"outcome": "partial_failure"}
        ) == 1.0
        assert metrics.registry.get_sample_value(
            "cache_invalidations_total", {"outcome": "success"}
        ) is None
        log.warning.assert_called_once()
        assert log.warning.call_args.kwargs["failed"] == 2
        assert fake_redis.raw("a:1") == "{}"

    @pytest.mark.asyncio
    async def test_invalidation_without_connection_is_a_failure(self, cache, pending, metrics):
        invalidator = CacheInvalidator(cache, "a:*", pending=pending, metrics=metrics)

        await invalidator._clear(["a:*"])

        assert metrics.registry.get_sample_value(
            "cache_invalidations_total", {"outcome": "partial_failure"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_invalidation_with_no_matches_succeeds(self, cache, pending, metrics):
        await cache.connect()
        invalidator = CacheInvalidator(cache, "nothing:*", pending=pending, metrics=metrics)

        await invalidator._clear(["nothing:*"])

        assert metrics.registry.get_sample_value(
            "cache_invalidations_total", {"outcome": "success"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_lookup_outcomes_are_recorded(self, app, cache, pending, metrics):
        await cache.connect()
        async with self.http(app) as client:
            await client.get("/items")
            await pending.flush()
            await client.get("/items")

        assert metrics.registry.get_sample_value("cache_requests_total", {"route": "items", "status": "MISS"}) == 1.0
        assert metrics.registry.get_sample_value("cache_requests_total", {"route": "items", "status": "HIT"}) == 1.0


class TestPatternSources:
    """Normalization of invalidation pattern configuration."""

    def test_single_string(self):
        source = patterns_from("blogs:*")

        assert source == StaticPatterns(("blogs:*",))
        assert source.resolve(make_request("/"), None) == ["blogs:*"]

    def test_list_of_strings(self):
        assert patterns_from(["blogs:*", "blog:*"]) == StaticPatterns(("blogs:*", "blog:*"))

    def test_callable_becomes_dynamic(self):
        source = patterns_from(lambda request, response: [f"blog:*{request.url.path}*", "blogs:*"])

        assert isinstance(source, DynamicPatterns)
        assert source.resolve(make_request("/x"), None) == ["blog:*/x*", "blogs:*"]

    def test_dynamic_string_result_is_wrapped(self):
        source = DynamicPatterns(lambda request, response: "users:*")

        assert source.resolve(make_request("/"), None) == ["users:*"]

    def test_existing_source_passes_through(self):
        source = StaticPatterns(("a:*",))

        assert patterns_from(source) is source

    @pytest.mark.parametrize("bad", [42, ["ok:*", 7], None])
    def test_invalid_sources_are_rejected(self, bad):
        with pytest.raises(TypeError):
            patterns_from(bad)


class TestKeyBuilders:

    def test_default_key(self):
        assert default_cache_key(make_request("/api/blogs", b"page=2")) == "api:GET:/api/blogs?page=2"

    def test_prefixed_key_without_query(self):
        build = prefixed_cache_key("blog")

        assert build(make_request("/api/blogs/abc")) == "blog:/api/blogs/abc"

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValueError):
            ReadThroughCache(RedisCacheClient("redis://localhost:6379/15"), ttl=0)


class TestPendingCacheWrites:

    @pytest.mark.asyncio
    async def test_flush_waits_for_spawned_tasks(self):
        pending = PendingCacheWrites()
        done = []

        async def write():
            done.append(True)

        pending.spawn(write())
        assert len(pending) == 1

        await pending.flush()
        assert done == [True]
        assert len(pending) == 0

    @pytest.mark.asyncio
    async def test_failed_task_does_not_break_flush(self):
        pending = PendingCacheWrites()

        async def explode():
            raise RuntimeError("write failed")

        pending.spawn(explode())
        await pending.flush()

        assert len(pending) == 0
