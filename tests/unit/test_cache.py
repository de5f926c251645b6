"""Tests for the caching middleware."""

import time

import pytest

from irbridge.middleware import CachingMiddleware, InMemoryCacheStorage, MiddlewareContext
from irbridge.middleware.caching import (
    CacheControl,
    CacheEntry,
    CacheKeyBuilder,
    parse_cache_options,
)
from irbridge.types import IRChatResponse, IRMessage


def response(text="cached answer"):
    return IRChatResponse(message=IRMessage.assistant(text))


class TestCacheKeyBuilder:
    """Test cache key derivation."""

    def test_same_request_same_key(self, make_request):
        """Test keys ignore request ids."""
        builder = CacheKeyBuilder()
        assert builder.build_key(make_request("hi")) == builder.build_key(make_request("hi"))

    def test_different_content_different_key(self, make_request):
        """Test keys depend on messages."""
        builder = CacheKeyBuilder()
        assert builder.build_key(make_request("hi")) != builder.build_key(make_request("bye"))

    def test_parameters_affect_key(self, make_request):
        """Test keys depend on sampling parameters."""
        builder = CacheKeyBuilder()
        assert builder.build_key(make_request(temperature=0.1)) != builder.build_key(
            make_request(temperature=0.9)
        )

    def test_custom_key(self, make_request):
        """Test a caller supplied key wins."""
        assert CacheKeyBuilder().build_key(make_request(), "mine") == "custom:mine"

    def test_salt(self, make_request):
        """Test salted keys differ."""
        request = make_request()
        assert CacheKeyBuilder().build_key(request) != CacheKeyBuilder(custom_salt="s").build_key(request)


class TestParseCacheOptions:
    """Test per-request cache options."""

    def test_defaults(self, make_request):
        """Test no options."""
        options = parse_cache_options(make_request())
        assert options.control == CacheControl.DEFAULT
        assert options.ttl is None

    @pytest.mark.parametrize(
        "value,control",
        [(False, CacheControl.BYPASS), ("no-cache", CacheControl.NO_CACHE), ("no-store", CacheControl.NO_STORE)],
    )
    def test_control(self, make_request, value, control):
        """Test cache control values."""
        assert parse_cache_options(make_request(custom={"cache": value})).control == control

    def test_ttl_and_key(self, make_request):
        """Test ttl and key overrides."""
        options = parse_cache_options(make_request(custom={"cache_ttl": 10, "cache_key": " k "}))
        assert options.ttl == 10
        assert options.custom_key == "k"


class TestInMemoryCacheStorage:
    """Test the in-memory storage."""

    async def test_set_get(self):
        """Test storing and reading an entry."""
        storage = InMemoryCacheStorage()
        entry = CacheEntry(response=response(), model="m", cached_at=time.time(), ttl=60)
        await storage.set("k", entry)
        assert await storage.get("k") is entry

    async def test_expired(self):
        """Test expired entries are dropped."""
        storage = InMemoryCacheStorage()
        await storage.set("k", CacheEntry(response=response(), model="m", cached_at=time.time() - 120, ttl=60))
        assert await storage.get("k") is None
        assert len(storage) == 0

    async def test_lru_eviction(self):
        """Test the least recently used entry is evicted."""
        storage = InMemoryCacheStorage(max_size=2)
        for key in ("a", "b"):
            await storage.set(key, CacheEntry(response=response(), model=None, cached_at=time.time(), ttl=60))
        await storage.get("a")
        await storage.set("c", CacheEntry(response=response(), model=None, cached_at=time.time(), ttl=60))
        assert await storage.get("b") is None
        assert await storage.get("a") is not None

    async def test_delete_and_clear(self):
        """Test removal."""
        storage = InMemoryCacheStorage()
        entry = CacheEntry(response=response(), model=None, cached_at=time.time(), ttl=60)
        await storage.set("a", entry)
        await storage.set("b", entry)
        await storage.delete("a")
        assert await storage.get("a") is None
        await storage.clear()
        assert len(storage) == 0


class TestCachingMiddleware:
    """Test cache hits and misses through the middleware."""

    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def handler(self, calls):
        async def next_fn():
            calls.append(True)
            return response(f"answer {len(calls)}")
        return next_fn

    async def test_miss_then_hit(self, make_request, handler, calls):
        """Test the second identical request is served from cache."""
        middleware = CachingMiddleware()
        first = MiddlewareContext(request=make_request("q"))
        second = MiddlewareContext(request=make_request("q"))

        assert (await middleware.execute(first, handler)).text == "answer 1"
        hit = await middleware.execute(second, handler)
        assert hit.text == "answer 1"
        assert hit.metadata.request_id == second.request_id
        assert len(calls) == 1
        assert first.state["cache_hit"] is False
        assert second.state["cache_hit"] is True
        assert middleware.get_stats() == {"hits": 1, "misses": 1, "hit_rate": 0.5}

    async def test_bypass(self, make_request, handler, calls):
        """Test cache=False skips the cache entirely."""
        middleware = CachingMiddleware()
        for _ in range(2):
            await middleware.execute(MiddlewareContext(request=make_request(custom={"cache": False})), handler)
        assert len(calls) == 2

    async def test_no_store(self, make_request, handler, calls):
        """Test no-store responses are not cached."""
        middleware = CachingMiddleware()
        await middleware.execute(MiddlewareContext(request=make_request(custom={"cache": "no-store"})), handler)
        await middleware.execute(MiddlewareContext(request=make_request()), handler)
        assert len(calls) == 2

    async def test_no_cache_refreshes(self, make_request, handler, calls):
        """Test no-cache skips the lookup but stores the fresh response."""
        middleware = CachingMiddleware()
        await middleware.execute(MiddlewareContext(request=make_request()), handler)
        await middleware.execute(MiddlewareContext(request=make_request(custom={"cache": "no-cache"})), handler)
        latest = await middleware.execute(MiddlewareContext(request=make_request()), handler)
        assert len(calls) == 2
        assert latest.text == "answer 2"

    async def test_errors_not_cached(self, make_request, calls):
        """Test failures are not stored."""
        middleware = CachingMiddleware()

        async def failing():
            calls.append(True)
            raise RuntimeError("boom")

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await middleware.execute(MiddlewareContext(request=make_request()), failing)
        assert len(calls) == 2
