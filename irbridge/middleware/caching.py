from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any

from irbridge.types import IRChatRequest, IRChatResponse

from .base import Middleware, MiddlewareContext, NextFunction

logger = logging.getLogger(__name__)

DEFAULT_CACHE_KEY_FIELDS = {
    "model",
    "messages",
    "temperature",
    "top_p",
    "top_k",
    "max_tokens",
    "stop_sequences",
    "frequency_penalty",
    "presence_penalty",
    "seed",
    "user",
    "tools",
    "tool_choice",
}


class CacheControl(str, Enum):
    DEFAULT = "default"
    NO_CACHE = "no-cache"
    NO_STORE = "no-store"
    BYPASS = "bypass"


@dataclass
class CacheOptions:
    control: CacheControl = CacheControl.DEFAULT
    ttl: int | None = None
    custom_key: str | None = None


@dataclass
class CacheEntry:
    response: IRChatResponse
    model: str | None
    cached_at: float
    ttl: int


def parse_cache_options(request: IRChatRequest) -> CacheOptions:
    """Read per-request cache options from ``metadata.custom``."""
    options = CacheOptions()
    custom = request.metadata.custom

    cache_ttl = custom.get("cache_ttl")
    if isinstance(cache_ttl, int):
        options.ttl = cache_ttl

    custom_key = custom.get("cache_key")
    if isinstance(custom_key, str) and custom_key.strip():
        options.custom_key = custom_key.strip()

    cache_setting = custom.get("cache")
    if cache_setting is False:
        options.control = CacheControl.BYPASS
    elif cache_setting == "no-cache":
        options.control = CacheControl.NO_CACHE
    elif cache_setting == "no-store":
        options.control = CacheControl.NO_STORE

    return options


class CacheKeyBuilder:
    def __init__(self, fields: set[str] | None = None, custom_salt: str = "") -> None:
        self.fields = fields or set(DEFAULT_CACHE_KEY_FIELDS)
        self.salt = custom_salt

    def build_key(self, request: IRChatRequest, custom_key: str | None = None) -> str:
        if custom_key:
            return f"custom:{custom_key}"

        payload = request.parameters.model_dump(exclude_none=True, exclude={"custom"})
        payload["messages"] = [m.model_dump(mode="json", exclude_none=True) for m in request.messages]
        if request.tools:
            payload["tools"] = [t.model_dump(mode="json") for t in request.tools]
        if request.tool_choice is not None:
            payload["tool_choice"] = request.tool_choice

        components = {field: payload[field] for field in self.fields if field in payload}
        normalized = self._normalize(components)
        as_string = json.dumps(normalized, sort_keys=True, separators=(",", ":"))
        if self.salt:
            as_string = f"{self.salt}:{as_string}"
        return hashlib.sha256(as_string.encode("utf-8")).hexdigest()

    def _normalize(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: self._normalize(v) for k, v in sorted(data.items())}
        if isinstance(data, list):
            return [self._normalize(item) for item in data]
        if isinstance(data, float):
            return round(data, 6)
        return data


class CacheStorage(ABC):
    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, entry: CacheEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class InMemoryCacheStorage(CacheStorage):
    """LRU cache with per-entry TTL."""

    def __init__(self, max_size: int = 1_000) -> None:
        self.max_size = max_size
        self._cache: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> CacheEntry | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if time.time() > entry.cached_at + entry.ttl:
                self._cache.pop(key, None)
                return None

            self._cache.move_to_end(key)
            return entry

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)

            self._cache[key] = entry
            while len(self._cache) > self.max_size:
                self._cache.popitem(last=False)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._cache.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._cache.clear()


class CachingMiddleware(Middleware):
    """Serves repeated non-streaming requests from a cache.

    A hit short-circuits the chain; the cached response is returned with the
    current request's metadata so the request id is preserved.
    """

    name = "caching"

    def __init__(
        self,
        storage: CacheStorage | None = None,
        *,
        ttl: int = 3600,
        key_builder: CacheKeyBuilder | None = None,
    ) -> None:
        self.storage = storage or InMemoryCacheStorage()
        self.ttl = ttl
        self.key_builder = key_builder or CacheKeyBuilder()
        self.hits = 0
        self.misses = 0

    async def execute(self, context: MiddlewareContext, next: NextFunction) -> IRChatResponse:
        request = context.request
        options = parse_cache_options(request)
        if options.control == CacheControl.BYPASS:
            return await next()

        key = self.key_builder.build_key(request, options.custom_key)
        context.state["cache_key"] = key

        if options.control != CacheControl.NO_CACHE:
            entry = await self.storage.get(key)
            if entry is not None:
                self.hits += 1
                context.state["cache_hit"] = True
                logger.debug("cache hit for %s", key[:12])
                return entry.response.model_copy(
                    update={
                        "metadata": entry.response.metadata.model_copy(
                            update={"request_id": request.request_id}
                        )
                    }
                )

        self.misses += 1
        context.state["cache_hit"] = False
        response = await next()

        if options.control != CacheControl.NO_STORE:
            await self.storage.set(
                key,
                CacheEntry(
                    response=response,
                    model=request.model,
                    cached_at=time.time(),
                    ttl=options.ttl if options.ttl is not None else self.ttl,
                ),
            )
        return response

    def get_stats(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }
