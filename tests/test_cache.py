from __future__ import annotations

import asyncio

import pytest
from aiocache import SimpleMemoryCache
from pydantic import ValidationError

from config.settings import CacheSettings
from dexswipe.utils.cache import backend_config, cache_key, cached_call


def test_cache_key_segments():
    assert cache_key("goplus", "access_token", "app-1") == "goplus:access_token:app-1"
    assert cache_key("dexscreener", "search", 42) == "dexscreener:search:42"


def test_cached_call_memoizes_values_but_not_none():
    calls = []

    async def factory():
        calls.append(1)
        return {"pairs": len(calls)}

    async def nothing():
        calls.append(None)
        return None

    async def scenario():
        first = await cached_call("test:memo", 60, factory)
        second = await cached_call("test:memo", 60, factory)
        await cached_call("test:none", 60, nothing)
        await cached_call("test:none", 60, nothing)
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second == {"pairs": 1}
    assert calls == [1, None, None]


def test_memory_backend_config():
    config = backend_config(CacheSettings(ttl_seconds=30, namespace="swipe"))
    assert config == {"cache": SimpleMemoryCache, "ttl": 30, "namespace": "swipe:"}


def test_redis_backend_requires_a_dsn():
    with pytest.raises(ValidationError):
        CacheSettings(backend="redis")
    with pytest.raises(ValidationError):
        CacheSettings(backend="redis", redis_dsn="http://cache:6379/0")


def test_redis_backend_config_from_dsn():
    pytest.importorskip("redis")
    config = backend_config(CacheSettings(backend="redis", redis_dsn="redis://:pw@cache:6380/2"))
    assert config["endpoint"] == "cache"
    assert config["port"] == 6380
    assert config["db"] == 2
    assert config["password"] == "pw"
    assert config["namespace"] == "dexswipe:"
