"""aiocache wiring for provider memos.

One ``default`` alias (in-process memory, or Redis when several workers should share
GoPlus access tokens) under the ``CacheSettings.namespace`` prefix. Keys are built with
``cache_key`` so each provider keeps its own segment.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiocache import SimpleMemoryCache, caches
from aiocache.base import BaseCache
from loguru import logger

from config.settings import CacheSettings, get_settings

_active: CacheSettings | None = None


def backend_config(cfg: CacheSettings) -> dict[str, Any]:
    """aiocache alias config for the settings section."""

    common = {"ttl": cfg.ttl_seconds, "namespace": f"{cfg.namespace}:"}
    if cfg.backend == "memory":
        return {"cache": SimpleMemoryCache, **common}

    # Exported by aiocache only when the redis extra is installed.
    from aiocache import RedisCache

    dsn = cfg.redis_dsn
    return {
        "cache": RedisCache,
        "endpoint": dsn.host,
        "port": dsn.port,
        "db": int((dsn.path or "/0").strip("/") or 0),
        "password": dsn.password,
        **common,
    }


def configure_cache(cfg: CacheSettings | None = None, *, force: bool = False) -> None:
    global _active
    if _active is not None and not force:
        return
    cfg = cfg or get_settings().cache
    caches.set_config({"default": backend_config(cfg)})
    _active = cfg
    logger.debug(
        "aiocache backend {backend}, namespace {namespace}",
        backend=cfg.backend,
        namespace=cfg.namespace,
    )


def get_cache(alias: str = "default") -> BaseCache:
    configure_cache()
    return caches.get(alias)


async def clear_cache() -> None:
    await get_cache().clear()


def cache_key(provider: str, *parts: object) -> str:
    return ":".join([provider, *(str(part) for part in parts)])


async def cached_call(key: str, ttl: int, factory: Callable[[], Awaitable[Any]]) -> Any:
    """Memoize ``factory()`` under ``key``; ``None`` results are never stored."""

    cache = get_cache()
    value = await cache.get(key)
    if value is not None:
        logger.trace("cache hit {key}", key=key)
        return value
    value = await factory()
    if value is not None:
        await cache.set(key, value, ttl=ttl)
    return value


__all__ = ["backend_config", "cache_key", "cached_call", "clear_cache", "configure_cache", "get_cache"]
