from __future__ import annotations

import os
from typing import Literal, Optional, TypedDict

from swrproxy._exceptions import ConfigurationError
from swrproxy._storages import AsyncBaseStorage, AsyncFileStorage, AsyncInMemoryStorage, AsyncRedisStorage

__all__ = ("Config", "create_storage", "get_default_config")

DEFAULT_UPSTREAM_CACHE_CONTROL = "s-maxage=1, stale-while-revalidate=31536000, stale-if-error=31536000"

StorageKind = Literal["memory", "file", "redis"]


class Config(TypedDict, total=False):
    # override default value with the environment variable SWRPROXY_ORIGIN_HEADER
    origin_header: str
    """
    The request header naming the origin URL to proxy to.
    """

    # override default value with the environment variable SWRPROXY_UPSTREAM_CACHE_CONTROL
    upstream_cache_control: Optional[str]
    """
    Advisory Cache-Control sent to the origin. Does not affect what gets cached.
    An empty value disables the header.
    """

    # override default value with the environment variable SWRPROXY_UPSTREAM_TIMEOUT
    upstream_timeout: float
    """
    Timeout for origin requests (in seconds).
    """

    # override default value with the environment variable SWRPROXY_REVALIDATION_TIMEOUT
    revalidation_timeout: Optional[float]
    """
    Seconds past stale-at after which an entry stuck in REVALIDATING is revalidated again.
    Unset keeps such entries as they are.
    """

    # override default value with the environment variable SWRPROXY_STORAGE
    storage: StorageKind
    """
    The storage backend: memory, file or redis.
    """

    # override default value with the environment variable SWRPROXY_MEMORY_CAPACITY
    memory_capacity: int
    """
    The maximum number of entries held by the memory storage.
    """

    # override default value with the environment variable SWRPROXY_CACHE_DIR
    cache_dir: str
    """
    The directory used by the file storage.
    """

    # override default value with the environment variable SWRPROXY_REDIS_URL
    redis_url: str
    """
    The URL of the redis server used by the redis storage.
    """


def _number_from_env(name: str, default: str, kind: type) -> float:
    raw = os.getenv(name, default)
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} should be a number, but got {raw!r}.") from None
    if value < 0:
        raise ConfigurationError(f"{name} should not be negative, but got {raw!r}.")
    return value  # type: ignore[no-any-return]


def get_default_config() -> Config:
    """Get the default configuration for swrproxy."""

    ORIGIN_HEADER = os.getenv("SWRPROXY_ORIGIN_HEADER", "x-gql-host")
    UPSTREAM_CACHE_CONTROL = os.getenv("SWRPROXY_UPSTREAM_CACHE_CONTROL", DEFAULT_UPSTREAM_CACHE_CONTROL) or None
    UPSTREAM_TIMEOUT = _number_from_env("SWRPROXY_UPSTREAM_TIMEOUT", "30", float)
    REVALIDATION_TIMEOUT = (
        _number_from_env("SWRPROXY_REVALIDATION_TIMEOUT", "", float)
        if os.getenv("SWRPROXY_REVALIDATION_TIMEOUT")
        else None
    )
    STORAGE = os.getenv("SWRPROXY_STORAGE", "memory")
    MEMORY_CAPACITY = int(_number_from_env("SWRPROXY_MEMORY_CAPACITY", "128", int))
    CACHE_DIR = os.getenv("SWRPROXY_CACHE_DIR", ".cache/swrproxy")
    REDIS_URL = os.getenv("SWRPROXY_REDIS_URL", "redis://localhost:6379")

    if STORAGE not in ("memory", "file", "redis"):
        raise ConfigurationError(f"SWRPROXY_STORAGE should be one of memory, file or redis, but got {STORAGE!r}.")

    if MEMORY_CAPACITY == 0:
        raise ConfigurationError("SWRPROXY_MEMORY_CAPACITY should be positive.")

    return {
        "origin_header": ORIGIN_HEADER.lower(),
        "upstream_cache_control": UPSTREAM_CACHE_CONTROL,
        "upstream_timeout": UPSTREAM_TIMEOUT,
        "revalidation_timeout": REVALIDATION_TIMEOUT,
        "storage": STORAGE,  # type: ignore[typeddict-item]
        "memory_capacity": MEMORY_CAPACITY,
        "cache_dir": CACHE_DIR,
        "redis_url": REDIS_URL,
    }


def create_storage(config: Config) -> AsyncBaseStorage:
    """Build the storage backend selected by `config`."""
    storage = config.get("storage", "memory")

    if storage == "memory":
        return AsyncInMemoryStorage(capacity=config.get("memory_capacity", 128))

    if storage == "file":
        return AsyncFileStorage(base_path=config.get("cache_dir", ".cache/swrproxy"))

    if storage == "redis":
        return AsyncRedisStorage.from_url(config.get("redis_url", "redis://localhost:6379"))

    raise ConfigurationError(f"Unknown storage {storage!r}.")
