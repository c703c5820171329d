from __future__ import annotations

import copy
import hashlib
import logging
import time
import typing as tp
import warnings
from collections import OrderedDict
from pathlib import Path

import anyio

from swrproxy._files import AsyncFileManager
from swrproxy._headers import parse_cache_control
from swrproxy._models import Response
from swrproxy._serializers import BaseSerializer, JSONSerializer

try:
    import redis.asyncio as redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

logger = logging.getLogger("swrproxy.storages")

__all__ = (
    "AsyncBaseStorage",
    "AsyncFileStorage",
    "AsyncInMemoryStorage",
    "AsyncRedisStorage",
)


def float_seconds_to_int_milliseconds(seconds: float) -> int:
    return int(seconds * 1000)


def entry_lifetime(response: Response) -> tp.Optional[int]:
    """Seconds the stored Cache-Control keeps an entry, None when unbounded."""
    return parse_cache_control(response.headers.get("cache-control")).max_age or None


def _missing_redis(name: str) -> RuntimeError:
    return RuntimeError(
        f"The `{name}` was used, but the required packages were not found. "
        "Check that you have `swrproxy` installed with the `redis` extension as shown.\n"
        "```pip install swrproxy[redis]```"
    )


class AsyncBaseStorage:
    """
    Key-value store for cached responses.

    The cache only ever reads an entry by key or replaces it whole; when and
    what to evict is left entirely to the storage.

    Stored entries carry their edge lifetime in `Cache-Control` (`max-age=N`
    or `immutable`). Backends may use it to expire entries, but do not have
    to: the in-memory and file storages only honour `ttl` and their own
    capacity, while the redis storage falls back to it when no `ttl` is set.
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> None:
        self._serializer = serializer or JSONSerializer()
        self._ttl = ttl

    async def get(self, key: str) -> tp.Optional[Response]:
        raise NotImplementedError()

    async def put(self, key: str, response: Response) -> None:
        raise NotImplementedError()

    async def aclose(self) -> None:
        raise NotImplementedError()


class AsyncFileStorage(AsyncBaseStorage):
    """
    A simple file storage.

    :param serializer: Serializer capable of serializing and de-serializing cached responses, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param base_path: A storage base path where the responses should be saved, defaults to None
    :type base_path: tp.Optional[Path], optional
    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        base_path: tp.Optional[tp.Union[str, Path]] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> None:
        super().__init__(serializer, ttl)

        self._base_path = Path(base_path) if base_path is not None else Path(".cache/swrproxy")
        self._gitignore_file = self._base_path / ".gitignore"

        if not self._base_path.is_dir():
            self._base_path.mkdir(parents=True)

        if not self._gitignore_file.is_file():
            with open(self._gitignore_file, "w", encoding="utf-8") as f:
                f.write("# Automatically created by swrproxy\n*")

        self._file_manager = AsyncFileManager(is_binary=self._serializer.is_binary)
        self._lock = anyio.Lock()

    def _path_for(self, key: str) -> Path:
        # keys embed the request URL, which is not a valid file name
        return self._base_path / hashlib.sha256(key.encode("utf-8")).hexdigest()

    async def get(self, key: str) -> tp.Optional[Response]:
        """
        Retrieves the cached response by its key.

        :param key: The cache key of the request
        :type key: str
        :return: The cached response, if any.
        :rtype: tp.Optional[Response]
        """
        response_path = self._path_for(key)

        async with self._lock:
            if self._is_expired(response_path):
                response_path.unlink(missing_ok=True)
                return None

            read_data = await self._file_manager.read_from(str(response_path))

        if not read_data:
            return None
        return self._serializer.loads(read_data)

    async def put(self, key: str, response: Response) -> None:
        """
        Stores the response in the cache, replacing any previous entry.

        :param key: The cache key of the request
        :type key: str
        :param response: The response to store
        :type response: Response
        """
        response_path = self._path_for(key)

        async with self._lock:
            await self._file_manager.write_to(str(response_path), self._serializer.dumps(response))

    async def aclose(self) -> None:  # pragma: no cover
        return

    def _is_expired(self, response_path: Path) -> bool:
        if self._ttl is None or not response_path.is_file():
            return False
        return time.time() - response_path.stat().st_mtime > self._ttl


class AsyncRedisStorage(AsyncBaseStorage):
    """
    A simple redis storage.

    :param serializer: Serializer capable of serializing and de-serializing cached responses, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None,
        in which case the lifetime in the entry's Cache-Control is used
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> None:
        if redis is None:
            raise _missing_redis(type(self).__name__)
        super().__init__(serializer, ttl)

        if client is None:
            self._client = redis.Redis()  # type: ignore
        else:  # pragma: no cover
            self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        serializer: tp.Optional[BaseSerializer] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
    ) -> AsyncRedisStorage:
        """Build a storage for the redis server at `url`. No connection is made until first use."""
        if redis is None:
            raise _missing_redis(cls.__name__)
        return cls(serializer=serializer, client=redis.from_url(url), ttl=ttl)

    async def get(self, key: str) -> tp.Optional[Response]:
        """
        Retrieves the cached response by its key.

        :param key: The cache key of the request
        :type key: str
        :return: The cached response, if any.
        :rtype: tp.Optional[Response]
        """
        cached_response = await self._client.get(key)
        if cached_response is None:
            return None

        return self._serializer.loads(cached_response)

    async def put(self, key: str, response: Response) -> None:
        """
        Stores the response in the cache, replacing any previous entry.

        :param key: The cache key of the request
        :type key: str
        :param response: The response to store
        :type response: Response
        """
        if self._ttl is not None:
            px = float_seconds_to_int_milliseconds(self._ttl)
        else:
            lifetime = entry_lifetime(response)
            px = lifetime * 1000 if lifetime is not None else None

        await self._client.set(key, self._serializer.dumps(response), px=px)

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()


class AsyncInMemoryStorage(AsyncBaseStorage):
    """
    A simple in-memory storage.

    Once `capacity` entries are held, storing a new key evicts the least
    recently used one.

    :param serializer: Serializer capable of serializing and de-serializing cached responses, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param ttl: Specifies the maximum number of seconds that the response can be cached, defaults to None
    :type ttl: tp.Optional[tp.Union[int, float]], optional
    :param capacity: The maximum number of responses that can be cached, defaults to 128
    :type capacity: int, optional
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        ttl: tp.Optional[tp.Union[int, float]] = None,
        capacity: int = 128,
    ) -> None:
        super().__init__(serializer, ttl)

        if serializer is not None:  # pragma: no cover
            warnings.warn("The serializer is not used in the in-memory storage.", RuntimeWarning)

        if capacity <= 0:
            raise ValueError("Capacity must be positive")

        self._capacity = capacity
        self._cache: OrderedDict[str, tp.Tuple[Response, float]] = OrderedDict()
        self._lock = anyio.Lock()

    async def get(self, key: str) -> tp.Optional[Response]:
        """
        Retrieves the cached response by its key.

        :param key: The cache key of the request
        :type key: str
        :return: The cached response, if any.
        :rtype: tp.Optional[Response]
        """
        async with self._lock:
            try:
                response, created_at = self._cache[key]
            except KeyError:
                return None

            if self._ttl is not None and time.monotonic() - created_at > self._ttl:
                del self._cache[key]
                return None

            self._cache.move_to_end(key)
            return copy.deepcopy(response)

    async def put(self, key: str, response: Response) -> None:
        """
        Stores the response in the cache, replacing any previous entry.

        :param key: The cache key of the request
        :type key: str
        :param response: The response to store
        :type response: Response
        """
        async with self._lock:
            self._cache[key] = (copy.deepcopy(response), time.monotonic())
            self._cache.move_to_end(key)

            while len(self._cache) > self._capacity:
                evicted_key, _ = self._cache.popitem(last=False)
                logger.debug("Evicted the least recently used entry: %s", evicted_key)

    async def aclose(self) -> None:  # pragma: no cover
        return

    def __len__(self) -> int:
        return len(self._cache)
