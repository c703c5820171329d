from __future__ import annotations

import logging
from dataclasses import replace
from typing import Awaitable, Callable, Optional

from swrproxy._background import BackgroundScheduler
from swrproxy._models import (
    CACHE_CONTROL_HEADER,
    CACHE_STALE_AT_HEADER,
    CACHE_STATUS_HEADER,
    CLIENT_CACHE_CONTROL_HEADER,
    ORIGIN_CACHE_CONTROL_HEADER,
    ORIGIN_CF_CACHE_STATUS_HEADER,
    UNSET,
    CacheStatus,
    HeaderValue,
    Request,
    Response,
    add_headers,
)
from swrproxy._policies import CacheOptions, resolve_cache_control
from swrproxy._storages import AsyncBaseStorage, AsyncInMemoryStorage
from swrproxy._utils import BaseClock, Clock, KeyHasher, add_cache_bust_param, generate_key, get_safe_url

logger = logging.getLogger("swrproxy.cache")

__all__ = ("AsyncSWRCache", "parse_stale_at")

RequestSender = Callable[[Request], Awaitable[Response]]


def parse_stale_at(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class AsyncSWRCache:
    """
    Stale-while-revalidate cache in front of a single origin.

    Cached responses are always answered straight from the storage. Once an
    entry is past its stale-at time, the first request to notice marks it as
    REVALIDATING and schedules a background fetch that replaces it.

    The marker is a plain overwrite, not a compare-and-swap: requests racing
    on the same stale entry may each schedule a fetch, and the last write
    wins.

    Args:
        request_sender: Callable that sends a request to the origin and returns its response.
        scheduler: Where background work is registered so it outlives the response.
        storage: Storage backend for cache entries. Defaults to AsyncInMemoryStorage.
        options: Cache behaviour options. Defaults to CacheOptions().
        clock: Source of the current time in epoch milliseconds.
        key_hasher: Digest function applied to request bodies when building cache keys.
    """

    def __init__(
        self,
        request_sender: RequestSender,
        scheduler: BackgroundScheduler,
        storage: AsyncBaseStorage | None = None,
        options: CacheOptions | None = None,
        clock: BaseClock | None = None,
        key_hasher: KeyHasher | None = None,
    ) -> None:
        self.send_request = request_sender
        self.scheduler = scheduler
        self.storage = storage if storage is not None else AsyncInMemoryStorage()
        self.options = options if options is not None else CacheOptions()
        self._clock = clock if clock is not None else Clock()
        self._key_hasher = key_hasher

    def get_key_for_request(self, request: Request) -> str:
        return generate_key(request.url, request.content, self._key_hasher)

    async def handle_request(self, request: Request) -> Response:
        cache_key = self.get_key_for_request(request)
        cached_response = await self.storage.get(cache_key)

        if cached_response is None:
            logger.debug("Cache miss for %s", get_safe_url(request.url))
            return await self._fetch_and_cache(cache_key, request)

        cache_status = cached_response.headers.get(CACHE_STATUS_HEADER)

        if self.should_revalidate(cached_response):
            logger.debug("Stale entry for %s, revalidating in the background", get_safe_url(request.url))
            cache_status = CacheStatus.REVALIDATING.value
            await self._revalidate(cache_key, request, cached_response)
        else:
            logger.debug("Cache hit for %s (status=%s)", get_safe_url(request.url), cache_status)

        # the stored Cache-Control is the edge policy, clients get their own
        return add_headers(
            cached_response,
            {
                CACHE_STATUS_HEADER: cache_status,
                CACHE_CONTROL_HEADER: cached_response.headers.get(CLIENT_CACHE_CONTROL_HEADER),
            },
        )

    def should_revalidate(self, cached_response: Response) -> bool:
        now = self._clock.now()
        stale_at = parse_stale_at(cached_response.headers.get(CACHE_STALE_AT_HEADER))

        if cached_response.headers.get(CACHE_STATUS_HEADER) == CacheStatus.REVALIDATING.value:
            timeout = self.options.revalidation_timeout
            if timeout is None or stale_at is None:
                return False
            # the earlier revalidation is presumed lost
            return now > stale_at + int(timeout * 1000)

        if stale_at is None:
            return True

        return now > stale_at

    async def _revalidate(self, cache_key: str, request: Request, cached_response: Response) -> None:
        # this marker is the only thing keeping other requests from revalidating too
        await self.storage.put(
            cache_key,
            add_headers(cached_response, {CACHE_STATUS_HEADER: CacheStatus.REVALIDATING.value}),
        )
        self.scheduler.schedule(self._fetch_and_cache, cache_key, request, False)

    async def _fetch_and_cache(self, cache_key: str, request: Request, store_in_background: bool = True) -> Response:
        # bust any cache sitting between us and the origin
        origin_request = replace(
            request,
            url=add_cache_bust_param(request.url, self._clock.now(), self.options.cache_bust_param),
        )
        origin_response = await self.send_request(origin_request)
        resolved = resolve_cache_control(origin_response, self._clock.now())
        edge = resolved.edge if resolved is not None else None

        headers: dict[str, HeaderValue] = {
            ORIGIN_CACHE_CONTROL_HEADER: origin_response.headers.get("cache-control"),
            # survives the removal of cf-cache-status from stored entries
            ORIGIN_CF_CACHE_STATUS_HEADER: origin_response.headers.get("cf-cache-status"),
            CACHE_STALE_AT_HEADER: str(edge.stale_at) if edge is not None else UNSET,
        }

        if resolved is not None and edge is not None:
            entry = add_headers(
                origin_response,
                {
                    **headers,
                    CACHE_STATUS_HEADER: CacheStatus.HIT.value,
                    CACHE_CONTROL_HEADER: edge.value,
                    CLIENT_CACHE_CONTROL_HEADER: resolved.client,
                    **{header: None for header in self.options.unsafe_headers},
                },
            )
            logger.debug(
                "Storing response for %s (edge=%s, stale_at=%d)",
                get_safe_url(request.url),
                edge.value,
                edge.stale_at,
            )
            if store_in_background:
                self.scheduler.schedule(self.storage.put, cache_key, entry)
            else:
                await self.storage.put(cache_key, entry)
        else:
            logger.debug(
                "Not storing response for %s (status=%d)",
                get_safe_url(request.url),
                origin_response.status_code,
            )

        return add_headers(
            origin_response,
            {
                **headers,
                CACHE_STATUS_HEADER: CacheStatus.MISS.value,
                CACHE_CONTROL_HEADER: resolved.client if resolved is not None else UNSET,
            },
        )
