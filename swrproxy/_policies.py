from __future__ import annotations

import logging
import typing as t
from dataclasses import dataclass, field

from swrproxy._headers import CacheControl, parse_cache_control
from swrproxy._models import Response

logger = logging.getLogger("swrproxy.policies")

__all__ = (
    "DEFAULT_CLIENT_CACHE_CONTROL",
    "CacheOptions",
    "EdgePolicy",
    "ResolvedCacheControl",
    "resolve_cache_control",
    "resolve_client_policy",
    "resolve_edge_policy",
)

DEFAULT_CLIENT_CACHE_CONTROL = "public, max-age=0, must-revalidate"
DEFAULT_UNSAFE_HEADERS = ("set-cookie", "vary", "cf-cache-status")


@dataclass
class CacheOptions:
    """
    Knobs of the stale-while-revalidate cache.

    Attributes:
    ----------
    revalidation_timeout : float | None
        Seconds after the stale-at time of an entry that is still marked
        REVALIDATING before another revalidation may be triggered.

        When None, a failed background revalidation leaves the entry marked
        REVALIDATING for as long as the storage keeps it.

    cache_bust_param : str
        Query parameter appended to every origin request with the current
        timestamp.

    unsafe_headers : tuple[str, ...]
        Headers removed from a response before it is stored.
    """

    revalidation_timeout: t.Optional[float] = None
    cache_bust_param: str = "t"
    unsafe_headers: t.Tuple[str, ...] = field(default=DEFAULT_UNSAFE_HEADERS)


@dataclass(frozen=True)
class EdgePolicy:
    value: str
    """Cache-Control value stored alongside the entry."""

    stale_at: int
    """Epoch milliseconds after which the entry needs revalidation."""


@dataclass(frozen=True)
class ResolvedCacheControl:
    edge: t.Optional[EdgePolicy]
    client: str


def resolve_edge_policy(cache_control: CacheControl, now: int) -> t.Optional[EdgePolicy]:
    s_maxage = cache_control.s_maxage
    stale_while_revalidate = cache_control.stale_while_revalidate

    # never edge-cache anything without an s-maxage
    if not s_maxage:
        return None

    stale_at = now + s_maxage * 1000

    if stale_while_revalidate is None:
        return EdgePolicy(value=f"max-age={s_maxage}", stale_at=stale_at)

    # stale content may be served for as long as the storage keeps it
    if stale_while_revalidate == 0:
        return EdgePolicy(value="immutable", stale_at=stale_at)

    # keep the entry through the stale-while-revalidate window
    return EdgePolicy(value=f"max-age={s_maxage + stale_while_revalidate}", stale_at=stale_at)


def resolve_client_policy(cache_control: CacheControl) -> str:
    if not cache_control.max_age:
        return DEFAULT_CLIENT_CACHE_CONTROL

    return f"max-age={cache_control.max_age}"


def resolve_cache_control(response: Response, now: int) -> t.Optional[ResolvedCacheControl]:
    """
    Translate the origin's Cache-Control header into an edge and a client policy.

    Returns None when the response must not be cached at all, that is when it
    is not successful or carries no Cache-Control header.

    Example:
        ```python
        >>> response = Response(200, Headers({"Cache-Control": "s-maxage=60, stale-while-revalidate=30"}))
        >>> resolve_cache_control(response, now=0)
        ResolvedCacheControl(edge=EdgePolicy(value='max-age=90', stale_at=60000), client='public, max-age=0, must-revalidate')
        ```
    """
    if not response.is_success:
        logger.debug("Not resolving cache-control for unsuccessful response (status=%d)", response.status_code)
        return None

    header = response.headers.get("cache-control")
    if not header:
        logger.debug("Not resolving cache-control for response without a Cache-Control header")
        return None

    cache_control = parse_cache_control(header)

    return ResolvedCacheControl(
        edge=resolve_edge_policy(cache_control, now),
        client=resolve_client_policy(cache_control),
    )
