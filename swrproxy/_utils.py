from __future__ import annotations

import hashlib
import time
import typing as tp

import httpx

__all__ = (
    "BaseClock",
    "Clock",
    "KeyHasher",
    "add_cache_bust_param",
    "generate_key",
    "get_safe_url",
    "sha256_hexdigest",
)

KeyHasher = tp.Callable[[bytes], str]


class BaseClock:
    def now(self) -> int:
        """Current time as epoch milliseconds."""
        raise NotImplementedError()


class Clock(BaseClock):
    def now(self) -> int:
        return int(time.time() * 1000)


def sha256_hexdigest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def generate_key(url: str, body: bytes, hasher: tp.Optional[KeyHasher] = None) -> str:
    """
    Build the cache key for a request.

    The key is the request URL followed by a `cache-key` parameter holding
    the digest of the body, so two requests share an entry only when both
    their URL and their body match.

    Example:
        ```python
        >>> generate_key("https://example.com/graphql", b"{}")
        'https://example.com/graphql?cache-key=44136fa355b3678a1146ad16f7e8649e94fb4fc21fe77e8310c060f61caaff8a'
        ```
    """
    hasher = hasher or sha256_hexdigest
    return f"{url}?cache-key={hasher(body)}"


def add_cache_bust_param(url: str, timestamp: int, param: str = "t") -> str:
    """Append `param=<timestamp>` so no intermediate cache can answer the request."""
    return str(httpx.URL(url).copy_add_param(param, str(timestamp)))


def get_safe_url(url: str) -> str:
    httpx_url = httpx.URL(url)
    return str(httpx_url.copy_with(query=None, fragment=None))
