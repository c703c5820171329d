from __future__ import annotations

import enum
import typing as tp
from dataclasses import dataclass, field

from swrproxy._headers import Headers

__all__ = (
    "CACHE_CONTROL_HEADER",
    "CACHE_STALE_AT_HEADER",
    "CACHE_STATUS_HEADER",
    "CLIENT_CACHE_CONTROL_HEADER",
    "ORIGIN_CACHE_CONTROL_HEADER",
    "ORIGIN_CF_CACHE_STATUS_HEADER",
    "UNSET",
    "CacheStatus",
    "Request",
    "Response",
    "add_headers",
)

CACHE_STALE_AT_HEADER = "x-edge-cache-stale-at"
CACHE_STATUS_HEADER = "x-edge-cache-status"
CACHE_CONTROL_HEADER = "Cache-Control"
CLIENT_CACHE_CONTROL_HEADER = "x-client-cache-control"
ORIGIN_CACHE_CONTROL_HEADER = "x-edge-origin-cache-control"
ORIGIN_CF_CACHE_STATUS_HEADER = "x-origin-cf-cache-status"


class CacheStatus(str, enum.Enum):
    HIT = "HIT"
    MISS = "MISS"
    REVALIDATING = "REVALIDATING"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: tp.Final = _Unset()
"""Header value that leaves the header untouched when passed to `add_headers`."""

HeaderValue = tp.Union[str, None, _Unset]


@dataclass
class Request:
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    content: bytes = b""


@dataclass
class Response:
    status_code: int
    headers: Headers = field(default_factory=Headers)
    content: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


def add_headers(response: Response, headers: tp.Mapping[str, HeaderValue]) -> Response:
    """
    Return a copy of `response` with `headers` applied.

    A string replaces the header, None removes it and UNSET leaves it as is.

    Example:
        ```python
        updated = add_headers(response, {"x-edge-cache-status": "HIT", "set-cookie": None})
        ```
    """
    new_headers = response.headers.copy()

    for key, value in headers.items():
        if isinstance(value, _Unset):
            continue
        new_headers.pop(key, None)
        if value is not None:
            new_headers[key] = value

    return Response(status_code=response.status_code, headers=new_headers, content=response.content)
