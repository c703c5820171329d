from __future__ import annotations

import logging
from typing import Union, overload

import httpx

from swrproxy._exceptions import OriginError
from swrproxy._headers import Headers
from swrproxy._models import Request, Response
from swrproxy._utils import get_safe_url

logger = logging.getLogger("swrproxy.httpx")

__all__ = ("HttpxRequestSender", "httpx_to_internal", "internal_to_httpx")

# recomputed by whoever sends the response on
HOP_BY_HOP_HEADERS = ("content-length", "transfer-encoding", "connection", "keep-alive")


@overload
def internal_to_httpx(
    value: Request,
) -> httpx.Request: ...


@overload
def internal_to_httpx(
    value: Response,
) -> httpx.Response: ...


def internal_to_httpx(
    value: Union[Request, Response],
) -> Union[httpx.Request, httpx.Response]:
    """
    Convert internal Request/Response to httpx.Request/httpx.Response.
    """
    if isinstance(value, Request):
        return httpx.Request(
            method=value.method,
            url=value.url,
            headers=value.headers.multi_items(),
            content=value.content,
        )
    return httpx.Response(
        status_code=value.status_code,
        headers=value.headers.multi_items(),
        content=value.content,
    )


@overload
def httpx_to_internal(
    value: httpx.Request,
) -> Request: ...


@overload
def httpx_to_internal(
    value: httpx.Response,
) -> Response: ...


def httpx_to_internal(
    value: Union[httpx.Request, httpx.Response],
) -> Union[Request, Response]:
    """
    Convert a fully read httpx.Request/httpx.Response to internal Request/Response.

    httpx has already decoded the body, so encoding and framing headers are
    dropped along the way.
    """
    headers = Headers(
        [
            (key, header_value)
            for key, header_value in value.headers.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        ]
    )

    if isinstance(value, httpx.Request):
        return Request(
            method=value.method,
            url=str(value.url),
            headers=headers,
            content=value.content,
        )

    headers.pop("content-encoding", None)
    return Response(
        status_code=value.status_code,
        headers=headers,
        content=value.content,
    )


class HttpxRequestSender:
    """
    Sends requests to the origin with an `httpx.AsyncClient`.

    The client reads the whole response body before returning, since it is
    both stored and forwarded.

    Example:
        ```python
        async with httpx.AsyncClient(timeout=10) as client:
            cache = AsyncSWRCache(request_sender=HttpxRequestSender(client), scheduler=scheduler)
        ```
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def __call__(self, request: Request) -> Response:
        httpx_request = internal_to_httpx(request)

        try:
            httpx_response = await self._client.send(httpx_request)
        except httpx.HTTPError as exc:
            logger.info("Origin request to %s failed: %r", get_safe_url(request.url), exc)
            raise OriginError(f"Could not reach the origin at {get_safe_url(request.url)}: {exc}") from exc

        logger.debug(
            "Origin responded to %s with status=%d",
            get_safe_url(request.url),
            httpx_response.status_code,
        )
        return httpx_to_internal(httpx_response)
