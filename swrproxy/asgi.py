from __future__ import annotations

import logging
import types
import typing as t
from contextlib import AsyncExitStack

import anyio
import httpx

from swrproxy._background import TaskGroupScheduler
from swrproxy._config import Config, create_storage, get_default_config
from swrproxy._exceptions import OriginError
from swrproxy._headers import Headers
from swrproxy._httpx import HttpxRequestSender
from swrproxy._models import Request, Response
from swrproxy._policies import CacheOptions
from swrproxy._storages import AsyncBaseStorage
from swrproxy._swr import AsyncSWRCache
from swrproxy._utils import BaseClock, get_safe_url

# Configure logger for this module
logger = logging.getLogger("swrproxy.asgi")

__all__ = ("SWRProxyApp",)


class _ASGIScope(t.TypedDict, total=False):
    """ASGI HTTP scope type."""

    type: str
    asgi: dict[str, str]
    http_version: str
    method: str
    scheme: str
    path: str
    query_string: bytes
    root_path: str
    headers: list[tuple[bytes, bytes]]
    server: tuple[str, int | None] | None
    client: tuple[str, int] | None
    state: dict[str, t.Any]
    extensions: dict[str, t.Any]


_Scope = _ASGIScope
_Receive = t.Callable[[], t.Awaitable[dict[str, t.Any]]]
_Send = t.Callable[[dict[str, t.Any]], t.Awaitable[None]]


def _plain_response(status_code: int, text: str) -> Response:
    return Response(
        status_code=status_code,
        headers=Headers({"content-type": "text/plain; charset=utf-8"}),
        content=text.encode("utf-8"),
    )


class SWRProxyApp:
    """
    ASGI application proxying JSON POST requests through a stale-while-revalidate cache.

    Every request names its origin in a header (`x-gql-host` by default).
    Requests are keyed by origin URL and body, so identical queries to the
    same origin share a cache entry.

    Background revalidation runs in a task group that lives as long as the
    application: it is opened on ASGI lifespan startup (or on `__aenter__`)
    and closed on shutdown, after in-flight revalidations have finished.

    Args:
        storage: The storage backend to use for caching. Built from `config` when omitted.
        config: Settings of the proxy. Defaults to `get_default_config()`.
        options: Cache behaviour options. Built from `config` when omitted.
        transport: Optional httpx transport for reaching origins, mainly for tests.
        clock: Optional clock override.

    Example:
        ```python
        from swrproxy.asgi import SWRProxyApp

        app = SWRProxyApp()
        # uvicorn module:app
        ```
    """

    def __init__(
        self,
        storage: AsyncBaseStorage | None = None,
        config: Config | None = None,
        options: CacheOptions | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: BaseClock | None = None,
    ) -> None:
        self.config: Config = config if config is not None else get_default_config()
        self.storage = storage if storage is not None else create_storage(self.config)
        self.options = (
            options
            if options is not None
            else CacheOptions(revalidation_timeout=self.config.get("revalidation_timeout"))
        )
        self._transport = transport
        self._clock = clock
        self._origin_header = self.config.get("origin_header", "x-gql-host")
        self._upstream_cache_control = self.config.get("upstream_cache_control")
        self._exit_stack: AsyncExitStack | None = None
        self.cache: AsyncSWRCache | None = None

        logger.info(
            "Initialized SWRProxyApp with storage=%s, origin_header=%s",
            type(self.storage).__name__,
            self._origin_header,
        )

    async def __aenter__(self) -> "SWRProxyApp":
        async with AsyncExitStack() as stack:
            client = await stack.enter_async_context(
                httpx.AsyncClient(
                    transport=self._transport,
                    timeout=self.config.get("upstream_timeout", 30),
                )
            )
            task_group = await stack.enter_async_context(anyio.create_task_group())
            self.cache = AsyncSWRCache(
                request_sender=HttpxRequestSender(client),
                scheduler=TaskGroupScheduler(task_group),
                storage=self.storage,
                options=self.options,
                clock=self._clock,
            )
            self._exit_stack = stack.pop_all()

        logger.info("SWRProxyApp started")
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None = None,
        exc_value: BaseException | None = None,
        traceback: types.TracebackType | None = None,
    ) -> None:
        logger.info("Shutting down SWRProxyApp, waiting for background revalidations")
        self.cache = None
        if self._exit_stack is not None:
            exit_stack, self._exit_stack = self._exit_stack, None
            await exit_stack.__aexit__(exc_type, exc_value, traceback)
        await self.storage.aclose()
        logger.info("SWRProxyApp stopped")

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        """
        Handle an ASGI connection.

        Args:
            scope: The ASGI scope dictionary.
            receive: The ASGI receive callable.
            send: The ASGI send callable.
        """
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return

        if scope["type"] != "http":
            logger.debug("Rejecting non-HTTP connection: type=%s", scope["type"])
            await send({"type": "websocket.close", "code": 1000})
            return

        response = await self._handle_http(scope, receive)
        if response is None:
            return
        await self._send_internal_response(response, send)

    async def _handle_lifespan(self, receive: _Receive, send: _Send) -> None:
        message = await receive()
        if message["type"] != "lifespan.startup":  # pragma: no cover
            return

        try:
            await self.__aenter__()
        except Exception as exc:
            logger.error("SWRProxyApp failed to start", exc_info=True)
            await send({"type": "lifespan.startup.failed", "message": repr(exc)})
            return
        await send({"type": "lifespan.startup.complete"})

        message = await receive()
        try:
            await self.__aexit__()
        except Exception as exc:
            logger.error("SWRProxyApp failed to shut down cleanly", exc_info=True)
            await send({"type": "lifespan.shutdown.failed", "message": repr(exc)})
            return
        await send({"type": "lifespan.shutdown.complete"})

    async def _handle_http(self, scope: _Scope, receive: _Receive) -> Response | None:
        method = scope.get("method", "GET")
        headers = Headers(
            [(key.decode("latin1"), value.decode("latin1")) for key, value in scope.get("headers", [])]
        )

        if method != "POST":
            return _plain_response(405, "Only POST requests are supported")

        host = headers.get(self._origin_header)
        if not host:
            return _plain_response(400, f"Missing {self._origin_header} header")

        content_type = headers.get("content-type")
        if not content_type or content_type.split(";")[0].strip().lower() != "application/json":
            return _plain_response(400, "Missing content-type header or content-type is not application/json")

        try:
            origin_url = httpx.URL(host)
        except httpx.InvalidURL:
            origin_url = None
        if origin_url is None or origin_url.scheme not in ("http", "https") or not origin_url.host:
            return _plain_response(400, f"Invalid {self._origin_header} header")

        if self.cache is None:
            return _plain_response(503, "The proxy is not running")

        body = await self._read_body(receive)
        if body is None:
            # partial bodies never reach the origin or the cache
            return None

        upstream_headers = Headers({"Content-Type": "application/json"})
        if self._upstream_cache_control:
            # advisory only, caching decisions use the origin's response header
            upstream_headers["Cache-Control"] = self._upstream_cache_control

        request = Request(method="POST", url=str(origin_url), headers=upstream_headers, content=body)

        try:
            response = await self.cache.handle_request(request)
        except OriginError as exc:
            logger.warning("Origin request failed: url=%s error=%s", get_safe_url(request.url), exc)
            return _plain_response(502, str(exc))

        logger.info(
            "Request processed: origin=%s status=%d cache_status=%s",
            get_safe_url(request.url),
            response.status_code,
            response.headers.get("x-edge-cache-status"),
        )
        return response

    async def _read_body(self, receive: _Receive) -> bytes | None:
        chunks: list[bytes] = []
        while True:
            message = await receive()
            if message["type"] == "http.request":
                chunks.append(message.get("body", b""))
                if not message.get("more_body", False):
                    break
            elif message["type"] == "http.disconnect":
                logger.debug("Client disconnected during request body streaming")
                return None
        return b"".join(chunks)

    async def _send_internal_response(self, response: Response, send: _Send) -> None:
        """
        Send an internal Response to the ASGI send callable.

        Args:
            response: The internal Response object.
            send: The ASGI send callable.
        """
        headers: list[tuple[bytes, bytes]] = [
            (key.encode("latin1"), value.encode("latin1"))
            for key, value in response.headers.multi_items()
            if key != "content-length"
        ]
        headers.append((b"content-length", str(len(response.content)).encode("latin1")))

        await send(
            {
                "type": "http.response.start",
                "status": response.status_code,
                "headers": headers,
            }
        )
        await send(
            {
                "type": "http.response.body",
                "body": response.content,
                "more_body": False,
            }
        )
